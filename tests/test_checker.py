# Port Watch tests
from __future__ import annotations

import asyncio
import time

import pytest

from conftest import make_entry
from portwatch import checker as checker_module
from portwatch.checker import PortChecker
from portwatch.probe import ActiveResult, InactiveResult
from portwatch.status_store import StatusStore


@pytest.fixture()
def fake_probe(monkeypatch: pytest.MonkeyPatch):
    """Replace the network probe; latency and outcome are chosen per port."""
    calls: list[int] = []
    plan: dict[int, tuple[float, object]] = {}

    async def _probe(host, port, path="/", timeout_ms=5000, *, client=None, follow_redirects=True):
        calls.append(port)
        delay, outcome = plan.get(port, (0.0, ActiveResult(response_time_ms=1.0)))
        await asyncio.sleep(delay)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(checker_module, "probe", _probe)
    return calls, plan


def test_check_one_records_result(fake_probe) -> None:
    calls, plan = fake_probe
    entry = make_entry(3000)
    plan[3000] = (0.0, ActiveResult(response_time_ms=4.0, page_title="Vite", http_status=200))
    store = StatusStore()

    status = asyncio.run(PortChecker(store).check_one(entry))

    assert status.status == "active"
    assert status.page_title == "Vite"
    assert store.get(entry.id) == status
    assert calls == [3000]


def test_concurrent_check_one_probes_once(fake_probe) -> None:
    calls, plan = fake_probe
    entry = make_entry(8080)
    plan[8080] = (0.05, ActiveResult(response_time_ms=50.0))
    store = StatusStore()
    checker = PortChecker(store)

    async def run():
        return await asyncio.gather(checker.check_one(entry), checker.check_one(entry))

    first, second = asyncio.run(run())
    assert calls == [8080]
    assert first.status == "active"
    assert second is None


def test_check_all_waits_for_slowest_and_publishes_each_result_early(fake_probe) -> None:
    calls, plan = fake_probe
    fast, medium, slow = make_entry(3000), make_entry(5173), make_entry(8000)
    plan[3000] = (0.1, ActiveResult(response_time_ms=100.0))
    plan[5173] = (0.15, InactiveResult(response_time_ms=150.0, error="Connection refused"))
    plan[8000] = (0.2, ActiveResult(response_time_ms=200.0))
    store = StatusStore()
    completed: list[tuple[str, float]] = []
    store.subscribe(lambda s: completed.append((s.id, time.monotonic())) if s.status != "checking" else None)

    async def run():
        started = time.monotonic()
        statuses = await PortChecker(store).check_all([slow, medium, fast])
        return statuses, started, time.monotonic()

    statuses, started, finished = asyncio.run(run())

    assert sorted(calls) == [3000, 5173, 8000]
    assert [entry_id for entry_id, _ in completed] == [fast.id, medium.id, slow.id]
    assert finished - started >= 0.2
    # run back to back these would take 0.45s
    assert finished - started < 0.4
    assert completed[0][1] < completed[2][1]
    assert statuses[fast.id].status == "active"
    assert statuses[medium.id].status == "inactive"
    assert statuses[medium.id].error == "Connection refused"
    assert statuses[slow.id].status == "active"


def test_one_crashing_probe_does_not_affect_others(fake_probe) -> None:
    calls, plan = fake_probe
    good, bad = make_entry(3000), make_entry(9000)
    plan[9000] = (0.0, RuntimeError("boom"))
    store = StatusStore()

    statuses = asyncio.run(PortChecker(store).check_all([bad, good]))

    assert statuses[good.id].status == "active"
    assert statuses[bad.id].status == "inactive"
    assert statuses[bad.id].error == "boom"
    assert store.in_flight_count() == 0


def test_check_all_with_no_entries() -> None:
    assert asyncio.run(PortChecker(StatusStore()).check_all([])) == {}


def test_check_new_runs_in_background(fake_probe) -> None:
    calls, plan = fake_probe
    entry = make_entry(27017)
    store = StatusStore()

    async def run():
        checker = PortChecker(store)
        task = checker.check_new(entry)
        await task
        await checker.aclose()

    asyncio.run(run())
    assert calls == [27017]
    assert store.get(entry.id).status == "active"


def test_cancelled_check_restores_previous_status(fake_probe) -> None:
    calls, plan = fake_probe
    entry = make_entry(4000)
    plan[4000] = (3600, ActiveResult(response_time_ms=1.0))
    store = StatusStore()

    async def run():
        checker = PortChecker(store)
        checker.check_new(entry)
        await asyncio.sleep(0.01)
        assert store.is_checking(entry.id)
        await checker.aclose()

    asyncio.run(run())
    assert not store.is_checking(entry.id)
    assert store.get(entry.id).status == "unknown"

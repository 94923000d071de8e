# Port Watch tests
from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Callable

import httpx
import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from portwatch.config import AppConfig  # noqa: E402
from portwatch.models import EntryFields, WatchEntry  # noqa: E402


@pytest.fixture()
def app_config(tmp_path: Path) -> AppConfig:
    config = AppConfig()
    config.storage.db_path = str(tmp_path / "portwatch.db")
    config.refresh.enabled = False
    config.probe.timeout_ms = 1000
    return config


def make_entry(port: int, host: str = "localhost", path: str | None = None, label: str | None = None) -> WatchEntry:
    return WatchEntry(**EntryFields(host=host, port=port, endpoint_path=path, label=label).model_dump())


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def serve_raw(response: bytes | None, delay: float = 0.0):
    """Local TCP server answering every connection with ``response``, after ``delay`` seconds.

    With ``response=None`` connections are accepted and then left hanging.
    Returns (server, port).
    """
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            await reader.readuntil(b"\r\n\r\n")
            if response is None:
                await asyncio.sleep(3600)
            await asyncio.sleep(delay)
            writer.write(response)
            await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError, asyncio.CancelledError):
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port

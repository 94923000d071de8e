"""
Port Watch API — HTTP endpoints for a watchlist UI.

Endpoints:
  GET    /health                 — Health check
  GET    /entries                — List entries (insertion order) with statuses
  POST   /entries                — Add an entry (checked immediately)
  GET    /entries/{id}           — Get one entry with its status
  PATCH  /entries/{id}           — Edit an entry
  DELETE /entries/{id}           — Remove an entry
  POST   /entries/{id}/check     — Check one entry now
  POST   /check                  — Check every entry now
  GET    /statuses               — Status of every entry
  GET    /refresh-config         — Auto-refresh settings
  PATCH  /refresh-config         — Change auto-refresh settings
  GET    /quick-ports            — Common ports offered for quick add
  POST   /quick-ports/{port}     — Add localhost:{port} with its preset label
  GET    /metrics                — Prometheus metrics
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

import structlog
from prometheus_client import make_asgi_app

from .config import AppConfig
from .models import (
    COMMON_PORTS, AutoRefreshConfig, AutoRefreshUpdate, EntryFields,
    EntryUpdate, EntryWithStatus, QuickPort,
)
from .monitor import PortMonitor
from .watchlist import DuplicateEntryError, EntryNotFoundError

log = structlog.get_logger()


def create_app(config: AppConfig, monitor: Optional[PortMonitor] = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        mon = monitor or PortMonitor(config)
        app.state.monitor = mon
        await mon.start()
        log.info("portwatch_starting")
        yield
        await mon.aclose()
        log.info("portwatch_shutdown")

    app = FastAPI(
        title="Port Watch",
        description="Local port liveness monitor",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_route("/entries", list_entries, methods=["GET"],
                      response_model=list[EntryWithStatus])
    app.add_api_route("/entries", create_entry, methods=["POST"],
                      status_code=201, response_model=EntryWithStatus)
    app.add_api_route("/entries/{entry_id}", get_entry, methods=["GET"],
                      response_model=EntryWithStatus)
    app.add_api_route("/entries/{entry_id}", update_entry, methods=["PATCH"],
                      response_model=EntryWithStatus)
    app.add_api_route("/entries/{entry_id}", delete_entry, methods=["DELETE"],
                      status_code=204)
    app.add_api_route("/entries/{entry_id}/check", check_entry, methods=["POST"],
                      response_model=EntryWithStatus)
    app.add_api_route("/check", check_all, methods=["POST"])
    app.add_api_route("/statuses", list_statuses, methods=["GET"])
    app.add_api_route("/refresh-config", get_refresh_config, methods=["GET"],
                      response_model=AutoRefreshConfig)
    app.add_api_route("/refresh-config", update_refresh_config, methods=["PATCH"],
                      response_model=AutoRefreshConfig)
    app.add_api_route("/quick-ports", list_quick_ports, methods=["GET"],
                      response_model=list[QuickPort])
    app.add_api_route("/quick-ports/{port}", quick_add, methods=["POST"],
                      status_code=201, response_model=EntryWithStatus)

    app.mount("/metrics", make_asgi_app())

    return app


def _monitor(request: Request) -> PortMonitor:
    return request.app.state.monitor


def _with_status(monitor: PortMonitor, entry) -> EntryWithStatus:
    return EntryWithStatus(entry=entry, status=monitor.status(entry.id))


def _get_or_404(monitor: PortMonitor, entry_id: str):
    try:
        return monitor.watchlist.get(entry_id)
    except EntryNotFoundError:
        raise HTTPException(status_code=404, detail="Entry not found")


# =============================================================================
# Endpoints
# =============================================================================

async def health(request: Request):
    monitor = _monitor(request)
    return {
        "status": "healthy",
        "entries": len(monitor.watchlist.entries()),
        "scheduler": monitor.scheduler.state,
    }


async def list_entries(request: Request):
    """All watched entries, in the order they were added."""
    monitor = _monitor(request)
    return [_with_status(monitor, e) for e in monitor.watchlist.entries()]


async def create_entry(request: Request, body: EntryFields):
    """
    Add an entry to the watchlist.

    The new entry is probed right away in the background; poll
    GET /entries/{id} for its status.
    """
    monitor = _monitor(request)
    try:
        entry = monitor.add_entry(body)
    except DuplicateEntryError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _with_status(monitor, entry)


async def get_entry(request: Request, entry_id: str):
    monitor = _monitor(request)
    return _with_status(monitor, _get_or_404(monitor, entry_id))


async def update_entry(request: Request, entry_id: str, body: EntryUpdate):
    monitor = _monitor(request)
    try:
        entry = monitor.update_entry(entry_id, body)
    except EntryNotFoundError:
        raise HTTPException(status_code=404, detail="Entry not found")
    except DuplicateEntryError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _with_status(monitor, entry)


async def delete_entry(request: Request, entry_id: str):
    monitor = _monitor(request)
    try:
        monitor.remove_entry(entry_id)
    except EntryNotFoundError:
        raise HTTPException(status_code=404, detail="Entry not found")
    return Response(status_code=204)


async def check_entry(request: Request, entry_id: str):
    """Probe one entry and wait for the result."""
    monitor = _monitor(request)
    entry = _get_or_404(monitor, entry_id)
    await monitor.check_one(entry_id)
    return _with_status(monitor, entry)


async def check_all(request: Request):
    """Probe every entry concurrently and wait for all of them."""
    monitor = _monitor(request)
    statuses = await monitor.check_all()
    return JSONResponse(content={
        entry_id: status.model_dump(mode="json")
        for entry_id, status in statuses.items()
    })


async def list_statuses(request: Request):
    monitor = _monitor(request)
    return JSONResponse(content={
        entry_id: status.model_dump(mode="json")
        for entry_id, status in monitor.statuses().items()
    })


async def get_refresh_config(request: Request):
    return _monitor(request).refresh_config()


async def update_refresh_config(request: Request, body: AutoRefreshUpdate):
    """Change auto-refresh settings; the poll timer restarts from the new values."""
    return _monitor(request).update_refresh_config(body)


async def list_quick_ports():
    return COMMON_PORTS


async def quick_add(request: Request, port: int):
    preset = next((p for p in COMMON_PORTS if p.port == port), None)
    if preset is None:
        raise HTTPException(status_code=404, detail=f"No quick-add preset for port {port}")
    monitor = _monitor(request)
    try:
        entry = monitor.add_entry(EntryFields(host="localhost", port=port, label=preset.label))
    except DuplicateEntryError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _with_status(monitor, entry)

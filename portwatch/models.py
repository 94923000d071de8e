"""
Data models for Port Watch.

PortStatus is a tagged union on ``status``: each variant carries only the
fields that make sense for it, so e.g. an inactive status can never hold a
page title.
"""

import ipaddress
import re
import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

_HOSTNAME_RE = re.compile(
    r'^[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?)*$'
)

MIN_INTERVAL_SECONDS = 5
MAX_INTERVAL_SECONDS = 300


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_path(path: Optional[str]) -> str:
    """Return ``path`` with a leading slash; empty means ``/``."""
    if not path:
        return "/"
    return path if path.startswith("/") else f"/{path}"


# =============================================================================
# Watchlist
# =============================================================================

class EntryFields(BaseModel):
    """Validated user-editable fields of a watch entry."""
    host: str = Field("localhost", description="Hostname or IP address")
    port: int = Field(..., ge=1, le=65535)
    endpoint_path: Optional[str] = Field(None, description="Path probed on the host")
    label: Optional[str] = None

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        v = v.strip()
        if not v:
            return "localhost"
        if v.startswith("[") and v.endswith("]"):
            return v
        try:
            addr = ipaddress.ip_address(v)
            return f"[{v}]" if addr.version == 6 else v
        except ValueError:
            pass
        if _HOSTNAME_RE.match(v) and len(v) <= 253:
            return v
        raise ValueError(f"Invalid host '{v}'. Must be an IP address or hostname.")

    @field_validator("endpoint_path", "label")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class WatchEntry(EntryFields):
    """A watched (host, port, path) target."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def identity(self) -> tuple:
        """Deduplication key."""
        return (self.host, self.port, self.endpoint_path)

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}{normalize_path(self.endpoint_path)}"


class EntryUpdate(BaseModel):
    """Partial update of a watch entry; unset fields are left alone."""
    host: Optional[str] = None
    port: Optional[int] = Field(None, ge=1, le=65535)
    endpoint_path: Optional[str] = None
    label: Optional[str] = None


# =============================================================================
# Port status variants
# =============================================================================

class UnknownStatus(BaseModel):
    id: str
    status: Literal["unknown"] = "unknown"


class CheckingStatus(BaseModel):
    """A probe is in flight; fields from the previous outcome are kept."""
    id: str
    status: Literal["checking"] = "checking"
    last_checked: datetime
    page_title: Optional[str] = None
    response_time_ms: Optional[float] = None
    http_status: Optional[int] = None
    error: Optional[str] = None


class ActiveStatus(BaseModel):
    id: str
    status: Literal["active"] = "active"
    last_checked: datetime
    response_time_ms: float
    page_title: Optional[str] = None
    http_status: Optional[int] = None


class InactiveStatus(BaseModel):
    id: str
    status: Literal["inactive"] = "inactive"
    last_checked: datetime
    response_time_ms: float
    error: str


PortStatus = Annotated[
    Union[UnknownStatus, CheckingStatus, ActiveStatus, InactiveStatus],
    Field(discriminator="status"),
]


# =============================================================================
# Auto refresh
# =============================================================================

class AutoRefreshConfig(BaseModel):
    enabled: bool = True
    interval_seconds: int = Field(10, ge=MIN_INTERVAL_SECONDS, le=MAX_INTERVAL_SECONDS)


class AutoRefreshUpdate(BaseModel):
    enabled: Optional[bool] = None
    interval_seconds: Optional[int] = Field(
        None, ge=MIN_INTERVAL_SECONDS, le=MAX_INTERVAL_SECONDS
    )


# =============================================================================
# API responses
# =============================================================================

class EntryWithStatus(BaseModel):
    entry: WatchEntry
    status: PortStatus


class QuickPort(BaseModel):
    port: int
    label: str


# Common development ports offered for one-click adding
COMMON_PORTS = [
    QuickPort(port=3000, label="React Dev"),
    QuickPort(port=5173, label="Vite Dev"),
    QuickPort(port=8080, label="Common"),
    QuickPort(port=8000, label="Python"),
    QuickPort(port=9000, label="Custom"),
    QuickPort(port=5432, label="PostgreSQL"),
    QuickPort(port=27017, label="MongoDB"),
]

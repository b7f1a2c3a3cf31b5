"""State shown by the web interface and the JSON shapes it is served in."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def _timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FileStatus(enum.Enum):
    """Synchronisation state of an enrolled file."""

    SYNCED = "Synced"
    MODIFIED = "Modified"
    DRIFTED = "Drifted"
    ERROR = "Error"


@dataclass
class EnrolledFile:
    path: str
    group: str
    status: FileStatus = FileStatus.SYNCED
    last_modified: datetime = field(default_factory=_now)
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        if self.status is FileStatus.ERROR:
            status: Any = {"Error": self.error or ""}
        else:
            status = self.status.value
        return {
            "path": self.path,
            "group": self.group,
            "status": status,
            "last_modified": _timestamp(self.last_modified),
        }


@dataclass
class GroupInfo:
    name: str
    machines: list[str] = field(default_factory=list)
    file_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "machines": list(self.machines),
            "file_count": self.file_count,
        }


@dataclass
class SystemStatus:
    hostname: str = ""
    mfs_mounted: bool = False
    service_running: bool = False
    last_sync: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostname": self.hostname,
            "mfs_mounted": self.mfs_mounted,
            "service_running": self.service_running,
            "last_sync": _timestamp(self.last_sync) if self.last_sync is not None else None,
        }


@dataclass
class ActiveOperation:
    id: str
    operation_type: str
    progress: float = 0.0
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "operation_type": self.operation_type,
            "progress": self.progress,
            "message": self.message,
        }


@dataclass
class WebUIState:
    enrolled_files: list[EnrolledFile] = field(default_factory=list)
    groups: list[GroupInfo] = field(default_factory=list)
    system_status: SystemStatus = field(default_factory=SystemStatus)
    active_operations: list[ActiveOperation] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enrolled_files": [item.to_dict() for item in self.enrolled_files],
            "groups": [item.to_dict() for item in self.groups],
            "system_status": self.system_status.to_dict(),
            "active_operations": [item.to_dict() for item in self.active_operations],
        }


@dataclass
class GamepadStatus:
    connected: bool = False
    name: Optional[str] = None
    buttons: list[bool] = field(default_factory=list)
    axes: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "connected": self.connected,
            "name": self.name,
            "buttons": list(self.buttons),
            "axes": list(self.axes),
        }


@dataclass
class ApiResponse:
    """Envelope for API replies: either data or an error message."""

    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any) -> "ApiResponse":
        return cls(success=True, data=data, error=None)

    @classmethod
    def fail(cls, message: str) -> "ApiResponse":
        return cls(success=False, data=None, error=message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": _jsonable(self.data),
            "error": self.error,
        }
"""The packages.conf format, its files on the shared mount and the action log."""

from __future__ import annotations

import json
import logging
import re
import socket
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Union

log = logging.getLogger(__name__)

HEADER = (
    "# Laszoo Package Configuration\n"
    "# Syntax:\n"
    "# ^package - Upgrade package\n"
    "# ^package --upgrade=command - Upgrade with post-action\n"
    "# ++upgrade - Upgrade all packages\n"
    "# ++upgrade --start cmd --end cmd - Upgrade all with start/end actions\n"
    "# +package - Install package\n"
    "# =package - Keep package (don't auto-install/remove)\n"
    "# !package - Remove package\n"
    "# !!!package - Purge package\n\n"
)

HISTORY_TARGETS = ("++update", "++upgrade")


@dataclass(frozen=True)
class Upgrade:
    """``^package`` - upgrade a package, optionally running a command afterwards."""

    name: str
    post_action: Optional[str] = None


@dataclass(frozen=True)
class UpdateAll:
    """``++update`` - refresh package lists with optional before/after commands."""

    start_action: Optional[str] = None
    end_action: Optional[str] = None


@dataclass(frozen=True)
class UpgradeAll:
    """``++upgrade`` - upgrade every package with optional before/after commands."""

    start_action: Optional[str] = None
    end_action: Optional[str] = None


@dataclass(frozen=True)
class Install:
    """``+package`` - install a package."""

    name: str


@dataclass(frozen=True)
class Keep:
    """``=package`` - leave a package alone."""

    name: str


@dataclass(frozen=True)
class Remove:
    """``!package`` - remove a package."""

    name: str


@dataclass(frozen=True)
class Purge:
    """``!!!package`` - purge a package."""

    name: str


PackageOperation = Union[Upgrade, UpdateAll, UpgradeAll, Install, Keep, Remove, Purge]
_NAMED = (Upgrade, Install, Keep, Remove, Purge)

_TIMESTAMP = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[T ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:?\d{2})?$"
)


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_timestamp(text: str) -> datetime:
    match = _TIMESTAMP.match(text.strip())
    if not match:
        raise ValueError(f"invalid timestamp: {text!r}")
    date, clock, fraction, zone = match.groups()
    fraction = f".{(fraction or '0')[:6].ljust(6, '0')}"
    if zone in (None, "Z"):
        zone = "+00:00"
    elif ":" not in zone:
        zone = f"{zone[:3]}:{zone[3:]}"
    return datetime.fromisoformat(f"{date}T{clock}{fraction}{zone}").astimezone(timezone.utc)


@dataclass
class ActionRecord:
    """One entry in the per-host action log."""

    timestamp: datetime
    hostname: str
    action_type: str
    target: str
    group: Optional[str]
    status: str
    details: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": _format_timestamp(self.timestamp),
            "hostname": self.hostname,
            "action_type": self.action_type,
            "target": self.target,
            "group": self.group,
            "status": self.status,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ActionRecord":
        try:
            timestamp = data["timestamp"]
            fields = {key: data[key] for key in ("hostname", "action_type", "target", "status")}
        except (KeyError, TypeError) as exc:
            raise ValueError(f"incomplete action record: {exc}") from exc
        if not isinstance(timestamp, str) or not all(isinstance(v, str) for v in fields.values()):
            raise ValueError("action record fields must be strings")
        group = data.get("group")
        details = data.get("details")
        for value in (group, details):
            if value is not None and not isinstance(value, str):
                raise ValueError("action record fields must be strings")
        return cls(
            timestamp=_parse_timestamp(timestamp),
            group=group,
            details=details,
            **fields,
        )


def _bulk_actions(line: str) -> tuple[Optional[str], Optional[str]]:
    start_action: Optional[str] = None
    end_action: Optional[str] = None
    if "--before" not in line and "--after" not in line:
        return start_action, end_action

    parts = line.split()
    i = 0
    while i < len(parts):
        flag = parts[i]
        if flag in ("--before", "--after") and i + 1 < len(parts):
            i += 1
            command: list[str] = []
            while i < len(parts) and not parts[i].startswith("--"):
                command.append(parts[i])
                i += 1
            if flag == "--before":
                start_action = " ".join(command)
            else:
                end_action = " ".join(command)
        else:
            i += 1
    return start_action, end_action


def parse_package_line(line: str) -> Optional[PackageOperation]:
    """Parse one trimmed line; returns None for lines that mean nothing."""
    if line.startswith("++update"):
        return UpdateAll(*_bulk_actions(line))
    if line.startswith("++upgrade"):
        return UpgradeAll(*_bulk_actions(line))
    if line.startswith("^"):
        name, sep, action = line[1:].partition("--upgrade=")
        return Upgrade(name.strip(), action.strip() if sep else None)
    if line.startswith("+") and not line.startswith("++"):
        return Install(line[1:].strip())
    if line.startswith("="):
        return Keep(line[1:].strip())
    if line.startswith("!!!"):
        return Purge(line[3:].strip())
    if line.startswith("!"):
        return Remove(line[1:].strip())
    log.warning("Ignoring invalid package line: %s", line)
    return None


def parse_packages_conf(content: str) -> list[PackageOperation]:
    """Parse a packages.conf body, skipping blank lines and comments."""
    operations = []
    for raw in content.split("\n"):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        operation = parse_package_line(line)
        if operation is not None:
            operations.append(operation)
    return operations


def _bulk_line(keyword: str, start: Optional[str], end: Optional[str]) -> str:
    line = keyword
    if start is not None:
        line += f" --before {start}"
    if end is not None:
        line += f" --after {end}"
    return line


def _format_operation(op: PackageOperation) -> str:
    if isinstance(op, Upgrade):
        return f"^{op.name} --upgrade={op.post_action}" if op.post_action is not None else f"^{op.name}"
    if isinstance(op, UpdateAll):
        return _bulk_line("++update", op.start_action, op.end_action)
    if isinstance(op, UpgradeAll):
        return _bulk_line("++upgrade", op.start_action, op.end_action)
    if isinstance(op, Install):
        return f"+{op.name}"
    if isinstance(op, Keep):
        return f"={op.name}"
    if isinstance(op, Remove):
        return f"!{op.name}"
    if isinstance(op, Purge):
        return f"!!!{op.name}"
    raise TypeError(f"not a package operation: {op!r}")


def format_packages_conf(operations: Iterable[PackageOperation]) -> str:
    """Render operations as a packages.conf body with the standard header."""
    return HEADER + "".join(f"{_format_operation(op)}\n" for op in operations)


def group_packages_path(mfs_mount: Path | str, group: str) -> Path:
    return Path(mfs_mount) / "groups" / group / "etc" / "laszoo" / "packages.conf"


def machine_packages_path(mfs_mount: Path | str, hostname: str) -> Path:
    return Path(mfs_mount) / "machines" / hostname / "etc" / "laszoo" / "packages.conf"


def _merge_file(
    path: Path,
    bulk: list[PackageOperation],
    named: dict[str, PackageOperation],
) -> None:
    if not path.exists():
        return
    log.debug("Loading packages from: %s", path)
    for op in parse_packages_conf(path.read_text()):
        if isinstance(op, _NAMED):
            named[op.name] = op
        else:
            bulk.append(op)


def load_package_operations(
    mfs_mount: Path | str,
    group: str,
    hostname: Optional[str] = None,
) -> list[PackageOperation]:
    """Load a group's operations, letting a machine's file override them by name."""
    bulk: list[PackageOperation] = []
    named: dict[str, PackageOperation] = {}
    _merge_file(group_packages_path(mfs_mount, group), bulk, named)
    if hostname is not None:
        _merge_file(machine_packages_path(mfs_mount, hostname), bulk, named)
    return bulk + list(named.values())


def add_packages_to_group(
    mfs_mount: Path | str,
    group: str,
    packages: Iterable[str],
    upgrade: bool = False,
) -> None:
    """Append install (or upgrade) lines for packages not yet named in the group."""
    packages = list(packages)
    path = group_packages_path(mfs_mount, group)
    path.parent.mkdir(parents=True, exist_ok=True)

    operations = parse_packages_conf(path.read_text()) if path.exists() else []
    names = {op.name for op in operations if isinstance(op, _NAMED)}
    for package in packages:
        if package in names:
            continue
        operations.append(Upgrade(package) if upgrade else Install(package))
        names.add(package)

    path.write_text(format_packages_conf(operations))
    log.info("Added %d packages to group '%s'", len(packages), group)


def record_action(
    mfs_mount: Path | str,
    action: ActionRecord,
    hostname: Optional[str] = None,
) -> Path:
    """Write an action record under actions/<hostname>/ and return its path."""
    hostname = hostname or socket.gethostname()
    directory = Path(mfs_mount) / "actions" / hostname
    directory.mkdir(parents=True, exist_ok=True)
    stamp = action.timestamp.astimezone(timezone.utc) if action.timestamp.tzinfo else action.timestamp
    path = directory / f"{stamp:%Y%m%d-%H%M%S}-{action.action_type}.json"
    path.write_text(json.dumps(action.to_dict(), indent=2))
    return path


def _read_records(directory: Path) -> Iterable[ActionRecord]:
    for path in directory.iterdir():
        if path.suffix != ".json":
            continue
        try:
            yield ActionRecord.from_dict(json.loads(path.read_text()))
        except (OSError, ValueError, TypeError, AttributeError):
            continue


def command_history(
    mfs_mount: Path | str,
    group: str,
    hostname: Optional[str] = None,
) -> list[tuple[str, Optional[datetime], Optional[datetime]]]:
    """List (command, first seen, last completed) for a group's bulk commands."""
    hostname = hostname or socket.gethostname()
    directory = Path(mfs_mount) / "actions" / hostname
    if not directory.exists():
        return []

    history: dict[str, list[Optional[datetime]]] = {}
    for record in _read_records(directory):
        if record.group != group or record.target not in HISTORY_TARGETS:
            continue
        entry = history.setdefault(record.target, [None, None])
        if entry[0] is None or record.timestamp < entry[0]:
            entry[0] = record.timestamp
        if record.status == "completed" and (entry[1] is None or record.timestamp > entry[1]):
            entry[1] = record.timestamp

    return sorted((command, added, executed) for command, (added, executed) in history.items())
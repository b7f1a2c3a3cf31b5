"""Running package operations on the local system."""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Sequence

from laszoo import packageconf
from laszoo.packageconf import (
    ActionRecord,
    Install,
    Keep,
    PackageOperation,
    Purge,
    Remove,
    UpdateAll,
    Upgrade,
    UpgradeAll,
)

log = logging.getLogger(__name__)


class PackageError(Exception):
    """Raised when no package manager is found or a command fails."""


class PackageManagerType(enum.Enum):
    APT = "apt"
    YUM = "yum"
    DNF = "dnf"
    PACMAN = "pacman"
    ZYPPER = "zypper"
    APK = "apk"

    def install_command(self, package: str) -> str:
        return {
            PackageManagerType.APT: f"apt-get install -y {package}",
            PackageManagerType.YUM: f"yum install -y {package}",
            PackageManagerType.DNF: f"dnf install -y {package}",
            PackageManagerType.PACMAN: f"pacman -S --noconfirm {package}",
            PackageManagerType.ZYPPER: f"zypper install -y {package}",
            PackageManagerType.APK: f"apk add {package}",
        }[self]

    def upgrade_command(self, package: str) -> str:
        return {
            PackageManagerType.APT: f"apt-get install --only-upgrade -y {package}",
            PackageManagerType.YUM: f"yum update -y {package}",
            PackageManagerType.DNF: f"dnf upgrade -y {package}",
            PackageManagerType.PACMAN: f"pacman -S --noconfirm {package}",
            PackageManagerType.ZYPPER: f"zypper update -y {package}",
            PackageManagerType.APK: f"apk upgrade {package}",
        }[self]

    def remove_command(self, package: str) -> str:
        return {
            PackageManagerType.APT: f"apt-get remove -y {package}",
            PackageManagerType.YUM: f"yum remove -y {package}",
            PackageManagerType.DNF: f"dnf remove -y {package}",
            PackageManagerType.PACMAN: f"pacman -R --noconfirm {package}",
            PackageManagerType.ZYPPER: f"zypper remove -y {package}",
            PackageManagerType.APK: f"apk del {package}",
        }[self]

    def purge_command(self, package: str) -> str:
        # yum and dnf have no purge; removal is the closest they offer.
        return {
            PackageManagerType.APT: f"apt-get purge -y {package}",
            PackageManagerType.YUM: f"yum remove -y {package}",
            PackageManagerType.DNF: f"dnf remove -y {package}",
            PackageManagerType.PACMAN: f"pacman -Rn --noconfirm {package}",
            PackageManagerType.ZYPPER: f"zypper remove -y --clean-deps {package}",
            PackageManagerType.APK: f"apk del --purge {package}",
        }[self]

    def update_command(self) -> str:
        # check-update exits with 100 when updates are available.
        return {
            PackageManagerType.APT: "apt-get update",
            PackageManagerType.YUM: "yum check-update || true",
            PackageManagerType.DNF: "dnf check-update || true",
            PackageManagerType.PACMAN: "pacman -Sy",
            PackageManagerType.ZYPPER: "zypper refresh",
            PackageManagerType.APK: "apk update",
        }[self]

    def system_upgrade_command(self) -> str:
        return {
            PackageManagerType.APT: "apt-get upgrade -y",
            PackageManagerType.YUM: "yum upgrade -y",
            PackageManagerType.DNF: "dnf upgrade -y",
            PackageManagerType.PACMAN: "pacman -Syu --noconfirm",
            PackageManagerType.ZYPPER: "zypper update -y",
            PackageManagerType.APK: "apk upgrade",
        }[self]


_CANDIDATES: tuple[tuple[PackageManagerType, tuple[str, ...]], ...] = (
    (PackageManagerType.APT, ("/usr/bin/apt-get",)),
    (PackageManagerType.YUM, ("/usr/bin/yum",)),
    (PackageManagerType.DNF, ("/usr/bin/dnf",)),
    (PackageManagerType.PACMAN, ("/usr/bin/pacman",)),
    (PackageManagerType.ZYPPER, ("/usr/bin/zypper",)),
    (PackageManagerType.APK, ("/usr/bin/apk", "/sbin/apk")),
)


def detect_package_manager() -> Optional[PackageManagerType]:
    """Return the first package manager found on this system, if any."""
    for kind, paths in _CANDIDATES:
        if any(os.path.exists(path) for path in paths):
            return kind
    return None


def _require_package_manager() -> PackageManagerType:
    kind = detect_package_manager()
    if kind is None:
        raise PackageError("No supported package manager found")
    return kind


async def _run_command(cmd: str) -> None:
    log.debug("Running command: %s", cmd)
    try:
        process = await asyncio.create_subprocess_exec(
            "sh",
            "-c",
            cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise PackageError(f"Command failed: {exc}") from exc
    _stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise PackageError(f"Command failed: {stderr.decode('utf-8', errors='replace')}")


class PackageManager:
    """Package operations for one host against the shared mount."""

    def __init__(self, mfs_mount: Path | str, hostname: Optional[str] = None) -> None:
        self.mfs_mount = Path(mfs_mount)
        self.hostname = hostname or socket.gethostname()

    def record_action(self, action: ActionRecord) -> Path:
        return packageconf.record_action(self.mfs_mount, action, self.hostname)

    def get_command_history(
        self, group: str
    ) -> list[tuple[str, Optional[datetime], Optional[datetime]]]:
        return packageconf.command_history(self.mfs_mount, group, self.hostname)

    def get_group_packages_path(self, group: str) -> Path:
        return packageconf.group_packages_path(self.mfs_mount, group)

    def get_machine_packages_path(self, hostname: str) -> Path:
        return packageconf.machine_packages_path(self.mfs_mount, hostname)

    def parse_packages_conf(self, content: str) -> list[PackageOperation]:
        return packageconf.parse_packages_conf(content)

    def load_package_operations(
        self, group: str, hostname: Optional[str] = None
    ) -> list[PackageOperation]:
        return packageconf.load_package_operations(self.mfs_mount, group, hostname)

    def add_packages_to_group(
        self, group: str, packages: Iterable[str], upgrade: bool = False
    ) -> None:
        packageconf.add_packages_to_group(self.mfs_mount, group, packages, upgrade)

    def _try_record(self, action_type: str, target: str, group: Optional[str],
                    status: str, details: Optional[str] = None) -> None:
        record = ActionRecord(
            timestamp=datetime.now(timezone.utc),
            hostname=self.hostname,
            action_type=action_type,
            target=target,
            group=group,
            status=status,
            details=details,
        )
        try:
            self.record_action(record)
        except OSError as exc:
            log.debug("Could not record action: %s", exc)

    async def _run_bulk(
        self,
        op: UpdateAll | UpgradeAll,
        command: str,
        group: Optional[str],
    ) -> None:
        if isinstance(op, UpdateAll):
            action_type, target, verb = "package_update_all", "++update", "update"
        else:
            action_type, target, verb = "package_upgrade_all", "++upgrade", "upgrade"

        self._try_record(action_type, target, group, "started")
        if op.start_action is not None:
            log.info("Running pre-%s action: %s", verb, op.start_action)
            await _run_command(op.start_action)

        try:
            await _run_command(command)
        except PackageError as exc:
            self._try_record(action_type, target, group, "failed", f"Error: {exc}")
            raise
        self._try_record(action_type, target, group, "completed")

        if op.end_action is not None:
            log.info("Running post-%s action: %s", verb, op.end_action)
            await _run_command(op.end_action)

    async def apply_operations_with_group(
        self, operations: Sequence[PackageOperation], group: Optional[str] = None
    ) -> None:
        """Carry out operations in order, recording bulk ones under the group."""
        pkg_mgr = _require_package_manager()
        for op in operations:
            if isinstance(op, Install):
                log.info("Installing package: %s", op.name)
                await _run_command(pkg_mgr.install_command(op.name))
            elif isinstance(op, Upgrade):
                log.info("Upgrading package: %s", op.name)
                await _run_command(pkg_mgr.upgrade_command(op.name))
                if op.post_action is not None:
                    log.info("Running post-upgrade action: %s", op.post_action)
                    await _run_command(op.post_action)
            elif isinstance(op, UpdateAll):
                log.info("Updating package lists")
                await self._run_bulk(op, pkg_mgr.update_command(), group)
            elif isinstance(op, UpgradeAll):
                log.info("Upgrading all packages")
                await self._run_bulk(op, pkg_mgr.system_upgrade_command(), group)
            elif isinstance(op, Remove):
                log.info("Removing package: %s", op.name)
                await _run_command(pkg_mgr.remove_command(op.name))
            elif isinstance(op, Purge):
                log.info("Purging package: %s", op.name)
                await _run_command(pkg_mgr.purge_command(op.name))
            elif isinstance(op, Keep):
                log.debug("Keeping package: %s (no action needed)", op.name)
            else:
                raise TypeError(f"not a package operation: {op!r}")

    async def apply_operations(self, operations: Sequence[PackageOperation]) -> None:
        await self.apply_operations_with_group(operations, None)

    async def system_update(self, pkg_mgr: PackageManagerType) -> None:
        await _run_command(pkg_mgr.update_command())

    async def system_upgrade(self, pkg_mgr: PackageManagerType) -> None:
        await _run_command(pkg_mgr.system_upgrade_command())
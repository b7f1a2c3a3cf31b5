"""Installation and control of the systemd service."""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

SERVICE_PATH = "/etc/systemd/system/laszoo.service"
DEFAULTS_PATH = "/etc/default/laszoo"

_DEFAULTS_TEMPLATE = """# Laszoo service configuration
# This file is sourced by the systemd service

# User to run the service as
LASZOO_USER="{user}"

# Enable hard mode (propagate deletions)
LASZOO_HARD="{hard}"

# Additional arguments for laszoo watch
# LASZOO_EXTRA_ARGS="--group mygroup"
LASZOO_EXTRA_ARGS=""

# Mount point for MooseFS/CephFS
LASZOO_MOUNT="/mnt/laszoo"
"""

_SERVICE_TEMPLATE = """[Unit]
Description=Laszoo Configuration Management
After=network.target
# Wait for MooseFS/CephFS mount
RequiresMountsFor=/mnt/laszoo

[Service]
Type=simple
User={user}
Group={user}
# Source defaults file
EnvironmentFile=-/etc/default/laszoo
# Build command with conditional arguments
ExecStartPre=/bin/bash -c 'if ! mountpoint -q ${{LASZOO_MOUNT:-/mnt/laszoo}}; then echo "Warning: ${{LASZOO_MOUNT:-/mnt/laszoo}} is not mounted"; fi'
ExecStart=/bin/bash -c '{binary} watch -a ${{LASZOO_HARD:+--hard}} ${{LASZOO_EXTRA_ARGS}} {extra}'
Restart=always
RestartSec=30
# Restart if MooseFS/CephFS becomes unavailable
RestartPreventExitStatus=
# Kill only the main process
KillMode=process
# Give it time to finish current operations
TimeoutStopSec=60
# Log to journal
StandardOutput=journal
StandardError=journal
# Security hardening
NoNewPrivileges=true
PrivateTmp=true
ProtectHome=false
ProtectSystem=false
# Need filesystem access
ReadWritePaths=/

[Install]
WantedBy=multi-user.target
"""


class ServiceError(Exception):
    """Raised when the service cannot be installed, removed or queried."""


def render_defaults_file(hard: bool, user: str) -> str:
    return _DEFAULTS_TEMPLATE.format(user=user, hard="true" if hard else "false")


def render_service_file(binary_path: str, user: str, extra_args: str | None) -> str:
    return _SERVICE_TEMPLATE.format(user=user, binary=binary_path, extra=extra_args or "")


def _write(path: str, content: str) -> None:
    try:
        Path(path).write_text(content)
    except OSError as exc:
        raise ServiceError(f"Failed to write {path}: {exc}") from exc


def _systemctl(*args: str, failure: str, check: bool = True) -> subprocess.CompletedProcess:
    try:
        result = subprocess.run(
            ["systemctl", *args],
            capture_output=True,
            text=True,
            errors="replace",
        )
    except OSError as exc:
        raise ServiceError(f"{failure}: {exc}") from exc
    if check and result.returncode != 0:
        raise ServiceError(f"{failure}: {result.stderr}")
    return result


class ServiceManager:
    """Manages the laszoo systemd unit."""

    def __init__(self, binary_path: str | None = None) -> None:
        self.binary_path = binary_path or os.path.abspath(sys.argv[0])

    @staticmethod
    def _is_root() -> bool:
        geteuid = getattr(os, "geteuid", None)
        return geteuid is not None and geteuid() == 0

    def install(self, hard: bool = False, user: str = "root", extra_args: str | None = None) -> None:
        if not self._is_root():
            raise ServiceError(
                "Service installation requires root privileges. Please run with sudo."
            )
        _write(DEFAULTS_PATH, render_defaults_file(hard, user))
        _write(SERVICE_PATH, render_service_file(self.binary_path, user, extra_args))

        _systemctl("daemon-reload", failure="Failed to reload systemd")
        _systemctl("enable", "laszoo.service", failure="Failed to enable service")
        _systemctl("start", "laszoo.service", failure="Failed to start service")

        print("✓ Laszoo service installed and started successfully")
        print(f"  - Service runs as user: {user}")
        if hard:
            print("  - Hard mode enabled (propagates deletions)")
        print("\nUse 'systemctl status laszoo' to check service status")

    def uninstall(self) -> None:
        if not self._is_root():
            raise ServiceError(
                "Service uninstallation requires root privileges. Please run with sudo."
            )
        for action in ("stop", "disable"):
            try:
                _systemctl(action, "laszoo.service", failure=f"Failed to {action} service", check=False)
            except ServiceError:
                pass

        for path in (SERVICE_PATH, DEFAULTS_PATH):
            Path(path).unlink(missing_ok=True)

        _systemctl("daemon-reload", failure="Failed to reload systemd")
        print("✓ Laszoo service uninstalled successfully")

    def status(self) -> str:
        """Print and return the output of ``systemctl status``."""
        result = _systemctl(
            "status", "laszoo", "--no-pager",
            failure="Failed to check service status",
            check=False,
        )
        print(result.stdout, end="")
        if result.stderr:
            print(result.stderr, end="", file=sys.stderr)
        return result.stdout
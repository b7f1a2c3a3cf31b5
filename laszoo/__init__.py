"""Templates, package lists, a systemd unit and a web interface for configuration management."""

__version__ = "0.1.0"

__all__ = [
    "template",
    "service",
    "packageconf",
    "packages",
    "webstate",
    "webserver",
]
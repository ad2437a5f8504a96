from . import heartbeat, maintenance, site_sync  # noqa: F401

__all__ = [
    "heartbeat",
    "maintenance",
    "site_sync",
]

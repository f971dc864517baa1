from __future__ import annotations

import logging

_ROOT_LOGGER = "rannx"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger nested under the ``rannx`` namespace."""

    if not name:
        return logging.getLogger(_ROOT_LOGGER)
    if name == _ROOT_LOGGER or name.startswith(f"{_ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


__all__ = ["get_logger"]

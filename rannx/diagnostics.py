from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator

try:  # pragma: no cover - resource is POSIX-only
    import resource
except ModuleNotFoundError:  # pragma: no cover - depends on platform
    resource = None  # type: ignore

from rannx import config as cx_config


@dataclass
class _ResourceSnapshot:
    cpu_user: float
    cpu_system: float
    max_rss_bytes: int


@dataclass
class OperationLog:
    """Mutable record attached to a logged operation."""

    name: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_metadata(self, **values: Any) -> None:
        self.metadata.update(values)


def _snapshot() -> _ResourceSnapshot | None:
    if resource is None:
        return None
    usage = resource.getrusage(resource.RUSAGE_SELF)
    # ru_maxrss is reported in KiB on Linux.
    return _ResourceSnapshot(
        cpu_user=float(usage.ru_utime),
        cpu_system=float(usage.ru_stime),
        max_rss_bytes=int(usage.ru_maxrss) * 1024,
    )


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.6g}"
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


@contextmanager
def log_operation(
    logger: logging.Logger,
    name: str,
    *,
    level: int = logging.INFO,
) -> Iterator[OperationLog]:
    """Time an operation and emit a single ``op=<name> key=value`` record.

    Resource usage (CPU time, RSS growth) is only sampled when diagnostics are
    enabled in the active runtime; otherwise those fields read ``NA``.
    """

    runtime = cx_config.runtime_config()
    op_log = OperationLog(name=name)
    before = _snapshot() if runtime.enable_diagnostics else None
    start = time.perf_counter()
    try:
        yield op_log
    except Exception as exc:
        op_log.add_metadata(error=type(exc).__name__)
        raise
    finally:
        wall_ms = (time.perf_counter() - start) * 1e3
        after = _snapshot() if before is not None else None
        if before is not None and after is not None:
            cpu_user = f"{(after.cpu_user - before.cpu_user) * 1e3:.3f}"
            cpu_system = f"{(after.cpu_system - before.cpu_system) * 1e3:.3f}"
            rss_delta = str(after.max_rss_bytes - before.max_rss_bytes)
        else:
            cpu_user = cpu_system = rss_delta = "NA"
        fields = [
            f"op={name}",
            f"wall_ms={wall_ms:.3f}",
            f"cpu_user_ms={cpu_user}",
            f"cpu_system_ms={cpu_system}",
            f"rss_delta={rss_delta}",
        ]
        fields.extend(
            f"{key}={_format_value(value)}" for key, value in op_log.metadata.items()
        )
        logger.log(level, " ".join(fields))


__all__ = ["OperationLog", "log_operation"]

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

_LOGGER = logging.getLogger("rannx")

_SUPPORTED_SORT_POLICIES = {"nearest", "furthest"}
_DEFAULT_METRIC = "euclidean"
_DEFAULT_LEAF_SIZE = 20
_DEFAULT_TAU = 0.05
_DEFAULT_ALPHA = 0.95
_DEFAULT_SINGLE_SAMPLE_LIMIT = 20
_DEFAULT_SORT_POLICY = "nearest"


def _bool_from_env(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_optional_int(raw: str | None) -> int | None:
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer value '{raw}'") from exc


def _parse_optional_float(raw: str | None, *, default: float) -> float:
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid float value '{raw}'") from exc


def _parse_positive_int(raw: str | None, *, default: int, name: str) -> int:
    value = _parse_optional_int(raw)
    if value is None:
        return default
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}.")
    return value


def _parse_fraction(raw: str | None, *, default: float, name: str) -> float:
    value = _parse_optional_float(raw, default=default)
    if not math.isfinite(value) or value < 0.0:
        raise ValueError(f"{name} must be a finite non-negative fraction, got {value}.")
    return value


def _parse_sort_policy(value: str | None) -> str:
    if value is None or value.strip() == "":
        return _DEFAULT_SORT_POLICY
    policy = value.strip().lower()
    if policy not in _SUPPORTED_SORT_POLICIES:
        raise ValueError(
            f"Unsupported sort policy '{policy}'. Expected one of {_SUPPORTED_SORT_POLICIES}."
        )
    return policy


@dataclass(frozen=True)
class RuntimeConfig:
    log_level: str
    enable_diagnostics: bool
    metric: str
    sort_policy: str
    seed: int | None
    leaf_size: int
    tau: float
    alpha: float
    single_sample_limit: int
    sample_at_leaves: bool
    first_leaf_exact: bool

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        log_level = os.getenv("RANNX_LOG_LEVEL", "INFO").strip().upper() or "INFO"
        enable_diagnostics = _bool_from_env(
            os.getenv("RANNX_ENABLE_DIAGNOSTICS"), default=True
        )
        metric = os.getenv("RANNX_METRIC", _DEFAULT_METRIC).strip().lower() or _DEFAULT_METRIC
        sort_policy = _parse_sort_policy(os.getenv("RANNX_SORT_POLICY"))
        seed = _parse_optional_int(os.getenv("RANNX_SEED"))
        leaf_size = _parse_positive_int(
            os.getenv("RANNX_LEAF_SIZE"), default=_DEFAULT_LEAF_SIZE, name="RANNX_LEAF_SIZE"
        )
        tau = _parse_fraction(os.getenv("RANNX_TAU"), default=_DEFAULT_TAU, name="RANNX_TAU")
        alpha = _parse_fraction(
            os.getenv("RANNX_ALPHA"), default=_DEFAULT_ALPHA, name="RANNX_ALPHA"
        )
        single_sample_limit = _parse_positive_int(
            os.getenv("RANNX_SINGLE_SAMPLE_LIMIT"),
            default=_DEFAULT_SINGLE_SAMPLE_LIMIT,
            name="RANNX_SINGLE_SAMPLE_LIMIT",
        )
        sample_at_leaves = _bool_from_env(os.getenv("RANNX_SAMPLE_AT_LEAVES"), default=False)
        first_leaf_exact = _bool_from_env(os.getenv("RANNX_FIRST_LEAF_EXACT"), default=False)
        return cls(
            log_level=log_level,
            enable_diagnostics=enable_diagnostics,
            metric=metric,
            sort_policy=sort_policy,
            seed=seed,
            leaf_size=leaf_size,
            tau=tau,
            alpha=alpha,
            single_sample_limit=single_sample_limit,
            sample_at_leaves=sample_at_leaves,
            first_leaf_exact=first_leaf_exact,
        )


def _configure_logging(level: str) -> None:
    logger = logging.getLogger("rannx")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(level)
        formatter = logging.Formatter("%(levelname)s %(name)s: %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)


@dataclass
class RuntimeContext:
    """Active runtime configuration plus its one-time side effects."""

    config: RuntimeConfig

    def activate(self) -> None:
        _configure_logging(self.config.log_level)


_CONTEXT_CACHE: Optional[RuntimeContext] = None


def runtime_context() -> RuntimeContext:
    """Return the cached runtime context, constructing it if necessary."""

    global _CONTEXT_CACHE
    if _CONTEXT_CACHE is None:
        context = RuntimeContext(config=RuntimeConfig.from_env())
        context.activate()
        _CONTEXT_CACHE = context
    return _CONTEXT_CACHE


def current_runtime_context() -> RuntimeContext | None:
    return _CONTEXT_CACHE


def runtime_config() -> RuntimeConfig:
    return runtime_context().config


def configure_runtime(config: RuntimeConfig) -> RuntimeContext:
    """Force the active runtime context to use ``config`` instead of env defaults."""

    global _CONTEXT_CACHE
    context = RuntimeContext(config=config)
    context.activate()
    _CONTEXT_CACHE = context
    _LOGGER.debug("Runtime configured: %s", describe_runtime())
    return context


def reset_runtime_context() -> None:
    """Clear the cached runtime context (used in tests)."""

    global _CONTEXT_CACHE
    _CONTEXT_CACHE = None


def reset_runtime_config_cache() -> None:
    reset_runtime_context()


def describe_runtime() -> Dict[str, Any]:
    """Return a serialisable view of the active runtime configuration."""

    config = runtime_config()
    return {
        "log_level": config.log_level,
        "enable_diagnostics": config.enable_diagnostics,
        "metric": config.metric,
        "sort_policy": config.sort_policy,
        "seed": config.seed,
        "leaf_size": config.leaf_size,
        "tau": config.tau,
        "alpha": config.alpha,
        "single_sample_limit": config.single_sample_limit,
        "sample_at_leaves": config.sample_at_leaves,
        "first_leaf_exact": config.first_leaf_exact,
    }


__all__ = [
    "RuntimeConfig",
    "RuntimeContext",
    "runtime_context",
    "current_runtime_context",
    "runtime_config",
    "configure_runtime",
    "reset_runtime_context",
    "reset_runtime_config_cache",
    "describe_runtime",
]

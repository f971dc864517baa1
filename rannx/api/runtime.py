from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict

from rannx import config as cx_config


def _apply_if_present(target: Dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        target[key] = value


def _active_runtime_config() -> cx_config.RuntimeConfig:
    active = cx_config.current_runtime_context()
    if active is not None:
        return active.config
    return cx_config.RuntimeConfig.from_env()


_ATTR_TO_FIELD = {
    "metric": "metric",
    "sort_policy": "sort_policy",
    "diagnostics": "enable_diagnostics",
    "log_level": "log_level",
    "seed": "seed",
    "leaf_size": "leaf_size",
    "tau": "tau",
    "alpha": "alpha",
    "single_sample_limit": "single_sample_limit",
    "sample_at_leaves": "sample_at_leaves",
    "first_leaf_exact": "first_leaf_exact",
}


@dataclass(frozen=True)
class Runtime:
    """Declarative runtime overrides that can activate a rannx context.

    Unset fields inherit from the environment (``RANNX_*`` variables) or from
    the ``base`` config passed to :meth:`to_config`.
    """

    metric: str | None = None
    sort_policy: str | None = None
    diagnostics: bool | None = None
    log_level: str | None = None
    seed: int | None = None
    leaf_size: int | None = None
    tau: float | None = None
    alpha: float | None = None
    single_sample_limit: int | None = None
    sample_at_leaves: bool | None = None
    first_leaf_exact: bool | None = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_config(self, base: cx_config.RuntimeConfig | None = None) -> cx_config.RuntimeConfig:
        base_config = base or cx_config.RuntimeConfig.from_env()
        updates: Dict[str, Any] = {}
        for attr, field_name in _ATTR_TO_FIELD.items():
            _apply_if_present(updates, field_name, getattr(self, attr))
        for key, value in self.extra.items():
            if key not in cx_config.RuntimeConfig.__dataclass_fields__:
                raise ValueError(f"Unknown runtime field '{key}'.")
            updates[key] = value
        if "log_level" in updates:
            updates["log_level"] = str(updates["log_level"]).upper()
        if "sort_policy" in updates:
            updates["sort_policy"] = cx_config._parse_sort_policy(str(updates["sort_policy"]))
        if not updates:
            return base_config
        return replace(base_config, **updates)

    def activate(self) -> cx_config.RuntimeContext:
        """Install this runtime as the active global context and return it."""

        config = self.to_config()
        return cx_config.configure_runtime(config)

    def describe(self) -> Dict[str, Any]:
        config = self.to_config()
        return {
            "metric": config.metric,
            "sort_policy": config.sort_policy,
            "enable_diagnostics": config.enable_diagnostics,
            "log_level": config.log_level,
            "seed": config.seed,
            "leaf_size": config.leaf_size,
            "tau": config.tau,
            "alpha": config.alpha,
            "single_sample_limit": config.single_sample_limit,
            "sample_at_leaves": config.sample_at_leaves,
            "first_leaf_exact": config.first_leaf_exact,
        }

    def with_updates(self, **kwargs: Any) -> "Runtime":
        return replace(self, **kwargs)

    @classmethod
    def from_active(cls) -> "Runtime":
        return cls.from_config(_active_runtime_config())

    @classmethod
    def from_config(cls, config: cx_config.RuntimeConfig) -> "Runtime":
        return cls(
            metric=config.metric,
            sort_policy=config.sort_policy,
            diagnostics=config.enable_diagnostics,
            log_level=config.log_level,
            seed=config.seed,
            leaf_size=config.leaf_size,
            tau=config.tau,
            alpha=config.alpha,
            single_sample_limit=config.single_sample_limit,
            sample_at_leaves=config.sample_at_leaves,
            first_leaf_exact=config.first_leaf_exact,
        )


__all__ = ["Runtime"]

import pytest

from rannx import config as cx_config
from rannx.api.runtime import Runtime


def test_runtime_config_defaults():
    runtime = cx_config.runtime_config()

    assert runtime.log_level == "INFO"
    assert runtime.enable_diagnostics is True
    assert runtime.metric == "euclidean"
    assert runtime.sort_policy == "nearest"
    assert runtime.seed is None
    assert runtime.leaf_size == 20
    assert runtime.tau == pytest.approx(0.05)
    assert runtime.alpha == pytest.approx(0.95)
    assert runtime.single_sample_limit == 20
    assert runtime.sample_at_leaves is False
    assert runtime.first_leaf_exact is False


def test_sampling_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RANNX_TAU", "0.1")
    monkeypatch.setenv("RANNX_ALPHA", "0.99")
    monkeypatch.setenv("RANNX_SINGLE_SAMPLE_LIMIT", "5")
    monkeypatch.setenv("RANNX_SAMPLE_AT_LEAVES", "yes")
    monkeypatch.setenv("RANNX_FIRST_LEAF_EXACT", "1")
    cx_config.reset_runtime_config_cache()

    runtime = cx_config.runtime_config()

    assert runtime.tau == pytest.approx(0.1)
    assert runtime.alpha == pytest.approx(0.99)
    assert runtime.single_sample_limit == 5
    assert runtime.sample_at_leaves is True
    assert runtime.first_leaf_exact is True


def test_seed_and_leaf_size_parsing(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RANNX_SEED", "123")
    monkeypatch.setenv("RANNX_LEAF_SIZE", "8")
    cx_config.reset_runtime_config_cache()

    runtime = cx_config.runtime_config()
    assert runtime.seed == 123
    assert runtime.leaf_size == 8


@pytest.mark.parametrize(
    "key, value",
    [
        ("RANNX_SEED", "abc"),
        ("RANNX_LEAF_SIZE", "0"),
        ("RANNX_TAU", "-0.5"),
        ("RANNX_ALPHA", "nan"),
        ("RANNX_SORT_POLICY", "sideways"),
    ],
)
def test_invalid_values_raise(monkeypatch: pytest.MonkeyPatch, key: str, value: str):
    monkeypatch.setenv(key, value)
    cx_config.reset_runtime_config_cache()

    with pytest.raises(ValueError):
        cx_config.runtime_config()


def test_disable_diagnostics_flag(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RANNX_ENABLE_DIAGNOSTICS", "0")
    cx_config.reset_runtime_config_cache()

    assert cx_config.runtime_config().enable_diagnostics is False


def test_sort_policy_override(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RANNX_SORT_POLICY", " Furthest ")
    cx_config.reset_runtime_config_cache()

    assert cx_config.runtime_config().sort_policy == "furthest"


def test_runtime_config_from_env_matches_cached(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RANNX_LOG_LEVEL", "warning")
    cx_config.reset_runtime_config_cache()

    direct = cx_config.RuntimeConfig.from_env()
    cached = cx_config.runtime_config()

    assert direct == cached
    assert cached.log_level == "WARNING"


def test_describe_runtime_reports_expected_fields():
    summary = cx_config.describe_runtime()

    assert summary["log_level"] == "INFO"
    assert summary["enable_diagnostics"] is True
    assert summary["metric"] == "euclidean"
    assert summary["sort_policy"] == "nearest"
    assert summary["seed"] is None
    assert summary["tau"] == pytest.approx(0.05)
    assert summary["alpha"] == pytest.approx(0.95)
    assert summary["single_sample_limit"] == 20


def test_configure_runtime_replaces_cached_context():
    base = cx_config.RuntimeConfig.from_env()
    custom = Runtime(tau=0.2, seed=4).to_config(base)

    context = cx_config.configure_runtime(custom)

    assert cx_config.current_runtime_context() is context
    assert cx_config.runtime_config().tau == pytest.approx(0.2)
    assert cx_config.runtime_config().seed == 4


def test_runtime_overrides_only_touch_set_fields(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("RANNX_ALPHA", "0.8")
    base = cx_config.RuntimeConfig.from_env()

    config = Runtime(metric="manhattan", sort_policy="FURTHEST", log_level="debug").to_config(base)

    assert config.metric == "manhattan"
    assert config.sort_policy == "furthest"
    assert config.log_level == "DEBUG"
    assert config.alpha == pytest.approx(0.8)
    assert Runtime().to_config(base) is base


def test_runtime_extra_rejects_unknown_fields():
    with pytest.raises(ValueError):
        Runtime(extra={"not_a_field": 1}).to_config()
    config = Runtime(extra={"leaf_size": 4}).to_config()
    assert config.leaf_size == 4


def test_runtime_activate_and_round_trip():
    Runtime(diagnostics=False, single_sample_limit=3).activate()

    active = Runtime.from_active()

    assert active.diagnostics is False
    assert active.single_sample_limit == 3
    assert active.describe()["single_sample_limit"] == 3
    assert active.with_updates(tau=0.3).tau == pytest.approx(0.3)

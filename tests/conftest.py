from __future__ import annotations

import pytest

from rannx import config as cx_config

_RANNX_ENV = (
    "RANNX_LOG_LEVEL",
    "RANNX_ENABLE_DIAGNOSTICS",
    "RANNX_METRIC",
    "RANNX_SORT_POLICY",
    "RANNX_SEED",
    "RANNX_LEAF_SIZE",
    "RANNX_TAU",
    "RANNX_ALPHA",
    "RANNX_SINGLE_SAMPLE_LIMIT",
    "RANNX_SAMPLE_AT_LEAVES",
    "RANNX_FIRST_LEAF_EXACT",
)


@pytest.fixture(autouse=True)
def _isolated_runtime(monkeypatch: pytest.MonkeyPatch):
    for key in _RANNX_ENV:
        monkeypatch.delenv(key, raising=False)
    cx_config.reset_runtime_config_cache()
    yield
    cx_config.reset_runtime_config_cache()

"""Shared fixtures for blockflow tests."""

import pytest

_ENV_VARS = (
    "BLOCKFLOW_MAX_ITERATIONS",
    "BLOCKFLOW_ON_NODE_ERROR",
    "BLOCKFLOW_MODEL",
    "BLOCKFLOW_STEP_DELAY_MS",
    "BLOCKFLOW_HOST",
    "BLOCKFLOW_PORT",
    "LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point config at an empty location so a developer's ~/.blockflow never leaks in."""
    config_path = tmp_path / "configuration.json"
    monkeypatch.setenv("BLOCKFLOW_CONFIG", str(config_path))
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return config_path


@pytest.fixture(autouse=True)
def reset_trace_context():
    from blockflow.observability import clear_trace_context

    clear_trace_context()
    yield
    clear_trace_context()

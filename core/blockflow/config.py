"""Shared blockflow configuration utilities.

Centralises reading of ~/.blockflow/configuration.json so that the engine,
the server and the CLI share one implementation. Environment variables
override file values.

Example file:
    {
      "engine": {"default_max_iterations": 10, "on_node_error": "block"},
      "server": {"host": "0.0.0.0", "port": 4000},
      "llm": {"provider": "anthropic", "model": "claude-haiku-4-5-20251001",
              "api_key_env_var": "ANTHROPIC_API_KEY"},
      "http": {"timeout_seconds": 30}
    }
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

BLOCKFLOW_CONFIG_FILE = Path.home() / ".blockflow" / "configuration.json"

DEFAULT_MODEL = "anthropic/claude-haiku-4-5-20251001"
DEFAULT_MAX_TOKENS = 1024


def get_config_path() -> Path:
    """Config file path, overridable with BLOCKFLOW_CONFIG."""
    override = os.environ.get("BLOCKFLOW_CONFIG")
    return Path(override) if override else BLOCKFLOW_CONFIG_FILE


def get_blockflow_config() -> dict[str, Any]:
    """Load configuration from the config file. Missing or broken file -> {}."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def _section(name: str) -> dict[str, Any]:
    value = get_blockflow_config().get(name, {})
    return value if isinstance(value, dict) else {}


def _as_int(raw: Any, default: int) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _as_float(raw: Any, default: float) -> float:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _int_setting(env_var: str, section: str, key: str, default: int) -> int:
    """Integer setting: environment first, then the config file, then ``default``."""
    file_value = _as_int(_section(section).get(key), default)
    return _as_int(os.environ.get(env_var), file_value)


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_default_max_iterations() -> int:
    value = _int_setting("BLOCKFLOW_MAX_ITERATIONS", "engine", "default_max_iterations", 10)
    return value if value > 0 else 10


def get_on_node_error() -> str:
    value = os.environ.get("BLOCKFLOW_ON_NODE_ERROR") or _section("engine").get(
        "on_node_error", "block"
    )
    return value if value in ("block", "continue") else "block"


def get_preferred_model() -> str:
    """Return the preferred LLM model string (e.g. 'anthropic/claude-haiku-4-5-20251001')."""
    if os.environ.get("BLOCKFLOW_MODEL"):
        return os.environ["BLOCKFLOW_MODEL"]
    llm = _section("llm")
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return DEFAULT_MODEL


def get_api_key() -> str | None:
    """Return the API key from the environment variable named in configuration."""
    api_key_env_var = _section("llm").get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Execution policy for workflow runs."""

    default_max_iterations: int = field(default_factory=get_default_max_iterations)
    # Cosmetic pause between steps so UIs can animate progress
    step_delay_ms: int = field(
        default_factory=lambda: max(
            _int_setting("BLOCKFLOW_STEP_DELAY_MS", "engine", "step_delay_ms", 0), 0
        )
    )
    # "block": skip nodes whose upstream failed; "continue": run them anyway
    on_node_error: Literal["block", "continue"] = field(default_factory=get_on_node_error)


@dataclass
class ServerConfig:
    """Configuration for the workflow HTTP server."""

    host: str = field(
        default_factory=lambda: os.environ.get("BLOCKFLOW_HOST")
        or _section("server").get("host", "127.0.0.1")
    )
    port: int = field(
        default_factory=lambda: _int_setting("BLOCKFLOW_PORT", "server", "port", 4000)
    )


@dataclass
class LLMConfig:
    """LLM settings for the AI blocks."""

    model: str = field(default_factory=get_preferred_model)
    max_tokens: int = field(
        default_factory=lambda: _as_int(_section("llm").get("max_tokens"), DEFAULT_MAX_TOKENS)
    )
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str | None = None


@dataclass
class HttpConfig:
    """Outbound HTTP settings for integration blocks and webhook actions."""

    timeout_seconds: float = field(
        default_factory=lambda: _as_float(_section("http").get("timeout_seconds"), 30.0)
    )
    max_body_chars: int = field(
        default_factory=lambda: _as_int(_section("http").get("max_body_chars"), 500 * 1024)
    )
    user_agent: str = "blockflow-block-runner/1.0"

"""Engine settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``SATS_ENGINE_``, nested via ``__``)
2. YAML config file (``SATS_ENGINE_CONFIG_PATH`` env var or ``AppConfig.from_yaml``)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class Network(enum.StrEnum):
    """BSV network the engine talks to."""

    MAINNET = "main"
    TESTNET = "test"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseSettings):
    """Ledger database settings."""

    model_config = SettingsConfigDict(
        env_prefix="SATS_ENGINE_DB__",
        case_sensitive=False,
    )

    dsn: str = Field(
        default="sqlite+aiosqlite:///./sats_engine.db",
        description="Async database connection string",
    )
    max_idle_connections: int = 5
    max_open_connections: int = 10
    debug_sql: bool = False


class FeeConfig(BaseSettings):
    """Fee rate policy (satoshis per byte)."""

    model_config = SettingsConfigDict(
        env_prefix="SATS_ENGINE_FEE__",
        case_sensitive=False,
    )

    default_rate: float = 0.05
    min_rate: float = 0.01
    max_rate: float = 1.0
    quote_ttl_seconds: int = 300
    user_rate: float | None = Field(
        default=None,
        description="Fixed rate chosen by the user; overrides network quotes",
    )


class NetworkConfig(BaseSettings):
    """Chain endpoints used for broadcast, fee quotes and chain queries."""

    model_config = SettingsConfigDict(
        env_prefix="SATS_ENGINE_NETWORK__",
        case_sensitive=False,
    )

    network: Network = Network.MAINNET
    woc_url: str = "https://api.whatsonchain.com/v1/bsv"
    arc_url: str = "https://arc.gorillapool.io"
    arc_token: str = ""
    mapi_url: str = "https://mapi.gorillapool.io"
    request_timeout: float = Field(default=30.0, ge=5.0, le=30.0)
    spent_check_timeout: float = Field(default=10.0, ge=5.0, le=30.0)

    @property
    def testnet(self) -> bool:
        return self.network == Network.TESTNET


class LockConfig(BaseSettings):
    """Timelock transaction settings."""

    model_config = SettingsConfigDict(
        env_prefix="SATS_ENGINE_LOCK__",
        case_sensitive=False,
    )

    basket: str = "locks"
    selection_buffer: int = 500
    app_tag: str = "wrootz"


class TaskConfig(BaseSettings):
    """Background task settings."""

    model_config = SettingsConfigDict(
        env_prefix="SATS_ENGINE_TASK__",
        case_sensitive=False,
    )

    enabled: bool = True
    pending_sweep_period: int = 120
    pending_timeout: int = 600
    fee_refresh_period: int = 300


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    data = yaml.safe_load(p.read_text(encoding="utf-8"))
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level engine configuration.

    Loads settings from environment variables (``SATS_ENGINE_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="SATS_ENGINE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    config_path: str = ""
    account_id: int = 1

    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
    fee: FeeConfig = Field(default_factory=FeeConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    task: TaskConfig = Field(default_factory=TaskConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        for key, val in _load_yaml(config_path).items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                values[key] = {**val, **values[key]}
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` with defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))

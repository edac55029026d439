"""Configuration management for the signal engine.

Rules:
- YAML provides defaults for non-secret config.
- Secrets (Deriv token) come from .env / environment variables and override YAML.
- YAML is never injected into os.environ.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from deriv_signals.models.market_models import SymbolConfig, decimal_places_for_pip

_PLACEHOLDER_TOKENS = {"DUMMY", "PLACEHOLDER", "CHANGEME", "DONT_USE_YAML_TOKEN"}


class DerivConfig(BaseModel):
    """Deriv API configuration."""

    app_id: str = Field(default="1089", description="Deriv application ID")
    api_token: str = Field(default="", description="Deriv API token (optional for ticks/history)")
    websocket_url: str = Field(
        default="wss://ws.derivws.com/websockets/v3",
        description="Deriv WebSocket URL",
    )

    @field_validator("app_id", mode="before")
    @classmethod
    def validate_app_id(cls, v: object) -> str:
        if v is None or not str(v).isdigit():
            raise ValueError("app_id must be a non-empty numeric string")
        return str(v)

    @field_validator("api_token")
    @classmethod
    def validate_api_token(cls, v: str) -> str:
        if not v or str(v).upper() in _PLACEHOLDER_TOKENS:
            return ""
        if len(str(v)) < 10:
            raise ValueError("api_token must be at least 10 characters long")
        return str(v)

    @property
    def has_token(self) -> bool:
        return bool(self.api_token)


class StreamConfig(BaseModel):
    heartbeat_interval_seconds: float = Field(default=15.0, gt=0, le=300)
    request_timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    initial_backoff_seconds: float = Field(default=1.0, gt=0, le=60)
    max_backoff_seconds: float = Field(default=30.0, gt=0, le=600)
    max_reconnect_attempts: int = Field(default=5, ge=1, le=100)
    backoff_jitter: float = Field(default=0.0, ge=0.0, le=1.0)
    backoff_reset_after_seconds: float = Field(default=60.0, ge=0)

    @field_validator("max_backoff_seconds")
    @classmethod
    def validate_max_backoff(cls, v: float, info) -> float:
        if "initial_backoff_seconds" in info.data and v < info.data["initial_backoff_seconds"]:
            raise ValueError("max_backoff_seconds must be >= initial_backoff_seconds")
        return v


class AnalysisConfig(BaseModel):
    symbols: List[str] = Field(default=["R_10", "R_25", "R_50", "R_75", "R_100"])
    selected_symbol: str = Field(default="R_10")
    price_window: int = Field(default=50, ge=30, le=10_000)
    digit_window: int = Field(default=100, ge=1, le=10_000)
    recent_digits: int = Field(default=20, ge=1, le=1_000)
    history_count: int = Field(default=100, ge=1, le=5_000)
    min_history: int = Field(default=30, ge=26, le=10_000)
    interval_seconds: float = Field(default=120.0, ge=1, le=3600)

    @field_validator("symbols")
    @classmethod
    def validate_symbols(cls, v: List[object]) -> List[str]:
        out = [str(x).strip() for x in v if x and str(x).strip()]
        if not out:
            raise ValueError("analysis.symbols must list at least one symbol")
        return out


class SymbolOverride(BaseModel):
    pip_size: float = Field(gt=0)
    decimal_places: Optional[int] = Field(default=None, ge=0, le=10)
    display_name: str = Field(default="")


class TradingConfig(BaseModel):
    auto_trade: bool = Field(default=False)
    stake: float = Field(default=1.0, gt=0)
    currency: str = Field(default="USD")
    account_id: Optional[str] = Field(default=None)
    reconcile_interval_seconds: float = Field(default=60.0, ge=5, le=3600)
    profit_table_limit: int = Field(default=50, ge=1, le=500)


class DatabaseConfig(BaseModel):
    class SQLiteConfig(BaseModel):
        path: str = Field(default="data/deriv_signals.db")

    sqlite: SQLiteConfig = Field(default_factory=SQLiteConfig)


class APIConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1024, le=65535)
    cors_origins: List[str] = Field(default=["http://localhost:3000", "http://localhost:5173"])


class MonitoringConfig(BaseModel):
    metrics_interval_seconds: float = Field(default=5.0, ge=1, le=300)
    metrics_path: str = Field(default="data/metrics.json")


class DevelopmentConfig(BaseModel):
    enable_debug_logging: bool = Field(default=False)
    dry_run: bool = Field(default=True)


class SignalEngineConfig(BaseSettings):
    """Main configuration; YAML is the base, env vars re-applied on top."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    deriv: DerivConfig = Field(default_factory=DerivConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    symbols: Dict[str, SymbolOverride] = Field(default_factory=dict)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    development: DevelopmentConfig = Field(default_factory=DevelopmentConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if str(v).upper() not in valid:
            raise ValueError(f"Log level must be one of: {sorted(valid)}")
        return str(v).upper()

    def symbol_configs(self) -> Dict[str, SymbolConfig]:
        out: Dict[str, SymbolConfig] = {}
        for name, o in self.symbols.items():
            places = o.decimal_places if o.decimal_places is not None else decimal_places_for_pip(o.pip_size)
            out[name] = SymbolConfig(symbol=name, pip_size=o.pip_size, decimal_places=places, display_name=o.display_name)
        return out

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "SignalEngineConfig":
        """Parse YAML, validate, then apply env overrides (DERIV__API_TOKEN, ...)."""
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        _apply_env_overrides(data)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"Configuration validation error: {e}")


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    deriv = data.setdefault("deriv", {}) or {}
    data["deriv"] = deriv
    if os.getenv("DERIV__APP_ID"):
        deriv["app_id"] = os.environ["DERIV__APP_ID"]
    if os.getenv("DERIV__API_TOKEN"):
        deriv["api_token"] = os.environ["DERIV__API_TOKEN"]
    if os.getenv("LOG_LEVEL"):
        data["log_level"] = os.environ["LOG_LEVEL"]

    # development.dry_run: false = place real orders on Deriv
    dry_run_env = os.getenv("DEVELOPMENT__DRY_RUN")
    if dry_run_env is not None:
        dev = data.setdefault("development", {}) or {}
        data["development"] = dev
        dev["dry_run"] = str(dry_run_env).lower() in ("1", "true", "yes")


def load_config(config_path: Optional[Path] = None) -> SignalEngineConfig:
    """Load configuration from YAML + .env (env wins for secrets)."""
    load_dotenv(dotenv_path=Path(".env"))

    if config_path is None:
        possible_paths = [Path("config/default.yaml"), Path("config/config.yaml"), Path("config.yaml")]
        for path in possible_paths:
            if path.exists():
                config_path = path
                break
        else:
            raise FileNotFoundError("No configuration file found. Create config/default.yaml or specify config path.")

    return SignalEngineConfig.from_yaml(config_path)

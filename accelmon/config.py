from __future__ import annotations

from pathlib import Path
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.models import AXES


class AxisBounds(BaseModel):
    """Inclusive alarm band for a single axis."""

    min: float = -10.0
    max: float = 10.0

    @model_validator(mode="after")
    def _check_order(self) -> "AxisBounds":
        if self.min > self.max:
            raise ValueError(f"min ({self.min}) must not exceed max ({self.max})")
        return self


def _default_thresholds() -> Dict[str, AxisBounds]:
    return {axis: AxisBounds() for axis in AXES}


class AlarmConfig(BaseModel):
    thresholds: Dict[str, AxisBounds] = Field(default_factory=_default_thresholds)
    history_limit: int = Field(100, ge=1, description="Alarm onsets kept in history")
    threshold_file: Optional[Path] = Field(
        None, description="YAML file the thresholds are loaded from and saved to"
    )

    @field_validator("thresholds")
    @classmethod
    def _fill_axes(cls, v: Dict[str, AxisBounds]) -> Dict[str, AxisBounds]:
        unknown = set(v) - set(AXES)
        if unknown:
            raise ValueError(f"Unknown axes in thresholds: {sorted(unknown)}")
        merged = _default_thresholds()
        merged.update(v)
        return merged


class PredictionConfig(BaseModel):
    enabled: bool = False
    method: Literal["linear", "exponential"] = "linear"
    linear_points: int = Field(10, ge=1)
    exponential_points: int = Field(5, ge=1)
    alpha: float = Field(0.3, gt=0.0, le=1.0, description="Exponential smoothing factor")


class RuntimeConfig(BaseModel):
    refresh_interval_sec: float = Field(5.0, gt=0.0, description="Fetch cadence")
    fetch_limit: int = Field(20, ge=1, description="Records requested per fetch cycle")
    buffer_size: int = Field(1000, ge=1, description="Rolling buffer cap")
    time_range: Literal["5m", "15m", "1h", "24h"] = "5m"
    mode: Literal["poll", "watch"] = "poll"
    alarms: AlarmConfig = Field(default_factory=AlarmConfig)
    prediction: PredictionConfig = Field(default_factory=PredictionConfig)
    network_timeout_sec: float = 10.0
    max_retries: int = 2
    backoff_base_sec: float = 0.2
    backoff_cap_sec: float = 2.0


class EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    LOG_LEVEL: str = "INFO"

    # Firebase Realtime Database; in-memory store when unset
    FIREBASE_DB_URL: Optional[str] = None
    FIREBASE_AUTH_TOKEN: Optional[str] = None
    SIMULATOR_USER_ID: str = "simulator_user"


class AppConfig(BaseModel):
    env: EnvSettings
    runtime: RuntimeConfig

    # Allow tests to pass a plain dict for env
    @field_validator("env", mode="before")
    @classmethod
    def _coerce_env(cls, v):  # type: ignore[no-untyped-def]
        if isinstance(v, dict):
            return EnvSettings(**v)
        return v

    @staticmethod
    def load(config_path: Optional[Path] = None) -> "AppConfig":
        env = EnvSettings()  # loads from environment and .env

        runtime = RuntimeConfig()
        if config_path is None:
            default_path = Path("config.yaml")
            config_path = default_path if default_path.exists() else None

        if config_path and Path(config_path).exists():
            with open(config_path, "r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            try:
                runtime = RuntimeConfig(**raw)
            except ValidationError as ve:
                raise ValueError(f"Invalid config.yaml: {ve}")

        return AppConfig(env=env, runtime=runtime)


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load merged configuration from environment and optional YAML."""

    return AppConfig.load(config_path)

"""Pipeline and watchdog configuration via environment variables."""

from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root .env (parent of backend/).
_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class PipelineSettings(BaseSettings):
    # Download workers
    parallel_workers: int = 1
    tech_pack_dir: Path = Path("out")
    # Defaults to <tech_pack_dir>/inputs
    input_dir: Path = Path("out/inputs")
    max_age_days: int = Field(7, validation_alias="TECH_PACK_MAX_AGE_DAYS")

    # Acquisition engine
    tech_pack_url_template: str = ""
    tech_pack_auth_token: str | None = None
    artifact_public_base_url: str | None = None

    # Liveness and extraction pacing
    heartbeat_interval_seconds: float = 30.0
    extraction_delay_seconds: float = 5.0
    extraction_max_retries: int = 3

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _default_input_dir(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("input_dir"):
            data = {**data, "input_dir": Path(data.get("tech_pack_dir") or "out") / "inputs"}
        return data

    @field_validator("parallel_workers")
    @classmethod
    def _at_least_one_worker(cls, v: int) -> int:
        return max(1, v)

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls()


class WatchdogSettings(BaseSettings):
    check_interval_seconds: float = 60.0
    stale_threshold_seconds: float = 120.0
    failed_retry_window_seconds: float = 300.0
    # Jobs make progress on each restart, so allow plenty of attempts.
    max_restart_attempts: int = 10

    model_config = SettingsConfigDict(
        env_prefix="WATCHDOG_",
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    @classmethod
    def from_env(cls) -> "WatchdogSettings":
        return cls()

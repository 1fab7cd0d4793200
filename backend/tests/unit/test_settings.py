"""Unit tests for environment-driven settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from src.settings import PipelineSettings, WatchdogSettings


class TestPipelineSettings:
    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("INPUT_DIR", raising=False)
        monkeypatch.setenv("PARALLEL_WORKERS", "4")
        monkeypatch.setenv("TECH_PACK_DIR", "/data/techpacks")
        monkeypatch.setenv("TECH_PACK_MAX_AGE_DAYS", "3")
        monkeypatch.setenv("TECH_PACK_URL_TEMPLATE", "https://plm.example.com/{key}.pdf")
        monkeypatch.setenv("EXTRACTION_DELAY_SECONDS", "1.5")

        settings = PipelineSettings.from_env()

        assert settings.parallel_workers == 4
        assert settings.tech_pack_dir == Path("/data/techpacks")
        assert settings.input_dir == Path("/data/techpacks/inputs")
        assert settings.max_age_days == 3
        assert settings.tech_pack_url_template == "https://plm.example.com/{key}.pdf"
        assert settings.extraction_delay_seconds == 1.5

    def test_empty_values_fall_back_to_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PARALLEL_WORKERS", "")
        monkeypatch.setenv("TECH_PACK_AUTH_TOKEN", "")
        monkeypatch.delenv("TECH_PACK_DIR", raising=False)
        monkeypatch.delenv("INPUT_DIR", raising=False)

        settings = PipelineSettings.from_env()

        assert settings.parallel_workers == 1
        assert settings.tech_pack_auth_token is None
        assert settings.input_dir == Path("out/inputs")

    def test_explicit_input_dir_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TECH_PACK_DIR", "/data/techpacks")
        monkeypatch.setenv("INPUT_DIR", "/data/uploads")

        assert PipelineSettings.from_env().input_dir == Path("/data/uploads")

    def test_worker_count_is_at_least_one(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PARALLEL_WORKERS", "0")

        assert PipelineSettings.from_env().parallel_workers == 1

    def test_rejects_non_numeric_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PARALLEL_WORKERS", "abc")

        with pytest.raises(ValidationError, match="parallel_workers"):
            PipelineSettings.from_env()


class TestWatchdogSettings:
    def test_reads_prefixed_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WATCHDOG_STALE_THRESHOLD_SECONDS", "90")
        monkeypatch.setenv("WATCHDOG_MAX_RESTART_ATTEMPTS", "5")

        settings = WatchdogSettings.from_env()

        assert settings.stale_threshold_seconds == 90.0
        assert settings.max_restart_attempts == 5
        assert settings.check_interval_seconds == 60.0

"""Tests for configuration models and the YAML loader."""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from src.config.loader import ConfigLoader, ConfigLoadError
from src.config.models import AppConfig, LogFormat, LogLevel, ThresholdsConfig

REPO_CONFIG = Path(__file__).resolve().parent.parent / "config"


def _write_config(directory: Path, monitoring: dict, features: dict) -> Path:
    (directory / "monitoring.yaml").write_text(yaml.safe_dump(monitoring), encoding="utf-8")
    (directory / "features.yaml").write_text(yaml.safe_dump(features), encoding="utf-8")
    return directory


class TestConfigModels:
    """Tests for configuration defaults and validation."""

    def test_defaults(self):
        config = AppConfig()
        thresholds = config.monitoring.thresholds

        assert thresholds.failure_rate_warning == Decimal("0.05")
        assert thresholds.failure_rate_critical == Decimal("0.10")
        assert thresholds.discrepancy_threshold_cents == 1
        assert thresholds.duplicate_nfc_window_seconds == Decimal("5")
        assert config.monitoring.circuit_breaker.failure_threshold == 5
        assert config.monitoring.retention.alerts_days == 90
        assert config.features.cache.max_entries == 100
        assert config.features.api.port == 8050

    def test_float_thresholds_are_exact(self):
        thresholds = ThresholdsConfig(failure_rate_warning=0.07, failure_rate_critical=0.2)
        assert thresholds.failure_rate_warning == Decimal("0.07")

    def test_critical_rate_below_warning_rejected(self):
        with pytest.raises(ValidationError):
            ThresholdsConfig(failure_rate_warning=0.2, failure_rate_critical=0.1)

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError):
            ThresholdsConfig(failure_rate_warnin=0.2)

    def test_get_job(self):
        config = AppConfig()

        assert config.get_job("cleanup").enabled
        with pytest.raises(KeyError):
            config.get_job("medium_detection")


class TestConfigLoader:
    """Tests for ConfigLoader."""

    def setup_method(self):
        self.monitoring = {
            "intervals": {"critical_checks_ms": 10000},
            "thresholds": {"duplicate_nfc_window_seconds": 3},
            "jobs": {"detection": {"retry_attempts": 2}},
        }
        self.features = {
            "cache": {"max_entries": 10},
            "logging": {"format": "text", "level": "DEBUG"},
        }

    def test_loads_repository_config(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)

        config = ConfigLoader(REPO_CONFIG).load()

        assert config.monitoring.intervals.critical_checks_ms == 30000
        assert config.monitoring.jobs.detection.retry_attempts == 3
        assert config.features.subscriptions.channel == "updates:monitoring_events"

    def test_partial_sections_fall_back_to_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        _write_config(tmp_path, self.monitoring, self.features)

        config = ConfigLoader(tmp_path).load()

        assert config.monitoring.intervals.critical_checks_ms == 10000
        assert config.monitoring.intervals.cleanup_ms == AppConfig().monitoring.intervals.cleanup_ms
        assert config.monitoring.thresholds.duplicate_nfc_window_seconds == Decimal("3")
        assert config.monitoring.jobs.detection.retry_attempts == 2
        assert config.monitoring.jobs.detection.timeout_ms == 30_000
        assert config.features.cache.max_entries == 10
        assert config.features.logging.format == LogFormat.TEXT
        assert config.log_level == LogLevel.DEBUG

    def test_log_level_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "warning")
        _write_config(tmp_path, self.monitoring, self.features)

        config = ConfigLoader(tmp_path).load()

        assert config.log_level == LogLevel.WARNING

    def test_connection_urls_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6380")
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/payments")
        _write_config(tmp_path, self.monitoring, self.features)

        config = ConfigLoader(tmp_path).load()

        assert config.redis.url == "redis://cache:6380"
        assert config.postgres.url == "postgresql://u:p@db:5432/payments"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ConfigLoadError):
            ConfigLoader(tmp_path / "absent")

    def test_missing_file(self, tmp_path):
        (tmp_path / "monitoring.yaml").write_text("intervals: {}\n", encoding="utf-8")

        with pytest.raises(ConfigLoadError) as exc_info:
            ConfigLoader(tmp_path).load()

        assert exc_info.value.file_path == tmp_path / "features.yaml"

    def test_invalid_threshold_reported_with_file(self, tmp_path):
        self.monitoring["thresholds"] = {"consecutive_failure_threshold": 0}
        _write_config(tmp_path, self.monitoring, self.features)

        with pytest.raises(ConfigLoadError) as exc_info:
            ConfigLoader(tmp_path).load()

        assert exc_info.value.file_path == tmp_path / "monitoring.yaml"

    def test_empty_file(self, tmp_path):
        _write_config(tmp_path, self.monitoring, self.features)
        (tmp_path / "features.yaml").write_text("", encoding="utf-8")

        with pytest.raises(ConfigLoadError):
            ConfigLoader(tmp_path).load()

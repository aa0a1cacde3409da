"""Tests for settings and structured logging."""

import json
import logging

import pytest
import structlog

from fhir_codec.codec import decode, decode_best_effort
from fhir_codec.config import CodecSettings, DecodeMode, LogFormat, get_settings
from fhir_codec.errors import MissingRequiredFieldError
from fhir_codec.logging_config import configure_logging, get_logger


@pytest.fixture
def clean_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clean_logging():
    yield
    structlog.reset_defaults()
    logger = logging.getLogger("fhir_codec")
    logger.handlers[:] = []
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


class TestSettings:

    def test_defaults(self, monkeypatch):
        for name in ("FHIR_VERSION", "DECODE_MODE", "LOG_LEVEL", "LOG_FORMAT"):
            monkeypatch.delenv(f"FHIR_CODEC_{name}", raising=False)
        settings = CodecSettings()
        assert settings.fhir_version == "R4"
        assert settings.decode_mode is DecodeMode.LENIENT
        assert settings.log_format is LogFormat.CONSOLE

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("FHIR_CODEC_DECODE_MODE", "strict")
        monkeypatch.setenv("FHIR_CODEC_LOG_FORMAT", "json")
        settings = CodecSettings()
        assert settings.decode_mode is DecodeMode.STRICT
        assert settings.log_format is LogFormat.JSON

    def test_settings_drive_default_mode(self, monkeypatch, clean_settings, heart_rate):
        del heart_rate["code"]
        monkeypatch.setenv("FHIR_CODEC_DECODE_MODE", "strict")
        get_settings.cache_clear()
        with pytest.raises(MissingRequiredFieldError):
            decode(heart_rate, "Observation")

    def test_explicit_mode_wins(self, monkeypatch, clean_settings, heart_rate):
        del heart_rate["code"]
        monkeypatch.setenv("FHIR_CODEC_DECODE_MODE", "strict")
        get_settings.cache_clear()
        obs = decode(heart_rate, "Observation", mode="lenient")
        assert obs.code is None


class TestLogging:

    def test_silent_until_configured(self, capsys):
        get_logger("fhir_codec.test").info("not_shown")
        captured = capsys.readouterr()
        assert "not_shown" not in captured.out + captured.err

    def test_json_output_on_stderr(self, capsys, clean_logging):
        configure_logging(CodecSettings(log_format="json", log_level="DEBUG"))
        get_logger("fhir_codec.test").warning("schema_checked", type_name="Observation")
        captured = capsys.readouterr()
        assert captured.out == ""
        event = json.loads(captured.err.strip().splitlines()[-1])
        assert event["event"] == "schema_checked"
        assert event["type_name"] == "Observation"
        assert event["level"] == "warning"
        assert "timestamp" in event

    def test_console_output(self, capsys, clean_logging):
        configure_logging(CodecSettings(log_format="console", log_level="INFO"))
        get_logger("fhir_codec.test").info("registry_ready", types=147)
        err = capsys.readouterr().err
        assert "registry_ready" in err
        assert "types=147" in err

    def test_level_filtering(self, capsys, clean_logging):
        configure_logging(CodecSettings(log_level="ERROR"))
        get_logger("fhir_codec.test").warning("dropped_event")
        assert "dropped_event" not in capsys.readouterr().err

    def test_skipped_field_is_logged(self, capsys, clean_logging, heart_rate):
        configure_logging(CodecSettings(log_format="json", log_level="WARNING"))
        heart_rate["category"] = {"text": "not an array"}
        _, report = decode_best_effort(heart_rate, "Observation")
        assert not report.success
        events = [json.loads(line) for line in capsys.readouterr().err.splitlines()]
        assert any(
            e["event"] == "field_skipped" and e["path"] == "category" for e in events
        )

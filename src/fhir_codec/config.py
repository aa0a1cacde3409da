"""
Runtime configuration for fhir-codec.

Values come from environment variables prefixed ``FHIR_CODEC_`` (or a
``.env`` file).  Explicit keyword arguments passed to the codec always win
over these settings.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DecodeMode(str, Enum):
    """How :func:`fhir_codec.codec.decode` treats missing required fields.

    ``LENIENT`` leaves them to :func:`fhir_codec.validation.validate`;
    ``STRICT`` raises :class:`fhir_codec.errors.MissingRequiredFieldError`.
    Structural errors raise in both modes.
    """

    LENIENT = "lenient"
    STRICT = "strict"


class LogFormat(str, Enum):
    CONSOLE = "console"
    JSON = "json"


class CodecSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FHIR_CODEC_",
        env_file=".env",
        extra="ignore",
    )

    fhir_version: str = Field(default="R4")
    decode_mode: DecodeMode = Field(default=DecodeMode.LENIENT)
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default=LogFormat.CONSOLE)


@lru_cache(maxsize=1)
def get_settings() -> CodecSettings:
    """Return the process-wide settings, read once from the environment."""
    return CodecSettings()

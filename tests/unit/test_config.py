"""Unit tests for Settings."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from stitch_engine.config import Settings


def test_defaults(settings):
    assert settings.expected_response_ms == 3000.0
    assert settings.minimum_displacement == 2
    assert settings.questions_per_stitch == 20
    assert settings.surprise_rate == 0.1
    assert settings.log_level == "INFO"


def test_env_override(monkeypatch):
    monkeypatch.setenv("STITCH_SURPRISE_RATE", "0.25")
    monkeypatch.setenv("STITCH_CACHE_BASE_TTL_HOURS", "12")

    settings = Settings(_env_file=None)

    assert settings.surprise_rate == 0.25
    assert settings.cache_base_ttl_hours == 12.0


def test_rejects_out_of_range(monkeypatch):
    monkeypatch.setenv("STITCH_DEFAULT_DIFFICULTY", "9")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_skip_config(settings):
    config = Settings(_env_file=None, expected_response_ms=2500).skip_config()
    assert config.expected_response_ms == 2500
    assert config.min_response_factor == settings.min_response_factor


def test_cache_ttl(settings):
    ttl = settings.cache_ttl()
    assert ttl.base == timedelta(hours=24)
    assert ttl.for_level(1) == timedelta(hours=28.8)
    assert ttl.base_preparation == timedelta(seconds=2)

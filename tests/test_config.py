"""Настройки из переменных окружения."""

import pytest
from pydantic import ValidationError

from tracker_probe.config import Settings

pytestmark = [pytest.mark.unit]


def test_defaults(monkeypatch):
    for name in ("UDP_TIMEOUT", "HTTP_TIMEOUT", "NUMWANT", "LOG_LEVEL", "TIMEZONE"):
        monkeypatch.delenv(f"TRACKER_PROBE_{name}", raising=False)

    assert Settings.from_env() == Settings()


def test_values_from_env(monkeypatch):
    monkeypatch.setenv("TRACKER_PROBE_UDP_TIMEOUT", "1.5")
    monkeypatch.setenv("TRACKER_PROBE_NUMWANT", "10")
    monkeypatch.setenv("TRACKER_PROBE_LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.udp_timeout_sec == 1.5
    assert settings.numwant == 10
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("name, value", [
    ("UDP_TIMEOUT", "soon"),
    ("HTTP_TIMEOUT", "0"),
    ("NUMWANT", "2.5"),
    ("NUMWANT", "-1"),
])
def test_invalid_values(monkeypatch, name, value):
    monkeypatch.setenv(f"TRACKER_PROBE_{name}", value)

    with pytest.raises(ValueError, match=f"TRACKER_PROBE_{name}"):
        Settings.from_env()


def test_override_ignores_missing_values():
    settings = Settings(udp_timeout_sec=3).override(udp_timeout_sec=None, numwant=7)

    assert settings.udp_timeout_sec == 3
    assert settings.numwant == 7


def test_override_is_validated():
    with pytest.raises(ValueError):
        Settings().override(udp_timeout_sec=-1)


def test_settings_are_frozen():
    with pytest.raises(ValidationError):
        Settings().numwant = 10

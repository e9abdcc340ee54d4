import pytest
from pydantic import ValidationError

from simplesite.config import Settings


def test_reads_prefixed_environment(monkeypatch):
    monkeypatch.setenv("SIMPLESITE_BASE_URL", "https://example.com/")
    monkeypatch.setenv("SIMPLESITE_TRANSACTION_TIMEOUT", "2.5")
    monkeypatch.setenv("SIMPLESITE_LOG_LEVEL", "warning")

    settings = Settings(_env_file=None)

    assert settings.base_url == "https://example.com"
    assert settings.transaction_timeout == 2.5
    assert settings.log_level == "WARNING"


def test_defaults(monkeypatch):
    monkeypatch.delenv("SIMPLESITE_TRANSACTION_TIMEOUT", raising=False)

    settings = Settings(_env_file=None)

    assert settings.transaction_timeout is None
    assert settings.session_cookie_name == "session"
    assert settings.session_cookie_secure is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"base_url": "example.com"},
        {"base_url": "ftp://example.com"},
        {"log_level": "LOUD"},
        {"transaction_timeout": 0},
        {"transaction_timeout": -1},
    ],
)
def test_rejects_invalid_values(overrides):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)

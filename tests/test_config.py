from __future__ import annotations

import pytest

from firesync.config import FiresyncConfig
from firesync.exceptions import FiresyncConfigError


def test_url_is_normalized() -> None:
    config = FiresyncConfig(url="https://demo.firebaseio.com/")
    assert config.url == "https://demo.firebaseio.com"
    assert config.export_format is True


@pytest.mark.parametrize(
    "kwargs",
    [
        {"url": "demo.firebaseio.com"},
        {"url": "ftp://demo.firebaseio.com"},
        {"url": "https://demo.firebaseio.com", "request_timeout": 0},
        {"url": "https://demo.firebaseio.com", "stream_max_retries": -1},
    ],
)
def test_invalid_settings_rejected(kwargs: dict[str, object]) -> None:
    with pytest.raises(FiresyncConfigError):
        FiresyncConfig(**kwargs)  # type: ignore[arg-type]


def test_from_env_reads_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FIRESYNC_URL", "https://demo.firebaseio.com")
    monkeypatch.setenv("FIRESYNC_AUTH", "secret")
    monkeypatch.setenv("FIRESYNC_REQUEST_TIMEOUT", "5")
    monkeypatch.setenv("FIRESYNC_STREAM_MAX_RETRIES", "0")
    monkeypatch.setenv("FIRESYNC_EXPORT_FORMAT", "off")

    config = FiresyncConfig.from_env()

    assert config.auth == "secret"
    assert config.request_timeout == 5.0
    assert config.stream_max_retries == 0
    assert config.export_format is False


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FIRESYNC_URL", "https://demo.firebaseio.com")
    monkeypatch.setenv("FIRESYNC_REQUEST_TIMEOUT", "5")

    config = FiresyncConfig.from_env(url="http://localhost:9000", request_timeout=1.5)

    assert config.url == "http://localhost:9000"
    assert config.request_timeout == 1.5


def test_from_env_without_url_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FIRESYNC_URL", raising=False)

    with pytest.raises(FiresyncConfigError):
        FiresyncConfig.from_env()

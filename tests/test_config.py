import json
import logging
from pathlib import Path

import pytest

from lightup.config import _reset_config_for_tests, get_config, load_config
from lightup.errors import ConfigError, EntityNotFoundError, LightupError, NotFoundError
from lightup.logging import JsonFormatter, RequestIdFilter, log_context, log_extra


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("LIGHTUP_DB_PATH", "LIGHTUP_PORT", "LIGHTUP_API_TOKEN", "LIGHTUP_BACKGROUND_TASKS"):
        monkeypatch.delenv(name, raising=False)

    config = load_config()

    assert config.db_path == Path("kanban.db")
    assert config.port == 21547
    assert config.background_tasks is True
    assert not config.auth_enabled


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("LIGHTUP_DB_PATH", str(tmp_path / "board.db"))
    monkeypatch.setenv("LIGHTUP_API_TOKEN", "secret")
    monkeypatch.setenv("LIGHTUP_BACKGROUND_TASKS", "off")
    monkeypatch.setenv("LIGHTUP_OPENCODE_URL", "http://agent:4096/")
    monkeypatch.setenv("LIGHTUP_CORS_ORIGINS", "http://a.test, http://b.test")

    config = load_config()

    assert config.db_path == tmp_path / "board.db"
    assert config.auth_enabled
    assert config.background_tasks is False
    assert config.opencode_url == "http://agent:4096"
    assert config.cors_allow_origins == ["http://a.test", "http://b.test"]


@pytest.mark.parametrize("name", ["LIGHTUP_PORT", "LIGHTUP_QUEUE_INTERVAL", "LIGHTUP_QUESTION_TIMEOUT"])
def test_malformed_number_raises_config_error(monkeypatch: pytest.MonkeyPatch, name: str) -> None:
    monkeypatch.setenv(name, "soon")

    with pytest.raises(ConfigError) as excinfo:
        load_config()

    assert name in excinfo.value.message
    assert excinfo.value.metadata == {"variable": name}
    assert excinfo.value.category == "config"


def test_get_config_is_cached_until_reset(monkeypatch: pytest.MonkeyPatch) -> None:
    _reset_config_for_tests()
    monkeypatch.setenv("LIGHTUP_PORT", "9000")
    first = get_config()
    monkeypatch.setenv("LIGHTUP_PORT", "9001")
    assert get_config() is first
    _reset_config_for_tests()
    assert get_config().port == 9001
    _reset_config_for_tests()


def test_error_hierarchy_carries_status() -> None:
    err = EntityNotFoundError("Card not found: x", metadata={"card_id": "x"})
    assert isinstance(err, NotFoundError)
    assert isinstance(err, KeyError)
    assert err.status_code == 404
    assert err.message == "Card not found: x"
    assert LightupError("boom").status_code == 500


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("lightup.test", logging.INFO, __file__, 1, "card_moved", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_logs_include_context_and_redact_secrets() -> None:
    with log_context(request_id="req-1"):
        record = _record(**log_extra(card_id="c1", api_token="t0ps3cret", url="http://u:p@host/x"))
        RequestIdFilter().filter(record)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "card_moved"
    assert payload["request_id"] == "req-1"
    assert payload["card_id"] == "c1"
    assert payload["session_id"] == "-"
    assert payload["api_token"] == "[REDACTED]"
    assert payload["url"] == "http://host/x"


def test_log_extra_drops_none_values() -> None:
    assert log_extra(card_id=None, session_id="s", attempt=None) == {"session_id": "s"}

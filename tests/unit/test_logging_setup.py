from __future__ import annotations

import json
import logging
import sys

import pytest

from gateway.logging_setup import JsonFormatter, configure_logging


def _record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("gateway.expiry", logging.INFO, __file__, 10, "expiry completed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
def test_json_formatter_includes_extra_fields() -> None:
    payload = json.loads(JsonFormatter().format(_record(total_expired=3, reasons={"expired_pending_timeout": 3})))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "gateway.expiry"
    assert payload["message"] == "expiry completed"
    assert payload["total_expired"] == 3
    assert payload["reasons"] == {"expired_pending_timeout": 3}
    assert "ts" in payload


@pytest.mark.unit
def test_json_formatter_renders_exceptions() -> None:
    try:
        raise RuntimeError("sweep failed")
    except RuntimeError:
        record = logging.LogRecord(
            "runtime", logging.ERROR, __file__, 20, "sweep tick error", None, exc_info=sys.exc_info()
        )

    payload = json.loads(JsonFormatter().format(record))

    assert "RuntimeError: sweep failed" in payload["exc_info"]


@pytest.mark.unit
def test_configure_logging_honours_log_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "warning")
    configure_logging()
    assert logging.getLogger().level == logging.WARNING

    configure_logging("nonsense")
    assert logging.getLogger().level == logging.INFO

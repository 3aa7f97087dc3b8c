import logging

from fastapi.testclient import TestClient

from giftregistry.core.logger import LOG_FORMAT, RequestIdFilter, request_id_var
from giftregistry.main import app


def _record() -> logging.LogRecord:
    return logging.LogRecord("giftregistry.test", logging.INFO, __file__, 1, "hello", None, None)


def test_request_id_defaults_to_dash():
    record = _record()
    RequestIdFilter().filter(record)
    assert record.request_id == "-"


def test_request_id_from_context():
    token = request_id_var.set("req-42")
    try:
        record = _record()
        RequestIdFilter().filter(record)
    finally:
        request_id_var.reset(token)
    assert logging.Formatter(LOG_FORMAT).format(record).endswith("[req-42] hello")


def test_route_logs_carry_request_id():
    seen: list[tuple[str, str]] = []

    class _Capture(logging.Handler):
        def emit(self, record):
            seen.append((record.getMessage(), request_id_var.get()))

    app_logger = logging.getLogger("giftregistry")
    handler = _Capture()
    app_logger.addHandler(handler)
    try:
        TestClient(app).post(
            "/auth/login",
            json={"email": "nobody@example.com", "password": "Wrongpass1"},
            headers={"X-Request-Id": "req-login"},
        )
    finally:
        app_logger.removeHandler(handler)

    login_lines = [rid for message, rid in seen if message.startswith("Auth login failed")]
    assert login_lines == ["req-login"]

"""
Tests for the host allowlist, the security logger and log sanitization.
"""

import json
import logging
import threading

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.middleware import (
    HostAllowlistMiddleware,
    RequestLoggingMiddleware,
    setup_cors,
    setup_exception_handlers,
)
from security_logger import SecurityLogger, get_security_logger, reset_security_logger
from text_utils import sanitize_for_logging


def build_app(allowed_hosts, request_logging=False):
    app = FastAPI()
    app.add_middleware(HostAllowlistMiddleware, allowed_hosts=allowed_hosts)
    if request_logging:
        app.add_middleware(RequestLoggingMiddleware)
    setup_exception_handlers(app)

    @app.get("/ping")
    def ping():
        return {"pong": True}

    return app


@pytest.fixture(autouse=True)
def quiet_security_logger():
    """Route security events to memory instead of logs/security.log."""
    reset_security_logger()
    get_security_logger(enable_file=False)
    yield
    get_security_logger().clear_request_context()
    reset_security_logger()


class TestHostAllowlist:
    """Tests for HostAllowlistMiddleware."""

    def test_empty_allowlist_allows_all(self):
        client = TestClient(build_app([]), base_url="http://anything.example")
        assert client.get("/ping").status_code == 200

    def test_allowed_host(self):
        client = TestClient(build_app(["postcodes.example.org"]), base_url="http://postcodes.example.org")
        assert client.get("/ping").json() == {"pong": True}

    def test_host_with_port_matches(self):
        client = TestClient(build_app(["localhost"]), base_url="http://localhost:8000")
        assert client.get("/ping").status_code == 200

    def test_any_of_several(self):
        client = TestClient(build_app(["api.example.org", "testserver"]))
        assert client.get("/ping").status_code == 200

    def test_denied_host(self, caplog):
        client = TestClient(build_app(["postcodes.example.org"]), base_url="http://evil.example.com")

        with caplog.at_level(logging.WARNING, logger="security"):
            response = client.get("/ping")

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "ACCESS_DENIED"
        assert "evil.example.com" in error["message"]
        assert "postcodes.example.org" in error["message"]

        events = [json.loads(r.getMessage()) for r in caplog.records if r.name == "security"]
        assert events[-1]["event_type"] == "ACCESS_DENIED"
        assert events[-1]["context"]["path"] == "/ping"

    def test_denial_carries_request_id(self, caplog):
        app = build_app(["postcodes.example.org"], request_logging=True)
        client = TestClient(app, base_url="http://evil.example.com")

        with caplog.at_level(logging.WARNING, logger="security"):
            response = client.get("/ping", headers={"X-Request-ID": "req-42"})

        assert response.status_code == 403
        assert response.headers["X-Request-ID"] == "req-42"
        events = [json.loads(r.getMessage()) for r in caplog.records if r.name == "security"]
        assert events[-1]["request_id"] == "req-42"
        assert events[-1]["source_ip"] == "testclient"

    def test_blank_entries_ignored(self):
        client = TestClient(build_app(["", None]), base_url="http://anything.example")
        assert client.get("/ping").status_code == 200


class TestCors:
    """Tests for CORS setup."""

    def test_explicit_origins_allow_credentials(self):
        app = FastAPI()
        setup_cors(app, ["https://postcodes.example.org"])

        @app.get("/ping")
        def ping():
            return {}

        response = TestClient(app).get("/ping", headers={"Origin": "https://postcodes.example.org"})
        assert response.headers["access-control-allow-origin"] == "https://postcodes.example.org"
        assert response.headers["access-control-allow-credentials"] == "true"

    def test_unlisted_origin(self):
        app = FastAPI()
        setup_cors(app, ["https://postcodes.example.org"])

        @app.get("/ping")
        def ping():
            return {}

        response = TestClient(app).get("/ping", headers={"Origin": "https://other.example"})
        assert "access-control-allow-origin" not in response.headers


class TestSecurityLogger:
    """Tests for structured security events."""

    def test_validation_failure_sanitized(self, caplog):
        security = SecurityLogger(enable_file=False)
        security.set_request_context("REQ-1", "10.0.0.1")

        with caplog.at_level(logging.WARNING, logger="security"):
            security.log_validation_failure(
                field="postcode",
                error_code="INVALID_POSTCODE",
                input_value="sw1a\nFAKE LOG LINE" + "x" * 100,
                additional_context={"count": 2, "nested": {"value": "a\rb"}},
            )

        event = json.loads(caplog.records[-1].getMessage())
        assert event["request_id"] == "REQ-1"
        assert event["source_ip"] == "10.0.0.1"
        assert "\n" not in event["sanitized_input"]
        assert event["sanitized_input"].endswith("...(truncated)")
        assert event["context"] == {"count": 2, "nested": {"value": "a b"}}

    def test_request_context_generated_and_cleared(self):
        security = SecurityLogger(enable_file=False)
        assert security.set_request_context().startswith("REQ-")
        security.clear_request_context()
        assert security.request_id == ""
        assert security.source_ip == ""

    def test_request_context_is_per_thread(self):
        security = SecurityLogger(enable_file=False)
        security.set_request_context("REQ-main", "10.0.0.1")
        seen = {}
        started = threading.Barrier(2)

        def serve(name):
            security.set_request_context(f"REQ-{name}", name)
            started.wait()
            seen[name] = (security.request_id, security.source_ip)

        threads = [threading.Thread(target=serve, args=(name,)) for name in ("a", "b")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert seen == {"a": ("REQ-a", "a"), "b": ("REQ-b", "b")}
        assert security.request_id == "REQ-main"

    def test_file_output(self, tmp_path):
        security = SecurityLogger(log_dir=str(tmp_path / "security"))
        security.log_access_denied(host="bad.example", path="/")
        for handler in security.logger.handlers:
            handler.flush()

        lines = (tmp_path / "security" / "security.log").read_text(encoding="utf-8").splitlines()
        assert "ACCESS_DENIED" in lines[-1]
        security.logger.handlers.clear()


class TestSanitizeForLogging:
    """Tests for log injection protection."""

    def test_control_characters_removed(self):
        assert sanitize_for_logging("a\nb\rc\x00d") == "a b c d"

    def test_truncated(self):
        assert sanitize_for_logging("x" * 20, max_length=5) == "xxxxx"

    def test_empty(self):
        assert sanitize_for_logging("") == ""
        assert sanitize_for_logging(None) == ""

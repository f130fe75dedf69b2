"""
Tests for the structlog configuration.
"""

import json
import logging

import structlog
from fastapi.testclient import TestClient

from backoffice.observability.logging import (
    REDACTED,
    bind_request_context,
    build_processors,
    clear_request_context,
    redact_sensitive,
)


def render(processors, **event) -> str:
    """Run a processor chain by hand, the way structlog does per log call."""
    event_dict = dict(event)
    logger = logging.getLogger("backoffice.services.auth")
    for processor in processors:
        event_dict = processor(logger, "info", event_dict)
    return event_dict


class TestRedaction:
    def test_masks_credentials(self):
        event = redact_sensitive(
            None,
            "info",
            {"event": "login", "session_token": "eyJabc", "Password": "hunter2", "email": "a@b.co"},
        )

        assert event["session_token"] == REDACTED
        assert event["Password"] == REDACTED
        assert event["email"] == "a@b.co"

    def test_masks_nested_details(self):
        event = redact_sensitive(
            None, "info", {"event": "audit", "details": {"token": "abc", "title": "Reset requested"}}
        )

        assert event["details"] == {"token": REDACTED, "title": "Reset requested"}


class TestProcessors:
    def test_json_line_carries_service_context(self):
        line = render(build_processors("INFO", "json"), event="invoice_created", invoice_number="INV-1")

        payload = json.loads(line)
        assert payload["event"] == "invoice_created"
        assert payload["level"] == "info"
        assert payload["logger"] == "backoffice.services.auth"
        assert payload["service"]
        assert "timestamp" in payload

    def test_rendered_output_never_contains_secret(self):
        line = render(build_processors("INFO", "json"), event="password_reset", token="a" * 64)

        assert "a" * 64 not in line
        assert json.loads(line)["token"] == REDACTED

    def test_console_renderer_outside_json(self):
        processors = build_processors("INFO", "console")
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)

    def test_debug_renders_exceptions_structurally(self):
        processors = build_processors("debug", "json")
        assert isinstance(processors[-2], structlog.processors.ExceptionRenderer)


class TestRequestContext:
    def teardown_method(self):
        clear_request_context()

    def test_bound_request_id_is_merged(self):
        bind_request_context("req-123")

        event = structlog.contextvars.merge_contextvars(None, "info", {"event": "x"})

        assert event["request_id"] == "req-123"

    def test_binding_replaces_previous_request(self):
        bind_request_context("req-1", user_id="kp_user_002")
        bind_request_context("req-2")

        event = structlog.contextvars.merge_contextvars(None, "info", {"event": "x"})

        assert event["request_id"] == "req-2"
        assert "user_id" not in event

    def test_clear(self):
        bind_request_context("req-1")
        clear_request_context()

        assert structlog.contextvars.get_contextvars() == {}


class TestRequestIdHeader:
    def test_echoes_client_request_id(self, anon_client: TestClient):
        response = anon_client.get("/", headers={"X-Request-ID": "req-abc"})
        assert response.headers["X-Request-ID"] == "req-abc"

    def test_generates_request_id(self, anon_client: TestClient):
        response = anon_client.get("/")
        assert len(response.headers["X-Request-ID"]) == 32

    def test_context_cleared_after_request(self, anon_client: TestClient):
        anon_client.get("/", headers={"X-Request-ID": "req-abc"})
        assert "request_id" not in structlog.contextvars.get_contextvars()

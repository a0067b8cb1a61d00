"""Tests for tracing helpers."""

from unittest.mock import MagicMock

from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import StatusCode

from codi.features import tracing
from codi.features.tracing import mark_span_error, set_span_attributes


class TestSpanHelpers:
    """Tests for set_span_attributes and mark_span_error."""

    def test_none_values_are_dropped(self):
        span = MagicMock()
        set_span_attributes(span, {"llm.model": "m", "agent.task_type": None})
        span.set_attribute.assert_called_once_with("llm.model", "m")

    def test_mark_span_error_with_exception(self):
        span = MagicMock()
        error = RuntimeError("boom")

        mark_span_error(span, error)

        span.record_exception.assert_called_once_with(error)
        status = span.set_status.call_args.args[0]
        assert status.status_code == StatusCode.ERROR
        assert status.description == "boom"

    def test_mark_span_error_with_message(self):
        span = MagicMock()
        mark_span_error(span, "provider failed")
        span.record_exception.assert_not_called()


class TestGetTracer:
    """Tests for tracer initialization."""

    def test_enabled_installs_sdk_provider(self, monkeypatch):
        installed = []
        monkeypatch.setattr(tracing, "_tracer", None)
        monkeypatch.setattr(tracing, "_tracer_provider", None)
        monkeypatch.setattr(tracing.trace, "set_tracer_provider", installed.append)

        tracer = tracing.get_tracer(enabled=True)

        assert tracer is not None
        assert isinstance(tracing._tracer_provider, TracerProvider)
        assert installed == [tracing._tracer_provider]
        tracing.shutdown_otel()

    def test_disabled_by_default(self, monkeypatch):
        monkeypatch.setattr(tracing, "_tracer", None)
        monkeypatch.setattr(tracing, "_tracer_provider", None)

        tracer = tracing.get_tracer()

        assert tracer is not None
        assert tracing._tracer_provider is None
        with tracer.start_as_current_span("noop"):
            pass

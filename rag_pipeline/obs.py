"""Observability utilities providing optional Langfuse tracing and OpenTelemetry spans.

This module centralizes lightweight observability features:
- Langfuse integration via a minimal Trace wrapper that becomes a safe no-op when
  Langfuse is not installed or init_tracing was not given credentials.
- OpenTelemetry span context manager that gracefully degrades to a no-op when
  OpenTelemetry is not available. A basic console exporter is configured on first use
  so users can plug in a different exporter externally if desired.

Tracing failures are logged at debug level and never interrupt the pipeline.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Optional Langfuse
try:
    from langfuse import Langfuse
except ImportError:  # pragma: no cover
    Langfuse = None  # type: ignore

# Optional OpenTelemetry
try:
    from opentelemetry import trace
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
except ImportError:  # pragma: no cover
    trace = None  # type: ignore
    TracerProvider = None  # type: ignore
    BatchSpanProcessor = None  # type: ignore
    ConsoleSpanExporter = None  # type: ignore


_langfuse_client: Optional[Any] = None
_otel_inited: bool = False


def init_tracing(host: str, public_key: str, secret_key: str) -> bool:
    """Create the Langfuse client when credentials and the package are present.

    Returns:
        bool: True when Langfuse tracing is active.
    """
    global _langfuse_client
    if not (host and public_key and secret_key) or Langfuse is None:
        _langfuse_client = None
        return False
    try:
        _langfuse_client = Langfuse(host=host, public_key=public_key, secret_key=secret_key)
    except Exception as exc:
        logger.warning("Langfuse init failed, tracing disabled: %s", exc)
        _langfuse_client = None
        return False
    return True


def _init_otel() -> None:
    """Initialize a basic OpenTelemetry tracer provider with console export.

    Sets a global tracer provider once. If OpenTelemetry packages are not
    available, this function safely no-ops.
    """
    global _otel_inited
    if _otel_inited:
        return
    if trace is None or TracerProvider is None:
        return
    tp = TracerProvider()
    tp.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(tp)
    _otel_inited = True


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None):
    """
    Lightweight context manager for OpenTelemetry span.
    Falls back to no-op if OTel not available.
    """
    _init_otel()
    otel_span = None
    if trace is not None:
        try:
            otel_span = trace.get_tracer(__name__).start_span(name=name)
            for k, v in (attributes or {}).items():
                otel_span.set_attribute(k, v)
        except Exception as exc:
            logger.debug("span %s not started: %s", name, exc)
            otel_span = None
    try:
        yield
    finally:
        if otel_span is not None:
            otel_span.end()


class Trace:
    """
    Minimal wrapper for a Langfuse trace with safe no-op methods if not configured.
    """

    def __init__(self, name: str, input: Optional[Dict[str, Any]] = None):
        self.name = name
        self.enabled = False
        self._trace = None
        if _langfuse_client is not None:
            try:
                self._trace = _langfuse_client.trace(name=name, input=input or {})
                self.enabled = True
            except Exception as exc:
                logger.debug("trace %s not started: %s", name, exc)

    def event(self, name: str, data: Optional[Dict[str, Any]] = None):
        """Record a structured event on the trace if Langfuse is enabled."""
        if not self.enabled:
            return
        try:
            self._trace.event(name=name, input=data or {})
        except Exception as exc:
            logger.debug("trace event %s dropped: %s", name, exc)

    def generation(
        self,
        name: str,
        prompt: str,
        output: str,
        model: str,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """Record a generation with input/output text, the serving model and metadata."""
        if not self.enabled:
            return
        try:
            self._trace.generation(
                name=name, input=prompt, output=output, model=model, metadata=metadata or {}
            )
        except Exception as exc:
            logger.debug("trace generation %s dropped: %s", name, exc)

    def end(self, output: Optional[Dict[str, Any]] = None):
        """Finalize the trace, optionally updating a final output payload."""
        if not self.enabled:
            return
        try:
            self._trace.update(output=output or {})
        except Exception as exc:
            logger.debug("trace %s not finalized: %s", self.name, exc)

"""Observability sinks for extraction oracle calls.

A sink receives one span per oracle attempt. Sinks are injected into the
client; a failing sink is logged and otherwise ignored.
"""

import logging
import time
from typing import Any, Optional, Protocol

from langfuse import Langfuse

logger = logging.getLogger(__name__)


class Span(Protocol):
    def end(self, output: Optional[str] = None, error: Optional[str] = None) -> None:
        ...


class TraceSink(Protocol):
    def start_span(self, name: str, input: str, metadata: Optional[dict] = None) -> Span:
        ...

    def flush(self) -> None:
        ...


class _NullSpan:
    def end(self, output: Optional[str] = None, error: Optional[str] = None) -> None:
        pass


class NullTraceSink:
    """Sink that records nothing."""

    def start_span(self, name: str, input: str, metadata: Optional[dict] = None) -> Span:
        return _NullSpan()

    def flush(self) -> None:
        pass


class _LoggingSpan:
    def __init__(self, sink_logger: logging.Logger, name: str, metadata: dict):
        self._logger = sink_logger
        self.name = name
        self.metadata = metadata
        self._start = time.perf_counter()

    def end(self, output: Optional[str] = None, error: Optional[str] = None) -> None:
        elapsed = time.perf_counter() - self._start
        if error:
            self._logger.info(f"span {self.name} failed after {elapsed:.2f}s: {error} {self.metadata}")
        else:
            size = len(output) if output else 0
            self._logger.info(f"span {self.name} ok in {elapsed:.2f}s ({size} chars) {self.metadata}")


class LoggingTraceSink:
    """Sink that writes span start/end through logging."""

    def __init__(self, sink_logger: Optional[logging.Logger] = None):
        self._logger = sink_logger or logging.getLogger("payables.trace")

    def start_span(self, name: str, input: str, metadata: Optional[dict] = None) -> Span:
        metadata = dict(metadata or {})
        self._logger.debug(f"span {name} started ({len(input)} chars) {metadata}")
        return _LoggingSpan(self._logger, name, metadata)

    def flush(self) -> None:
        pass


class _LangfuseSpan:
    def __init__(self, generation):
        self._generation = generation

    def end(self, output: Optional[str] = None, error: Optional[str] = None) -> None:
        if error:
            self._generation.update(output=output, level="ERROR", status_message=error)
        else:
            self._generation.update(output=output)
        self._generation.end()


class LangfuseTraceSink:
    """Sink that records each oracle attempt as a Langfuse generation.

    Events are batched by the SDK in the background; call flush() before
    the process exits so pending events are delivered.
    """

    def __init__(
        self,
        public_key: str,
        secret_key: str,
        host: str = "https://cloud.langfuse.com",
        client: Optional[Langfuse] = None,
    ):
        """Initialize the sink.

        Args:
            public_key: Langfuse project public key
            secret_key: Langfuse project secret key
            host: Langfuse server URL
            client: Preconfigured client (built from the keys if None)
        """
        self.client = client or Langfuse(public_key=public_key, secret_key=secret_key, host=host)
        logger.info(f"Langfuse tracing enabled ({host})")

    def start_span(self, name: str, input: str, metadata: Optional[dict] = None) -> Span:
        metadata = dict(metadata or {})
        generation = self.client.start_generation(
            name=name,
            model=metadata.get("model"),
            input=input,
            metadata=metadata,
        )
        return _LangfuseSpan(generation)

    def flush(self) -> None:
        self.client.flush()


def safe_start_span(sink: TraceSink, name: str, input: str, metadata: Optional[dict] = None) -> Span:
    """Start a span, falling back to a no-op span if the sink fails."""
    try:
        return sink.start_span(name, input, metadata)
    except Exception as e:
        logger.warning(f"Trace sink failed to start span {name}: {e}")
        return _NullSpan()


def safe_end_span(span: Span, **kwargs: Any) -> None:
    try:
        span.end(**kwargs)
    except Exception as e:
        logger.warning(f"Trace sink failed to end span: {e}")


def safe_flush(sink: TraceSink) -> None:
    try:
        sink.flush()
    except Exception as e:
        logger.warning(f"Trace sink failed to flush: {e}")

"""Optional OpenTelemetry tracing of generation runs and tool calls.

Tracing is off until :func:`instrument` is called and requires
``opentelemetry-api`` (``pip install voicerelay[otel]``).  While off,
every span helper yields ``None`` and the recorders do nothing, so
calls behave the same with or without a tracer.
"""

import importlib.util
import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

_tracer = None


def instrument(*, tracer_name: str = "voicerelay") -> None:
    """Start emitting spans through the global TracerProvider.

    Configure the provider first::

        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider

        trace.set_tracer_provider(TracerProvider())
        voicerelay.instrument()

    Args:
        tracer_name: Instrumentation scope passed to ``trace.get_tracer()``.

    Raises:
        ImportError: ``opentelemetry-api`` is not installed.
    """
    global _tracer
    if importlib.util.find_spec("opentelemetry.trace") is None:
        raise ImportError(
            "Tracing needs opentelemetry-api: pip install voicerelay[otel]"
        )
    from opentelemetry import trace

    _tracer = trace.get_tracer(tracer_name)
    if isinstance(_tracer, trace.NoOpTracer):
        logger.info(
            "No TracerProvider configured; call spans will be dropped"
        )
    else:
        logger.info(f"Tracing enabled as {tracer_name!r}")


def uninstrument() -> None:
    global _tracer
    _tracer = None


@asynccontextmanager
async def _span(name: str, attributes: dict, client: bool = False):
    if _tracer is None:
        yield None
        return
    kwargs = {"attributes": attributes}
    if client:
        from opentelemetry.trace import SpanKind

        kwargs["kind"] = SpanKind.CLIENT
    with _tracer.start_as_current_span(name, **kwargs) as span:
        yield span


def run_span(conversation_id: str, model: str, epoch: int):
    """Span covering one controller run and all its continuations."""
    return _span(f"conversation_run {conversation_id}", {
        "gen_ai.operation.name": "invoke_agent",
        "gen_ai.conversation.id": conversation_id,
        "gen_ai.request.model": model,
        "voicerelay.run.epoch": epoch,
    })


def completion_span(system: str, model: str):
    """Client span covering one provider stream."""
    return _span(f"chat {model}", {
        "gen_ai.operation.name": "chat",
        "gen_ai.provider.name": system,
        "gen_ai.request.model": model,
    }, client=True)


def tool_span(tool_name: str, call_id: str):
    return _span(f"execute_tool {tool_name}", {
        "gen_ai.operation.name": "execute_tool",
        "gen_ai.tool.name": tool_name,
        "gen_ai.tool.call.id": call_id,
    })


def record_finish(span, finish_reason: str | None, chunk_count: int) -> None:
    """Attach how a stream ended to its completion span."""
    if span is None:
        return
    if finish_reason:
        span.set_attribute("gen_ai.response.finish_reasons", [finish_reason])
    span.set_attribute("voicerelay.stream.chunks", chunk_count)


def record_error(span, exception: BaseException) -> None:
    """Mark *span* failed with *exception*; ``error.type`` is its qualname."""
    if span is None:
        return
    from opentelemetry.trace import StatusCode

    span.record_exception(exception)
    span.set_attribute("error.type", type(exception).__qualname__)
    span.set_status(StatusCode.ERROR, str(exception))

import asyncio
import json

import pytest

from voicerelay.executor import ToolExecutor
from voicerelay.provider import ModelProvider
from voicerelay.store import MessageStore
from voicerelay.streaming import CompletionStream, StreamChunk
from voicerelay.tools import ToolRegistry, tool


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

class MockProvider(ModelProvider):
    """Provider that replays pre-queued chunk scripts. No network calls.

    Each entry of ``responses`` is one stream.  A script is a list whose
    items are yielded in order: a :class:`StreamChunk` is delivered, an
    ``asyncio.Event`` is awaited (to hold the stream open mid-way), and
    an exception is raised from the stream.  An exception in place of a
    script fails the stream at open time.
    """

    name = "mock"

    def __init__(self):
        self.responses: list = []
        self.call_log: list[dict] = []
        self.closed_streams = 0

    async def stream_complete(self, model, messages, tools=None):
        self.call_log.append({"model": model, "messages": messages, "tools": tools})
        script = self.responses.pop(0)
        if isinstance(script, Exception):
            raise script
        closed = asyncio.Event()

        async def on_close():
            self.closed_streams += 1
            closed.set()

        return CompletionStream(self._replay(script, closed), on_close=on_close)

    async def _replay(self, script, closed: asyncio.Event):
        for item in script:
            if isinstance(item, asyncio.Event):
                # Closing the stream releases a held reader, like a dropped connection.
                gate = asyncio.ensure_future(item.wait())
                closing = asyncio.ensure_future(closed.wait())
                try:
                    await asyncio.wait({gate, closing}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    gate.cancel()
                    closing.cancel()
                if closed.is_set():
                    return
            elif isinstance(item, Exception):
                raise item
            else:
                await asyncio.sleep(0)
                yield item


# ---------------------------------------------------------------------------
# Chunk script builders
# ---------------------------------------------------------------------------

def make_text_stream(
    *pieces: str,
    stream_id: str = "chatcmpl-1",
    finish_reason: str | None = "stop",
) -> list[StreamChunk]:
    """Chunks for a text answer split into *pieces*, OpenAI style.

    The first chunk carries the role, the last one only the finish reason.
    """
    chunks = [StreamChunk(id=stream_id, delta={"role": "assistant", "content": ""})]
    chunks += [StreamChunk(id=stream_id, delta={"content": p}) for p in pieces]
    if finish_reason is not None:
        chunks.append(StreamChunk(id=stream_id, delta={}, finish_reason=finish_reason))
    return chunks


def make_tool_call_stream(
    calls: list[tuple[str, dict, str]],
    stream_id: str = "chatcmpl-tools",
    split_at: int = 5,
) -> list[StreamChunk]:
    """Chunks requesting the tool calls ``(name, args, call_id)``.

    Each call's argument JSON is split into two fragments at *split_at*.
    """
    chunks = [StreamChunk(id=stream_id, delta={"role": "assistant"})]
    for index, (name, args, call_id) in enumerate(calls):
        arguments = json.dumps(args)
        padding = [{} for _ in range(index)]
        chunks.append(StreamChunk(id=stream_id, delta={"tool_calls": padding + [{
            "id": call_id,
            "type": "function",
            "function": {"name": name, "arguments": arguments[:split_at]},
        }]}))
        chunks.append(StreamChunk(id=stream_id, delta={"tool_calls": padding + [{
            "function": {"arguments": arguments[split_at:]},
        }]}))
    chunks.append(StreamChunk(id=stream_id, delta={}, finish_reason="tool_calls"))
    return chunks


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

@tool
def echo(text: str):
    """Echo text back."""
    return text


@tool
async def get_customer_profile():
    """Fetches the caller's profile."""
    return {"name": "Roger"}


@tool
def explode():
    """Always fails."""
    raise RuntimeError("boom")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def store():
    return MessageStore()


@pytest.fixture
def registry():
    return ToolRegistry([echo, get_customer_profile, explode])


@pytest.fixture
def executor(registry):
    return ToolExecutor(registry)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until *predicate* holds; fail after *timeout* seconds."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), timeout=timeout)


def collect_speech(channel_owner) -> list[tuple[str, bool]]:
    """Subscribe to *channel_owner*'s speech and return the ``(text, is_last)`` log."""
    events: list[tuple[str, bool]] = []
    channel_owner.speech.subscribe(lambda e: events.append((e.text, e.is_last)))
    return events

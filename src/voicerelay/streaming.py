"""Streaming primitives for provider responses.

Providers yield :class:`StreamChunk` objects through a
:class:`CompletionStream`.  :func:`merge_append` folds each chunk's delta
into the assistant record being built, appending string fragments rather
than replacing them, so tool-call arguments that arrive split at
arbitrary byte boundaries reassemble into the full JSON text.
"""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel


@dataclass
class StreamChunk:
    """Normalised streaming chunk from any provider.

    ``delta`` carries any of ``role``, ``content`` and ``tool_calls``;
    keys whose value would be ``None`` are left out.
    """

    id: str | None = None
    delta: dict = field(default_factory=dict)
    finish_reason: str | None = None


@dataclass
class ToolCall:
    """A resolved tool call ready for execution."""

    id: str = ""
    name: str = ""
    arguments: str = ""


class CompletionStream:
    """Async iterator over :class:`StreamChunk` with an abort handle.

    ``aclose()`` may be called from another task while a consumer is
    suspended on the next chunk.  Once closed, iteration stops at the
    next chunk boundary.

    Args:
        chunks: The provider's chunk iterator.
        on_close: Coroutine function releasing the underlying transport.
    """

    def __init__(
        self,
        chunks: AsyncIterator[StreamChunk],
        on_close: Callable[[], Awaitable[None]] | None = None,
    ):
        self._chunks = chunks
        self._on_close = on_close
        self.closed = False

    def __aiter__(self) -> CompletionStream:
        return self

    async def __anext__(self) -> StreamChunk:
        if self.closed:
            raise StopAsyncIteration
        chunk = await self._chunks.__anext__()
        if self.closed:
            raise StopAsyncIteration
        return chunk

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._on_close is not None:
            await self._on_close()


# ------------------------------------------------------------------
# Merge-append
# ------------------------------------------------------------------

def _is_record(value: Any) -> bool:
    return isinstance(value, (dict, BaseModel))


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and not isinstance(value, Enum)


def _get(record, key: str):
    if isinstance(record, dict):
        return record.get(key)
    return getattr(record, key, None)


def _set(record, key: str, value) -> None:
    if isinstance(record, dict):
        record[key] = value
    else:
        setattr(record, key, value)


def _detach(value):
    # Keep the target from aliasing containers owned by the delta.
    if isinstance(value, (dict, list)):
        return copy.deepcopy(value)
    return value


def _merge_sequence(target: list, delta: list) -> None:
    for i, item in enumerate(delta):
        if i >= len(target):
            target.append(_detach(item))
            continue
        existing = target[i]
        if isinstance(existing, list) and isinstance(item, list):
            _merge_sequence(existing, item)
        elif _is_record(existing) and _is_record(item):
            merge_append(existing, item)
        else:
            target[i] = _detach(item)


def merge_append(target, delta: dict):
    """Merge *delta* into *target* in place and return *target*.

    Per key of *delta*:

    1. both values are strings: the delta is appended;
    2. both are lists: elements are merged pairwise by position, extra
       delta elements are appended unchanged;
    3. both are records (``dict`` or pydantic model): merged recursively;
    4. anything else: the delta value replaces the target value.

    Example::

        >>> merge_append({"a": "x", "l": [{"b": "1"}]},
        ...              {"a": "y", "l": [{"b": "2"}, "z"]})
        {'a': 'xy', 'l': [{'b': '12'}, 'z']}
    """
    items = delta.items() if isinstance(delta, dict) else dict(delta).items()
    for key, value in items:
        current = _get(target, key)
        if _is_text(current) and _is_text(value):
            _set(target, key, current + value)
        elif isinstance(current, list) and isinstance(value, list):
            _merge_sequence(current, value)
        elif _is_record(current) and _is_record(value):
            merge_append(current, value if isinstance(value, dict) else value.model_dump())
        else:
            _set(target, key, _detach(value))
    return target


class ChunkAccumulator:
    """Folds a run's streamed deltas into a single record."""

    def __init__(self, target) -> None:
        self.target = target
        self.chunk_count = 0

    def feed(self, delta: dict) -> str:
        """Merge one delta and return the text it added, if any."""
        self.chunk_count += 1
        merge_append(self.target, delta)
        text = delta.get("content")
        return text if _is_text(text) else ""

    def finalize(self) -> list[ToolCall]:
        """Return the complete tool calls in position order.

        Padding slots that never received a call id or name are skipped.
        """
        raw_calls = _get(self.target, "tool_calls") or []
        calls = []
        for raw in raw_calls:
            if not isinstance(raw, dict):
                continue
            function = raw.get("function") or {}
            call = ToolCall(
                id=raw.get("id") or "",
                name=function.get("name") or "",
                arguments=function.get("arguments") or "",
            )
            if call.id or call.name:
                calls.append(call)
        return calls

import logging
import os

from openai import APIError, AsyncOpenAI

from voicerelay.errors import TransportError
from voicerelay.streaming import CompletionStream, StreamChunk, merge_append

logger = logging.getLogger(__name__)


class ModelProvider:
    """Source of streamed chat completions.

    Subclasses return a :class:`CompletionStream` whose chunks carry
    deltas already normalised for :func:`merge_append`.  The system
    instruction is not a separate argument: it arrives as the ``system``
    entry of *messages*, and providers with a dedicated field should
    lift it out of there.
    """

    name: str = "unknown"

    async def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> CompletionStream:
        raise NotImplementedError


class _ToolFragmentNormalizer:
    """Positions tool-call fragments for index-aligned merging.

    Providers tag each fragment with the index of the call it belongs
    to and may send just that one call in a chunk.  Fragments are laid
    out in a list padded with empty records so position equals index.
    Identity fields are only kept on the first fragment of each call,
    since some providers repeat them and they would otherwise be
    appended twice.
    """

    def __init__(self):
        self._seen: set[int] = set()

    def position(self, fragments) -> list[dict]:
        slots: list[dict] = []
        for frag in fragments:
            index = getattr(frag, "index", None) or 0
            while len(slots) <= index:
                slots.append({})
            entry: dict = {}
            function: dict = {}
            fn = getattr(frag, "function", None)
            first = index not in self._seen
            if first:
                self._seen.add(index)
                if getattr(frag, "id", None):
                    entry["id"] = frag.id
                entry["type"] = getattr(frag, "type", None) or "function"
                if fn is not None and fn.name:
                    function["name"] = fn.name
            if fn is not None and fn.arguments:
                function["arguments"] = fn.arguments
            if function:
                entry["function"] = function
            merge_append(slots[index], entry)
        return slots


def normalize_chunk(raw, tool_fragments: _ToolFragmentNormalizer) -> StreamChunk | None:
    """Convert an OpenAI ``ChatCompletionChunk`` into a :class:`StreamChunk`.

    Returns ``None`` for chunks without choices (usage reports).
    """
    if not raw.choices:
        return None
    choice = raw.choices[0]
    delta = choice.delta
    payload: dict = {}
    if delta is not None:
        if delta.role:
            payload["role"] = delta.role
        if delta.content is not None:
            payload["content"] = delta.content
        if delta.tool_calls:
            payload["tool_calls"] = tool_fragments.position(delta.tool_calls)
    return StreamChunk(id=raw.id, delta=payload, finish_reason=choice.finish_reason)


class OpenAIProvider(ModelProvider):

    name = "openai"

    def __init__(
            self,
            api_key: str | None = None,
            base_url: str | None = None,
            max_retries: int = 2,
            timeout: float = 30.0,
    ):
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY")
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=max_retries,
            timeout=timeout,
        )

    async def stream_complete(
            self,
            model: str,
            messages: list[dict],
            tools: list[dict] | None = None,
    ) -> CompletionStream:
        kwargs: dict = {"model": model, "messages": messages, "stream": True}
        # The API rejects an empty tools array.
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        try:
            raw_stream = await self.client.chat.completions.create(**kwargs)
        except APIError as e:
            raise TransportError(f"{self.name} stream failed to open: {e}") from e
        return CompletionStream(self._iter_chunks(raw_stream), on_close=raw_stream.close)

    async def _iter_chunks(self, raw_stream):
        tool_fragments = _ToolFragmentNormalizer()
        try:
            async for raw in raw_stream:
                chunk = normalize_chunk(raw, tool_fragments)
                if chunk is not None:
                    yield chunk
        except APIError as e:
            raise TransportError(f"{self.name} stream failed: {e}") from e


class OpenAICompatibleProvider(OpenAIProvider):
    """Any server speaking the chat-completions protocol (OpenRouter, vLLM, ...).

    Args:
        base_url: Server root; ``/v1`` is appended when missing.
        api_key: Defaults to ``"DUMMY"`` for servers without auth.
    """

    name = "openai_compatible"

    def __init__(
            self,
            base_url: str,
            api_key: str | None = None,
            max_retries: int = 2,
            timeout: float = 30.0,
    ):
        base_url = base_url.rstrip("/")
        if not base_url.endswith("/v1"):
            base_url = f"{base_url}/v1"
        self.base_url = base_url
        super().__init__(
            api_key=api_key or "DUMMY",
            base_url=base_url,
            max_retries=max_retries,
            timeout=timeout,
        )

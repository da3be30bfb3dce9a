import asyncio
import logging
import uuid
from dataclasses import dataclass

from voicerelay.errors import EmptyHistoryError, TransportError
from voicerelay.events import SpeechChannel, SpeechEvent
from voicerelay.executor import ToolExecutor
from voicerelay.instrumentation import (
    completion_span,
    record_error,
    record_finish,
    run_span,
)
from voicerelay.message import AssistantMessage, AssistantStatus, FinishReason, MessageRole
from voicerelay.provider import ModelProvider
from voicerelay.store import MessageStore
from voicerelay.streaming import ChunkAccumulator, CompletionStream

logger = logging.getLogger(__name__)

_FINISH_REASONS = {r.value for r in FinishReason}


@dataclass
class RunResult:
    """The result of a single StreamController.start_run() invocation.

    Args:
        finish_reason: Finish reason of the last stream of the run.
        message: The last assistant message the run produced.
        streams: Number of provider streams opened, continuations included.
        aborted: The run was aborted or superseded before it ended.
        exhausted: The run stopped at the continuation limit.
    """

    finish_reason: FinishReason | None
    message: AssistantMessage | None
    streams: int
    aborted: bool = False
    exhausted: bool = False


class StreamController:
    """Owns the single in-flight generation run of a conversation.

    A run streams a completion into a new assistant message, forwarding
    text to the speech channel as it arrives, then keeps going while the
    finish reason asks for it: ``length`` continues the truncated answer
    and ``tool_calls`` executes the tools and lets the model respond to
    their results.  Every continuation opens a fresh stream on the
    updated history, up to ``max_continuations`` per run.

    Each run is tagged with an epoch.  ``abort()`` and any newer run bump
    the epoch, after which the older run writes nothing more to the
    store: no further deltas, and no tool results that finish late.

    Args:
        store: The conversation's message log.
        provider: Source of streamed completions.
        executor: Runs the tool calls the model makes.
        model: Model name passed to the provider.
        instructions: System prompt used while the store holds no
            system message.
        max_continuations: Upper bound on follow-up streams per run.
        speech: Channel receiving text increments.
        conversation_id: Label for logs and spans.
    """

    def __init__(
        self,
        store: MessageStore,
        provider: ModelProvider,
        executor: ToolExecutor,
        model: str,
        instructions: str | None = None,
        max_continuations: int = 10,
        speech: SpeechChannel | None = None,
        conversation_id: str = "default",
    ):
        self.store = store
        self.provider = provider
        self.executor = executor
        self.model = model
        self.instructions = instructions
        self.max_continuations = max_continuations
        self.speech = speech if speech is not None else SpeechChannel()
        self.conversation_id = conversation_id

        self.active_message: AssistantMessage | None = None
        self._stream: CompletionStream | None = None
        self._epoch = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def is_streaming(self) -> bool:
        return self._stream is not None

    async def start_run(self) -> RunResult:
        """Generate the next assistant turn from the current history.

        A run already in flight is superseded: its stream is aborted and
        nothing it produces afterwards reaches the store.

        Raises:
            EmptyHistoryError: The store holds nothing to respond to.
            TransportError: The provider stream failed.
        """
        if self._stream is not None:
            logger.warning("start_run called while a stream exists; superseding it")
            await self.abort()
        if not self.store.has_dialogue():
            raise EmptyHistoryError("Cannot start run because there are no messages in the store")

        self._epoch += 1
        epoch = self._epoch
        streams = 0
        async with run_span(self.conversation_id, self.model, epoch) as span:
            while True:
                streams += 1
                try:
                    finish, message = await self._stream_once(epoch)
                except TransportError as e:
                    record_error(span, e)
                    raise

                if epoch != self._epoch:
                    logger.info(f"Run {epoch} aborted after {streams} stream(s)")
                    return RunResult(finish, message, streams, aborted=True)

                if finish == FinishReason.LENGTH:
                    logger.info("Output truncated by length; continuing")
                elif finish in (FinishReason.TOOL_CALLS, FinishReason.FUNCTION_CALL):
                    if not await self._run_tools(epoch, message):
                        aborted = epoch != self._epoch
                        return RunResult(finish, message, streams, aborted=aborted)
                elif finish == FinishReason.CONTENT_FILTER:
                    logger.warning("Generation stopped by content filter")
                    return RunResult(finish, message, streams)
                else:
                    return RunResult(finish, message, streams)

                if streams > self.max_continuations:
                    logger.error(
                        f"Run {epoch} reached max continuations ({self.max_continuations})"
                    )
                    return RunResult(finish, message, streams, exhausted=True)

    async def abort(self) -> None:
        """Cancel the in-flight stream, if any.

        Safe to call at any time.  The active message keeps the content
        received so far and is marked finished.
        """
        stream = self.cancel()
        if stream is None:
            return
        logger.info("Aborting in-flight stream")
        await stream.aclose()

    def cancel(self) -> CompletionStream | None:
        """Invalidate the current run without suspending.

        Returns the detached stream; the caller is responsible for
        closing it.
        """
        self._epoch += 1
        stream, self._stream = self._stream, None
        if self.active_message is not None:
            self.active_message.status = AssistantStatus.FINISHED
            self.active_message = None
        return stream

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _open(self) -> CompletionStream:
        messages = self.store.to_prompt(self.instructions)
        tools = self.executor.registry.schemas()
        logger.debug(f"Opening stream with {len(messages)} message(s)")
        try:
            return await self.provider.stream_complete(
                model=self.model, messages=messages, tools=tools or None,
            )
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"stream failed to open: {e}") from e

    async def _stream_once(self, epoch: int) -> tuple[FinishReason | None, AssistantMessage | None]:
        async with completion_span(self.provider.name, self.model) as span:
            stream = await self._open()
            if epoch != self._epoch:
                await stream.aclose()
                return None, None
            self._stream = stream

            message: AssistantMessage | None = None
            acc: ChunkAccumulator | None = None
            finish: FinishReason | None = None
            spoke = False
            try:
                async for chunk in stream:
                    if epoch != self._epoch:
                        break
                    delta = dict(chunk.delta)
                    if chunk.finish_reason:
                        finish = self._finish_reason(chunk.finish_reason)
                        if finish.value == chunk.finish_reason:
                            delta["finish_reason"] = chunk.finish_reason

                    if message is None:
                        message = self._create_message(chunk.id, delta)
                        acc = ChunkAccumulator(message)
                        text = delta.get("content") or ""
                    else:
                        text = acc.feed(delta)

                    if text:
                        spoke = True
                        self.speech.emit(SpeechEvent(text=text, is_last=finish is not None))
                    elif finish is not None and spoke:
                        # Terminal chunks usually carry no text; playback still needs the marker.
                        self.speech.emit(SpeechEvent(text="", is_last=True))
                    if finish is not None:
                        break
            except asyncio.CancelledError:
                self._close_message(message)
                raise
            except Exception as e:
                if epoch != self._epoch:
                    logger.debug(f"Stream raised after abort: {e}")
                    return finish, message
                record_error(span, e)
                self._close_message(message)
                logger.error(f"Stream failed: {e}")
                if isinstance(e, TransportError):
                    raise
                raise TransportError(f"stream failed: {e}") from e
            finally:
                if self._stream is stream:
                    self._stream = None
                    await stream.aclose()

            if epoch != self._epoch:
                return finish, message

            record_finish(span, finish.value if finish else None, acc.chunk_count + 1 if acc else 0)
            if message is None:
                logger.warning("Stream ended without producing a message")
            elif finish is None:
                logger.warning("Stream ended without a finish reason")
            self._close_message(message)
            return finish, message

    def _create_message(self, chunk_id: str | None, delta: dict) -> AssistantMessage:
        role = delta.get("role")
        if role is not None and role != MessageRole.ASSISTANT.value:
            logger.error(f"Unhandled delta for role {role}: {delta}")
        msg_id = chunk_id if chunk_id and chunk_id not in self.store else f"asst_{uuid.uuid4().hex}"
        message = self.store.create_assistant_message(msg_id, delta)
        self.active_message = message
        logger.debug(f"Created assistant message {msg_id}")
        return message

    def _close_message(self, message: AssistantMessage | None) -> None:
        if message is None:
            return
        if message.status == AssistantStatus.ACTIVE:
            message.status = AssistantStatus.FINISHED
        if self.active_message is message:
            self.active_message = None

    @staticmethod
    def _finish_reason(value: str) -> FinishReason:
        if value in _FINISH_REASONS:
            return FinishReason(value)
        logger.warning(f"Unknown finish reason {value!r}; treating as stop")
        return FinishReason.STOP

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _run_tools(self, epoch: int, message: AssistantMessage | None) -> bool:
        """Execute the message's tool calls and record their results.

        Returns whether the run should continue.
        """
        calls = ChunkAccumulator(message).finalize() if message is not None else []
        if not calls:
            logger.error("Finish reason is tool_calls but no tool calls were received")
            return False
        missing_id = [c.name for c in calls if not c.id]
        if missing_id:
            logger.error(f"Tool calls without an id cannot be answered: {missing_id}")
            return False

        outcomes = await self.executor.execute(calls)
        if epoch != self._epoch:
            logger.info(f"Discarding {len(outcomes)} tool result(s) from aborted run {epoch}")
            return False

        for outcome in outcomes:
            if not outcome.ok:
                logger.warning(f"Tool {outcome.name} failed: {outcome.error}")
            self.store.create_tool_message(outcome.id, outcome.to_json())
        return True

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable

from voicerelay.config import ConversationConfig
from voicerelay.controller import StreamController
from voicerelay.errors import ConversationClosedError
from voicerelay.events import InterruptEvent, SpeechChannel, SpeechListener, TranscriptEvent
from voicerelay.executor import ToolExecutor
from voicerelay.interrupt import InterruptHandler
from voicerelay.message import AssistantStatus
from voicerelay.provider import ModelProvider
from voicerelay.store import MessageStore
from voicerelay.tools import Tool, ToolRegistry

logger = logging.getLogger(__name__)

GREETING_ID = "greeting"


class Conversation:
    """One spoken conversation between a caller and the model.

    Owns the message store, the run controller and the speech channel
    for a single call, so several conversations can run side by side
    in one event loop.  Events from the voice platform are fed in with
    ``handle_transcript`` and ``handle_interrupt``; both mutate history
    immediately and schedule generation as a background task.

    Example::

        conversation = Conversation.create(OpenAIProvider(), tools=[lookup])
        conversation.on_speech(lambda e: relay.send_text(e.text, e.is_last))
        conversation.handle_transcript(TranscriptEvent("Hi there", is_final=True))
        await conversation.wait_idle()

    Args:
        provider: Source of streamed completions.
        tools: Tools the model may call, or a prepared registry.
        config: Conversation settings.
        conversation_id: Label for logs and spans; random by default.
    """

    def __init__(
        self,
        provider: ModelProvider,
        tools: ToolRegistry | Iterable[Tool | Callable] = (),
        config: ConversationConfig | None = None,
        conversation_id: str | None = None,
    ):
        self.config = config or ConversationConfig()
        self.id = conversation_id or str(uuid.uuid4())
        self.registry = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools)
        self.store = MessageStore()
        self.speech = SpeechChannel()
        self.executor = ToolExecutor(self.registry, parallel=self.config.parallel_tool_calls)
        self.controller = StreamController(
            store=self.store,
            provider=provider,
            executor=self.executor,
            model=self.config.model,
            instructions=self.config.instructions,
            max_continuations=self.config.max_continuations,
            speech=self.speech,
            conversation_id=self.id,
        )
        self.interrupts = InterruptHandler(self.store, self.controller)
        self.closed = False
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def create(cls, provider: ModelProvider, **kwargs) -> "Conversation":
        """Construct a conversation and seed its opening messages."""
        conversation = cls(provider, **kwargs)
        conversation.start()
        return conversation

    def start(self) -> None:
        """Clear history and record the instructions and greeting."""
        self._check_open()
        self.store.reset()
        self.store.create_system_message(self.config.instructions)
        if self.config.greeting:
            greeting = self.store.create_assistant_message(
                GREETING_ID, {"content": self.config.greeting},
            )
            greeting.status = AssistantStatus.FINISHED
        logger.info(f"Conversation {self.id} started")

    def on_speech(self, listener: SpeechListener) -> Callable[[], None]:
        """Register a speech listener; returns a callable that removes it."""
        self._check_open()
        return self.speech.subscribe(listener)

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def handle_transcript(self, event: TranscriptEvent) -> asyncio.Task | None:
        """Record a finished utterance and schedule a response.

        Partial transcripts are ignored.
        """
        self._check_open()
        if not event.is_final:
            logger.debug(f"Ignoring partial transcript {event.text!r}")
            return None
        logger.info(f"Human speech complete: {event.text!r}")
        self.store.create_user_message(event.text)
        return self._schedule(self.controller.start_run())

    def handle_interrupt(self, event: InterruptEvent) -> asyncio.Task:
        """Schedule history reconciliation for a barge-in."""
        self._check_open()
        logger.info(f"Human interrupted bot at: {event.utterance_until_interrupt!r}")
        return self._schedule(self.interrupts.handle(event.utterance_until_interrupt))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def wait_idle(self) -> None:
        """Wait until every scheduled run and interrupt has settled."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def reset(self) -> None:
        """Abort generation, cancel scheduled work and clear history."""
        await self._stop()
        self.store.reset()

    async def dispose(self) -> None:
        """Release the conversation; further events raise."""
        if self.closed:
            return
        await self._stop()
        self.speech.clear()
        self.closed = True
        logger.info(f"Conversation {self.id} disposed")

    async def _stop(self) -> None:
        await self.controller.abort()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _schedule(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Conversation {self.id} run failed: {exc}", exc_info=exc)

    def _check_open(self) -> None:
        if self.closed:
            raise ConversationClosedError(f"Conversation {self.id} is disposed")

import logging
from dataclasses import dataclass, field

from voicerelay.controller import RunResult, StreamController
from voicerelay.message import AssistantMessage, AssistantStatus, MessageRole
from voicerelay.store import MessageStore

logger = logging.getLogger(__name__)


@dataclass
class InterruptResult:
    """Outcome of reconciling history after a barge-in.

    Args:
        message: The truncated assistant message, or ``None`` when no
            message contained the interrupted utterance.
        removed: Ids of the assistant and tool records purged after it.
        run: Result of the restarted run, when one was started.
    """

    message: AssistantMessage | None = None
    removed: list = field(default_factory=list)
    run: RunResult | None = None


class InterruptHandler:
    """Corrects conversation history when the caller talks over the bot.

    Everything generated after the point of interruption was never heard
    by the caller, so it is cut from the log before the next run reads
    it: the interrupted message keeps only the text that precedes the
    interrupted utterance, and later assistant and tool records are
    deleted.  User messages are never touched.
    """

    def __init__(self, store: MessageStore, controller: StreamController):
        self.store = store
        self.controller = controller

    async def handle(self, utterance_until_interrupt: str, restart: bool = True) -> InterruptResult:
        """Abort generation, reconcile history and start a fresh run."""
        stream = self.controller.cancel()
        try:
            result = self.reconcile(utterance_until_interrupt)
        finally:
            if stream is not None:
                await stream.aclose()

        if result.message is not None and restart:
            result.run = await self.controller.start_run()
        return result

    def reconcile(self, utterance_until_interrupt: str) -> InterruptResult:
        """Truncate and purge without suspending."""
        if not utterance_until_interrupt.strip():
            logger.warning("Interrupt carried no utterance; history left unchanged")
            return InterruptResult()

        target = self.find_interrupted(utterance_until_interrupt)
        if target is None:
            logger.warning(
                f"No assistant message contains interrupted utterance {utterance_until_interrupt!r}"
            )
            return InterruptResult()

        self.truncate(target, utterance_until_interrupt)
        removed = self.purge_after(target)
        logger.info(
            f"Interrupted message {target.id} truncated to {target.content!r}; "
            f"removed {len(removed)} later record(s)"
        )
        return InterruptResult(message=target, removed=removed)

    def find_interrupted(self, utterance: str) -> AssistantMessage | None:
        for msg in reversed(self.store.get_ordered_messages()):
            if isinstance(msg, AssistantMessage) and utterance in msg.content:
                return msg
        return None

    @staticmethod
    def truncate(message: AssistantMessage, utterance: str) -> None:
        cut = message.content.find(utterance)
        message.content = message.content[:cut]
        # Results of these calls sit later in the log and are purged with it.
        message.tool_calls = None
        message.status = AssistantStatus.INTERRUPTED

    def purge_after(self, message: AssistantMessage) -> list:
        removed = []
        for msg in self.store.get_ordered_messages():
            if msg.sequence_index <= message.sequence_index:
                continue
            if msg.role in (MessageRole.ASSISTANT, MessageRole.TOOL):
                self.store.delete_message(msg.id)
                removed.append(msg.id)
        return removed

"""Events flowing into and out of a conversation."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class TranscriptEvent:
    """Caller speech recognised by the voice platform.

    Only events with ``is_final`` set represent a finished utterance.
    """

    text: str = ""
    is_final: bool = False


@dataclass
class InterruptEvent:
    """The caller spoke over the bot.

    ``utterance_until_interrupt`` is the trailing text that had already
    been played back when the caller started talking.
    """

    utterance_until_interrupt: str = ""
    duration_until_interrupt_ms: int | None = None


@dataclass
class SpeechEvent:
    """Text increment to be vocalised, in generation order."""

    text: str = ""
    is_last: bool = False


SpeechListener = Callable[[SpeechEvent], None]


class SpeechChannel:
    """Synchronous publish/subscribe for one conversation's speech.

    Listeners run in registration order inside ``emit``.  A listener
    raising is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._listeners: list[SpeechListener] = []

    def subscribe(self, listener: SpeechListener) -> Callable[[], None]:
        """Register *listener*; the returned callable unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: SpeechEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Speech listener {listener!r} failed")

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)

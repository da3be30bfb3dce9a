"""Codec and bridge for the voice platform's conversation-relay socket.

The platform sends JSON frames describing the call (``setup``), the
caller's recognised speech (``prompt``), barge-ins (``interrupt``) and
keypad presses (``dtmf``).  It accepts actions back, most importantly
``text`` tokens to be spoken.  :class:`RelayBridge` connects those
frames to a :class:`~voicerelay.conversation.Conversation`; serving the
websocket itself is left to the embedding application.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterable, Awaitable, Callable
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from voicerelay.conversation import Conversation
from voicerelay.errors import RelayProtocolError
from voicerelay.events import InterruptEvent, SpeechEvent, TranscriptEvent

logger = logging.getLogger(__name__)


class _Frame(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}


# ------------------------------------------------------------------
# Inbound
# ------------------------------------------------------------------

class SetupFrame(_Frame):
    type: Literal["setup"]
    call_sid: str = Field(default="", alias="callSid")
    session_id: str = Field(default="", alias="sessionId")
    from_number: str = Field(default="", alias="from")
    to_number: str = Field(default="", alias="to")
    direction: str = ""
    caller_name: str = Field(default="", alias="callerName")


class PromptFrame(_Frame):
    type: Literal["prompt"]
    voice_prompt: str = Field(alias="voicePrompt")
    lang: str = "en-US"
    last: bool = True


class InterruptFrame(_Frame):
    type: Literal["interrupt"]
    utterance_until_interrupt: str = Field(default="", alias="utteranceUntilInterrupt")
    duration_until_interrupt_ms: int | None = Field(default=None, alias="durationUntilInterruptMs")


class DTMFFrame(_Frame):
    type: Literal["dtmf"]
    digit: str


InboundFrame = Annotated[
    Union[SetupFrame, PromptFrame, InterruptFrame, DTMFFrame],
    Field(discriminator="type"),
]
_inbound_adapter = TypeAdapter(InboundFrame)
_INBOUND_TYPES = {"setup", "prompt", "interrupt", "dtmf"}


def parse_inbound(raw: str | bytes) -> InboundFrame | None:
    """Decode one inbound frame.

    Returns ``None`` for frame types this package does not handle.

    Raises:
        RelayProtocolError: The frame is not JSON or misses required fields.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise RelayProtocolError(f"frame is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise RelayProtocolError("frame must be a JSON object")
    frame_type = data.get("type")
    if frame_type not in _INBOUND_TYPES:
        logger.warning(f"Ignoring relay frame of type {frame_type!r}")
        return None
    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise RelayProtocolError(f"invalid {frame_type} frame: {e}") from e


# ------------------------------------------------------------------
# Outbound
# ------------------------------------------------------------------

class TextToken(_Frame):
    type: Literal["text"] = "text"
    token: str
    last: bool = False


class EndSession(_Frame):
    type: Literal["end"] = "end"
    handoff_data: str = Field(alias="handoffData")


class PlayMedia(_Frame):
    type: Literal["play"] = "play"
    source: str
    loop: int = 1
    preemptible: bool = False


class SendDigits(_Frame):
    type: Literal["sendDigits"] = "sendDigits"
    digits: str


class SwitchLanguage(_Frame):
    type: Literal["transcriptionLanguage"] = "transcriptionLanguage"
    lang: str


RelayAction = Union[TextToken, EndSession, PlayMedia, SendDigits, SwitchLanguage]


def encode_action(action: RelayAction) -> str:
    return action.model_dump_json(by_alias=True)


def end_session(handoff_data: dict | None = None) -> EndSession:
    return EndSession(handoff_data=json.dumps(handoff_data or {}))


# ------------------------------------------------------------------
# Bridge
# ------------------------------------------------------------------

Sender = Callable[[str], Awaitable[None]]


class RelayBridge:
    """Routes relay frames into a conversation and speech back out.

    Outbound actions are queued in order and written by :meth:`pump`,
    since speech is emitted synchronously while the socket write is
    asynchronous.

    Args:
        conversation: The conversation driven by this call.
    """

    def __init__(self, conversation: Conversation):
        self.conversation = conversation
        self.call_sid: str | None = None
        self.outbound: asyncio.Queue[str | None] = asyncio.Queue()
        self._unsubscribe = conversation.on_speech(self._on_speech)

    def _on_speech(self, event: SpeechEvent) -> None:
        self.send_action(TextToken(token=event.text, last=event.is_last))

    def send_action(self, action: RelayAction) -> None:
        self.outbound.put_nowait(encode_action(action))

    def dispatch(self, raw: str | bytes) -> asyncio.Task | None:
        """Handle one inbound frame; returns the task it scheduled, if any."""
        frame = parse_inbound(raw)
        if frame is None:
            return None
        if isinstance(frame, SetupFrame):
            self.call_sid = frame.call_sid
            logger.info(f"Relay session set up for call {frame.call_sid}")
            return None
        if isinstance(frame, PromptFrame):
            return self.conversation.handle_transcript(
                TranscriptEvent(text=frame.voice_prompt, is_final=frame.last)
            )
        if isinstance(frame, InterruptFrame):
            return self.conversation.handle_interrupt(InterruptEvent(
                utterance_until_interrupt=frame.utterance_until_interrupt,
                duration_until_interrupt_ms=frame.duration_until_interrupt_ms,
            ))
        logger.debug(f"dtmf {frame.digit}")
        return None

    async def pump(self, send: Sender) -> None:
        """Write queued actions with *send* until :meth:`close` is called."""
        while True:
            frame = await self.outbound.get()
            if frame is None:
                return
            await send(frame)

    async def serve(self, frames: AsyncIterable[str | bytes], send: Sender) -> None:
        """Drive the bridge from an inbound frame iterator until it ends."""
        writer = asyncio.create_task(self.pump(send))
        try:
            async for raw in frames:
                try:
                    self.dispatch(raw)
                except RelayProtocolError as e:
                    logger.error(f"Dropping relay frame: {e}")
        finally:
            self.close()
            await writer

    def close(self) -> None:
        """Detach from the conversation and stop the writer once drained."""
        self._unsubscribe()
        self.outbound.put_nowait(None)

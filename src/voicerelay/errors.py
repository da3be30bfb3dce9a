"""Exception types raised by voicerelay.

Tool failures never escape the executor; they are converted into tool
outcomes.  The remaining errors surface to whoever awaits a run or feeds
events into a conversation.
"""


class VoiceRelayError(Exception):
    """Base class for all voicerelay errors."""


class TransportError(VoiceRelayError):
    """The generation stream failed while opening or reading."""


class EmptyHistoryError(VoiceRelayError):
    """A run was requested while the store holds nothing to respond to."""


class ToolNotFoundError(VoiceRelayError):
    """A tool call named a function missing from the registry."""

    def __init__(self, name: str):
        super().__init__(f"tool '{name}' not found")
        self.name = name


class ToolExecutionError(VoiceRelayError):
    """A tool raised, or its arguments could not be decoded."""

    def __init__(self, name: str, reason: str):
        super().__init__(f"error calling {name}: {reason}")
        self.name = name
        self.reason = reason


class LLMRecoverableError(VoiceRelayError):
    """Raised by a tool to hand a correctable message back to the model.

    The message is returned as the tool's result instead of an error, so
    the model can retry with better arguments.
    """


class RelayProtocolError(VoiceRelayError):
    """An inbound relay frame could not be decoded."""


class ConversationClosedError(VoiceRelayError):
    """An event arrived for a conversation that was already disposed."""

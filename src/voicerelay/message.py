from enum import Enum

from pydantic import BaseModel, Field, field_serializer


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class FinishReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    FUNCTION_CALL = "function_call"
    CONTENT_FILTER = "content_filter"


class AssistantStatus(str, Enum):
    ACTIVE = "active"
    FINISHED = "finished"
    INTERRUPTED = "interrupted"


class StoreMessage(BaseModel):
    """A record in the conversation log.

    ``sequence_index`` is assigned by the store and defines canonical
    order; ``id`` is only unique within one conversation.
    """

    id: str | int
    sequence_index: int
    role: MessageRole
    content: str = ""

    @field_serializer("role")
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value


class SystemMessage(StoreMessage):
    role: MessageRole = MessageRole.SYSTEM
    name: str | None = None


class UserMessage(StoreMessage):
    role: MessageRole = MessageRole.USER
    name: str | None = None


class AssistantMessage(StoreMessage):
    """Assistant output, built up chunk by chunk while streaming.

    ``tool_calls`` keeps the chat-completion wire shape so it can be
    merged into directly and sent back to the provider untouched::

        {"id": "call_1", "type": "function",
         "function": {"name": "lookup", "arguments": "{...}"}}
    """

    model_config = {"validate_assignment": True}

    role: MessageRole = MessageRole.ASSISTANT
    name: str | None = None
    tool_calls: list | None = None
    finish_reason: FinishReason | None = None
    status: AssistantStatus = AssistantStatus.ACTIVE


class ToolMessage(StoreMessage):
    role: MessageRole = MessageRole.TOOL
    tool_call_id: str


class PromptMessage(BaseModel):
    """Minimal chat-completion request message."""

    role: MessageRole
    content: str
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: list | None = Field(default=None)

    @field_serializer("role")
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    def to_param(self) -> dict:
        return self.model_dump(exclude_none=True)

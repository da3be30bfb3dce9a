import logging

from voicerelay.message import (
    AssistantMessage,
    MessageRole,
    PromptMessage,
    StoreMessage,
    SystemMessage,
    ToolMessage,
    UserMessage,
)
from voicerelay.streaming import merge_append

logger = logging.getLogger(__name__)


class MessageStore:
    """Ordered log of one conversation's messages.

    Every record gets a ``sequence_index`` from a single counter at
    creation time, so ordering never depends on arrival time or role.
    System and user messages use their index as id, assistant messages
    use the id of the stream that produced them, and tool messages use
    ``tool_<index>`` with the answered call in ``tool_call_id``.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        """Clear all records and restart the index at zero."""
        self._messages: dict[str | int, StoreMessage] = {}
        self._next_index = 0

    @property
    def next_index(self) -> int:
        return self._next_index

    def _allocate(self) -> int:
        idx = self._next_index
        self._next_index += 1
        return idx

    def _add(self, msg: StoreMessage) -> None:
        if msg.id in self._messages:
            raise ValueError(f"Message id {msg.id!r} already exists")
        self._messages[msg.id] = msg

    # ------------------------------------------------------------------
    # Record creators
    # ------------------------------------------------------------------

    def create_system_message(self, content: str) -> SystemMessage:
        idx = self._allocate()
        msg = SystemMessage(id=idx, sequence_index=idx, content=content)
        self._add(msg)
        return msg

    def create_user_message(self, content: str) -> UserMessage:
        idx = self._allocate()
        msg = UserMessage(id=idx, sequence_index=idx, content=content)
        self._add(msg)
        return msg

    def create_assistant_message(
        self, id: str, payload: dict | None = None,
    ) -> AssistantMessage:
        """Create an assistant record from the first delta of a stream.

        *payload* is merged onto an empty record, so it may carry any of
        ``content``, ``tool_calls``, ``name`` and ``finish_reason``.
        """
        if id in self._messages:
            raise ValueError(f"Message id {id!r} already exists")
        msg = AssistantMessage(id=id, sequence_index=self._allocate())
        if payload:
            merge_append(msg, {k: v for k, v in payload.items() if k not in ("id", "role")})
        self._add(msg)
        return msg

    def create_tool_message(self, tool_call_id: str, result_json: str) -> ToolMessage:
        """Record a tool result.

        Raises:
            ValueError: If no earlier assistant message made the call.
        """
        if not self._has_tool_call(tool_call_id):
            raise ValueError(f"No assistant tool call with id {tool_call_id!r}")
        idx = self._allocate()
        # Providers may reuse call ids across turns, so the record id is our own.
        msg = ToolMessage(
            id=f"tool_{idx}",
            sequence_index=idx,
            tool_call_id=tool_call_id,
            content=result_json,
        )
        self._add(msg)
        return msg

    def _has_tool_call(self, tool_call_id: str) -> bool:
        for msg in self._messages.values():
            if isinstance(msg, AssistantMessage) and msg.tool_calls:
                if any(isinstance(tc, dict) and tc.get("id") == tool_call_id for tc in msg.tool_calls):
                    return True
        return False

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def delete_message(self, id: str | int) -> bool:
        return self._messages.pop(id, None) is not None

    def get(self, id: str | int) -> StoreMessage | None:
        return self._messages.get(id)

    def get_ordered_messages(self) -> list[StoreMessage]:
        return sorted(self._messages.values(), key=lambda m: m.sequence_index)

    def active_system_message(self) -> SystemMessage | None:
        """The most recent system message, which supersedes all earlier ones."""
        systems = [m for m in self._messages.values() if isinstance(m, SystemMessage)]
        if not systems:
            return None
        return max(systems, key=lambda m: m.sequence_index)

    def has_dialogue(self) -> bool:
        """Whether any non-system message exists to respond to."""
        return any(m.role != MessageRole.SYSTEM for m in self._messages.values())

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, id: str | int) -> bool:
        return id in self._messages

    # ------------------------------------------------------------------
    # Translator
    # ------------------------------------------------------------------

    def to_prompt(self, default_instructions: str | None = None) -> list[dict]:
        """Translate the log into chat-completion request messages.

        Superseded system messages are dropped and ``None`` fields are
        omitted.  When the log holds no system message at all,
        *default_instructions* (if given) is sent as the first message.
        An assistant message only carries the tool calls answered by a
        tool record before the next assistant message; calls whose
        results were discarded by an aborted run are left out.
        """
        active_system = self.active_system_message()
        params: list[dict] = []
        if active_system is None and default_instructions:
            params.append(PromptMessage(
                role=MessageRole.SYSTEM, content=default_instructions,
            ).to_param())

        ordered = self.get_ordered_messages()
        for pos, msg in enumerate(ordered):
            if isinstance(msg, SystemMessage):
                if msg is not active_system:
                    continue
                prompt = PromptMessage(role=msg.role, content=msg.content, name=msg.name)
            elif isinstance(msg, UserMessage):
                prompt = PromptMessage(role=msg.role, content=msg.content, name=msg.name)
            elif isinstance(msg, AssistantMessage):
                answered = _answered_calls(ordered[pos + 1:])
                calls = [
                    tc for tc in (msg.tool_calls or [])
                    if isinstance(tc, dict) and tc.get("id") in answered
                ]
                prompt = PromptMessage(
                    role=msg.role,
                    content=msg.content,
                    name=msg.name,
                    tool_calls=[_clean_tool_call(tc) for tc in calls] or None,
                )
            elif isinstance(msg, ToolMessage):
                prompt = PromptMessage(
                    role=msg.role, content=msg.content, tool_call_id=msg.tool_call_id,
                )
            else:
                logger.error(f"Unhandled message type {type(msg).__name__}")
                continue
            params.append(prompt.to_param())
        return params


def _answered_calls(following: list[StoreMessage]) -> set[str]:
    answered: set[str] = set()
    for msg in following:
        if isinstance(msg, AssistantMessage):
            break
        if isinstance(msg, ToolMessage):
            answered.add(msg.tool_call_id)
    return answered


def _clean_tool_call(tc: dict) -> dict:
    function = tc.get("function") or {}
    return {
        "id": tc["id"],
        "type": tc.get("type") or "function",
        "function": {
            "name": function.get("name", ""),
            "arguments": function.get("arguments", ""),
        },
    }

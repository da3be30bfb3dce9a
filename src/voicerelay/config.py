import logging
import os

from pydantic import BaseModel, Field

LOG_FORMAT = '%(asctime)s:%(name)s:%(levelname)s:%(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

DEFAULT_INSTRUCTIONS = (
    "You are a voice assistant on a phone call. Everything you write is "
    "read aloud, so answer in short, plain sentences without markdown."
)


class ConversationConfig(BaseModel):
    """Settings for one conversation.

    Args:
        model: Model name passed to the provider.
        instructions: System prompt seeded when a conversation starts.
        greeting: Text the bot speaks first, recorded as the opening
            assistant message.  ``None`` records nothing.
        max_continuations: Follow-up streams allowed per run for tool
            results and length truncation.
        parallel_tool_calls: Run the tool calls of one turn concurrently.
    """

    model: str = "gpt-4o-mini"
    instructions: str = DEFAULT_INSTRUCTIONS
    greeting: str | None = None
    max_continuations: int = Field(default=10, ge=0)
    parallel_tool_calls: bool = True

    @classmethod
    def from_env(cls, **overrides) -> "ConversationConfig":
        """Build a config from ``VOICERELAY_*`` environment variables."""
        values: dict = {}
        if model := os.getenv("VOICERELAY_MODEL"):
            values["model"] = model
        if instructions := os.getenv("VOICERELAY_INSTRUCTIONS"):
            values["instructions"] = instructions
        if greeting := os.getenv("VOICERELAY_GREETING"):
            values["greeting"] = greeting
        if max_continuations := os.getenv("VOICERELAY_MAX_CONTINUATIONS"):
            values["max_continuations"] = int(max_continuations)
        values.update(overrides)
        return cls(**values)


def configure_logging(
        level: int = logging.INFO,
        log_file: str | None = None,
) -> None:
    """Install process-wide logging for an application embedding voicerelay.

    The library never configures logging on import.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=handlers,
        force=True,
    )

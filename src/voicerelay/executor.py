import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from voicerelay.errors import (
    LLMRecoverableError,
    ToolExecutionError,
    ToolNotFoundError,
    VoiceRelayError,
)
from voicerelay.instrumentation import record_error, tool_span
from voicerelay.streaming import ToolCall
from voicerelay.tools import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class ToolOutcome:
    """Result of executing a single tool call.

    Exactly one of ``data`` / ``error`` is meaningful, selected by ``ok``.
    """

    id: str
    name: str
    data: Any = None
    error: VoiceRelayError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_json(self) -> str:
        """Encode the outcome as tool-message content."""
        if self.ok:
            return json.dumps(self.data, default=str)
        return json.dumps({"error": str(self.error)})


class ToolExecutor:
    """Dispatches the tool calls of one assistant turn.

    Calls run concurrently when ``parallel`` is set; one call failing
    never affects the others, and ``execute`` itself never raises for a
    tool-level failure.

    Args:
        registry: The tools available to the model.
        parallel: Run the calls of one turn concurrently.
    """

    def __init__(self, registry: ToolRegistry, parallel: bool = True):
        self.registry = registry
        self.parallel = parallel

    async def execute(self, calls: list[ToolCall]) -> list[ToolOutcome]:
        """Run every call and return outcomes in call order."""
        if self.parallel and len(calls) > 1:
            return list(await asyncio.gather(*(self._execute_one(c) for c in calls)))
        return [await self._execute_one(c) for c in calls]

    async def _execute_one(self, tc: ToolCall) -> ToolOutcome:
        async with tool_span(tc.name, tc.id) as span:
            outcome = await self._invoke(tc)
            if not outcome.ok:
                record_error(span, outcome.error)
            return outcome

    async def _invoke(self, tc: ToolCall) -> ToolOutcome:
        tool_obj = self.registry.get(tc.name)
        if tool_obj is None:
            logger.warning(f"Tool not found: {tc.name}")
            return ToolOutcome(id=tc.id, name=tc.name, error=ToolNotFoundError(tc.name))

        try:
            params = json.loads(tc.arguments) if tc.arguments.strip() else {}
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in arguments for {tc.name}: {e}")
            return ToolOutcome(
                id=tc.id, name=tc.name,
                error=ToolExecutionError(tc.name, f"invalid arguments: {e}"),
            )
        if not isinstance(params, dict):
            return ToolOutcome(
                id=tc.id, name=tc.name,
                error=ToolExecutionError(tc.name, "arguments must be a JSON object"),
            )

        logger.info(f"Calling {tc.name} with {params}")
        try:
            data = await tool_obj(**params)
        except LLMRecoverableError as e:
            logger.info(f"Tool {tc.name} requested retry: {e}")
            return ToolOutcome(id=tc.id, name=tc.name, data=str(e))
        except Exception as e:
            logger.error(f"Tool {tc.name} raised: {e}")
            return ToolOutcome(
                id=tc.id, name=tc.name, error=ToolExecutionError(tc.name, str(e)),
            )

        logger.info(f"Tool {tc.name} returned {data}")
        return ToolOutcome(id=tc.id, name=tc.name, data=data)

import pytest

from voicerelay.tools import (
    Tool,
    ToolRegistry,
    _build_parameters_schema,
    _parse_param_descriptions,
    tool,
)


def transfer_call(department: str, priority: int, notes: list[str], urgent: bool = False):
    """Transfer the caller to a human.

    Args:
        department (str): Team to route the call to.
        priority: Queue priority,
            lower is sooner.
        notes: Summary lines for the agent.

    Returns:
        str: Confirmation read back to the caller.
    """


def schedule_callback(phone: str, when: str):
    """Book a callback.

    :param phone: Number to call back.
    :param when: ISO timestamp.
    """


class TestSchema:
    def test_types_and_required(self):
        schema, required = _build_parameters_schema(transfer_call)
        props = schema["properties"]
        assert {name: p["type"] for name, p in props.items()} == {
            "department": "string",
            "priority": "integer",
            "notes": "array",
            "urgent": "boolean",
        }
        assert required == ["department", "priority", "notes"]
        assert schema["required"] == required

    def test_unannotated_and_variadic_params(self):
        def relay(target, *args, **kwargs):
            pass

        schema, required = _build_parameters_schema(relay)
        assert schema["properties"] == {"target": {"type": "string", "description": ""}}
        assert required == ["target"]


class TestParamDescriptions:
    def test_google_style_with_types_and_continuation(self):
        assert _parse_param_descriptions(transfer_call) == {
            "department": "Team to route the call to.",
            "priority": "Queue priority,\nlower is sooner.",
            "notes": "Summary lines for the agent.",
        }

    def test_sphinx_style(self):
        assert _parse_param_descriptions(schedule_callback) == {
            "phone": "Number to call back.",
            "when": "ISO timestamp.",
        }

    def test_no_docstring(self):
        def hang_up():
            pass

        assert _parse_param_descriptions(hang_up) == {}


# ---------------------------------------------------------------------------
# Tool
# ---------------------------------------------------------------------------


class TestTool:
    def test_schema_from_function(self):
        @tool
        def lookup(order_id: str, verbose: bool = False):
            """Look up an order.

            Args:
                order_id: The order number.
            """

        assert lookup.model_dump() == {
            "type": "function",
            "function": {
                "name": "lookup",
                "description": "Look up an order.",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "order_id": {"type": "string", "description": "The order number."},
                        "verbose": {"type": "boolean", "description": ""},
                    },
                    "required": ["order_id"],
                },
            },
        }

    def test_explicit_schema_overrides(self):
        def fetch(**kwargs):
            return kwargs

        t = Tool(
            fetch,
            name="getCustomerProfile",
            description="Fetches the caller's profile",
            parameters_schema={"type": "object", "properties": {}},
        )
        assert t.name == "getCustomerProfile"
        assert t.model_dump()["function"]["parameters"] == {"type": "object", "properties": {}}

    @pytest.mark.asyncio
    async def test_calls_sync_function(self):
        @tool
        def add(a: int, b: int):
            """Add."""
            return a + b

        assert await add(a=1, b=2) == 3

    @pytest.mark.asyncio
    async def test_calls_async_function(self):
        @tool
        async def greet(name: str):
            """Greet."""
            return f"Hello {name}"

        assert await greet(name="Roger") == "Hello Roger"


class TestToolRegistry:
    def test_register_and_lookup(self):
        @tool
        def ping():
            """Ping."""
            return "pong"

        registry = ToolRegistry([ping])
        assert registry.get("ping") is ping
        assert "ping" in registry
        assert registry.get("missing") is None
        assert len(registry) == 1

    def test_plain_functions_are_wrapped(self):
        def hello():
            """Say hello."""

        registry = ToolRegistry([hello])
        assert isinstance(registry.get("hello"), Tool)

    def test_duplicate_names_rejected(self):
        def a():
            pass

        registry = ToolRegistry([a])
        with pytest.raises(ValueError, match="Duplicate tool name"):
            registry.register(Tool(a))

    def test_schemas_for_provider(self):
        @tool
        def ping():
            """Ping."""

        assert ToolRegistry([ping]).schemas() == [ping.model_dump()]
        assert ToolRegistry().schemas() == []

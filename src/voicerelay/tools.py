import inspect
import re
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import BaseModel, Field


_JSON_TYPES = {
    "str": "string",
    "int": "integer",
    "float": "number",
    "bool": "boolean",
    "list": "array",
    "tuple": "array",
    "set": "array",
    "dict": "object",
    "NoneType": "null",
}


def _json_type(annotation) -> str:
    if annotation is inspect.Parameter.empty:
        return "string"
    origin = getattr(annotation, "__origin__", None)
    if origin is not None:
        annotation = origin
    return _JSON_TYPES.get(getattr(annotation, "__name__", ""), "string")


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Pull per-parameter descriptions from a Google or Sphinx docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return {}

    sphinx = dict(re.findall(r"^:param\s+(\w+):\s*(.+)$", doc, re.MULTILINE))
    if sphinx:
        return {k: v.strip() for k, v in sphinx.items()}

    descriptions: dict[str, str] = {}
    in_args = False
    current: str | None = None
    for line in doc.splitlines():
        stripped = line.strip()
        if stripped in ("Args:", "Arguments:", "Parameters:"):
            in_args = True
            continue
        if not in_args:
            continue
        if not stripped:
            current = None
            continue
        if not line.startswith(" ") and stripped.endswith(":"):
            break
        match = re.match(r"^\s{0,8}(\w+)(?:\s*\([^)]*\))?:\s*(.*)$", line)
        if match and (current is None or len(line) - len(line.lstrip()) <= 4):
            current = match.group(1)
            descriptions[current] = match.group(2).strip()
        elif current is not None:
            descriptions[current] += "\n" + stripped
    return descriptions


def _build_parameters_schema(func: Callable) -> tuple[dict, list[str]]:
    """Build a JSON schema object for *func*'s parameters.

    Returns the schema and the list of required parameter names.
    """
    signature = inspect.signature(func)
    descriptions = _parse_param_descriptions(func)
    properties: dict[str, dict] = {}
    required: list[str] = []
    for name, param in signature.parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        properties[name] = {
            "type": _json_type(param.annotation),
            "description": descriptions.get(name, ""),
        }
        if param.default is inspect.Parameter.empty:
            required.append(name)
    schema = {"type": "object", "properties": properties, "required": required}
    return schema, required


class Tool(BaseModel):
    """A callable the model may invoke by name.

    Sync and async functions are both supported.  Unless given
    explicitly, the name, description and parameter schema are read
    from the function itself.

    Args:
        func: The function to call with the decoded arguments.
        name: Name exposed to the model.
        description: Description exposed to the model.
        parameters_schema: JSON schema for the arguments object.
    """

    func: Callable = Field(exclude=True)
    name: str
    description: str = ""
    parameters_schema: dict

    model_config = {"arbitrary_types_allowed": True}

    def __init__(
        self,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
        parameters_schema: dict | None = None,
    ):
        if parameters_schema is None:
            parameters_schema, _ = _build_parameters_schema(func)
        if description is None:
            doc = inspect.getdoc(func) or ""
            description = doc.split("\n\n")[0].strip()
        super().__init__(
            func=func,
            name=name or func.__name__,
            description=description,
            parameters_schema=parameters_schema,
        )

    def model_dump(self, **kwargs):
        """Return the function-tool schema sent to the provider."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }

    async def __call__(self, **kwargs) -> Any:
        result = self.func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


def tool(func: Callable) -> Tool:
    """Decorator form of :class:`Tool`.

    Example::

        @tool
        async def get_customer_profile():
            \"\"\"Fetches the caller's profile.\"\"\"
            return {"name": "Roger"}
    """
    return Tool(func)


class ToolRegistry:
    """Name-to-tool lookup shared by the executor and the provider request."""

    def __init__(self, tools: Iterable[Tool | Callable] = ()):
        self._tools: dict[str, Tool] = {}
        for t in tools:
            self.register(t)

    def register(self, t: Tool | Callable) -> Tool:
        if not isinstance(t, Tool):
            t = Tool(t)
        if t.name in self._tools:
            raise ValueError(f"Duplicate tool name: '{t.name}'")
        self._tools[t.name] = t
        return t

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def schemas(self) -> list[dict]:
        return [t.model_dump() for t in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

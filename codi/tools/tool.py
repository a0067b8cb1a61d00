"""Tool class, decorator and registry for tools callable by the agent."""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from ..types.types import ToolCall, ToolDefinition, ToolResult

logger = logging.getLogger(__name__)


class ToolInputError(ValueError):
    """Tool input failed validation against the tool's input model."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Invalid input for tool '{tool_name}': {message}")


class Tool:
    """
    A named capability the model can invoke.

    Input is validated once, against ``input_model``, when the registry
    executes a call. The function receives the validated model (or nothing
    when the tool takes no input) and may be sync or async.
    """

    def __init__(
        self,
        name: str,
        description: str,
        func: Callable[..., Any],
        input_model: type[BaseModel] | None = None,
    ):
        self.name = name
        self.description = description
        self.func = func
        self.input_model = input_model

    def validate_input(self, raw: dict[str, Any]) -> BaseModel | None:
        if self.input_model is None:
            return None
        try:
            return self.input_model.model_validate(raw)
        except ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
                for err in e.errors()
            )
            raise ToolInputError(self.name, errors) from e

    async def run(self, raw: dict[str, Any]) -> str:
        """Validate ``raw`` and run the tool, returning its output as text."""
        validated = self.validate_input(raw)
        result = self.func(validated) if validated is not None else self.func()
        if inspect.isawaitable(result):
            result = await result
        return _stringify(result)

    def to_definition(self) -> ToolDefinition:
        if self.input_model is not None:
            schema = self.input_model.model_json_schema()
        else:
            schema = {"type": "object", "properties": {}}
        return ToolDefinition(name=self.name, description=self.description, input_schema=schema)


def _stringify(result: Any) -> str:
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    return json.dumps(result, default=str)


def _validate_tool_signature(func: Callable[..., Any]) -> type[BaseModel] | None:
    """Return the input model of a tool function.

    Raises:
        TypeError: If the function takes more than one parameter or its
            parameter is not typed as a Pydantic BaseModel class.
    """
    params = list(inspect.signature(func).parameters.values())
    if not params:
        return None
    if len(params) > 1:
        raise TypeError(
            f"Tool function '{func.__name__}' must have at most 1 parameter: (input: BaseModel)"
        )
    annotation = params[0].annotation
    if isinstance(annotation, str):
        # Postponed annotations
        annotation = inspect.get_annotations(func, eval_str=True).get(params[0].name)
    if not (inspect.isclass(annotation) and issubclass(annotation, BaseModel)):
        raise TypeError(
            f"Tool function '{func.__name__}': parameter '{params[0].name}' must be typed "
            f"as a Pydantic BaseModel class, got {annotation}"
        )
    return annotation


def tool(
    name: str | Callable[..., Any] | None = None,
    description: str | None = None,
):
    """
    Decorator turning a function into a Tool.

    Example:
        class ReadFileInput(BaseModel):
            path: str = Field(description="File to read")

        @tool(description="Read a file")
        async def read_file(input: ReadFileInput) -> str:
            return Path(input.path).read_text()

        registry.register(read_file)
    """

    def decorator(func: Callable[..., Any]) -> Tool:
        input_model = _validate_tool_signature(func)
        return Tool(
            name=tool_name or func.__name__,
            description=description or inspect.getdoc(func) or "",
            func=func,
            input_model=input_model,
        )

    # Handle both @tool and @tool(...) syntax
    if callable(name):
        tool_name = None
        return decorator(name)
    tool_name = name
    return decorator


class ToolRegistry:
    """Tools available to the agent, keyed by name."""

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, t: Tool) -> None:
        if t.name in self._tools:
            raise ValueError(f"Tool '{t.name}' is already registered")
        self._tools[t.name] = t

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def get_definitions(self) -> list[ToolDefinition]:
        return [t.to_definition() for t in self._tools.values()]

    async def execute(self, call: ToolCall) -> ToolResult:
        """Run a tool call. Failures come back as error results, never as exceptions."""
        t = self._tools.get(call.name)
        if t is None:
            return ToolResult(
                tool_use_id=call.id,
                content=f"ERROR: Unknown tool: {call.name}",
                is_error=True,
                name=call.name,
            )
        try:
            content = await t.run(call.input)
        except Exception as e:
            logger.debug("Tool %s failed: %s", call.name, e)
            return ToolResult(
                tool_use_id=call.id, content=f"ERROR: {e}", is_error=True, name=call.name
            )
        return ToolResult(tool_use_id=call.id, content=content, name=call.name)

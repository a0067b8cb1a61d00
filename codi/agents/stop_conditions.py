"""Stop conditions for agents.

Stop conditions let a host decide when an agent should stop, in addition to
the built-in limits. They are checked at the end of every iteration that
produced tool calls, after the built-in terminal conditions.
"""

import asyncio
import functools
import inspect
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from ..types.types import ToolCall, Usage

logger = logging.getLogger(__name__)


class StopConditionContext(BaseModel):
    """Context available to stop conditions.

    This context is passed to stop conditions and contains information about
    the current chat turn.
    """

    # Iterations completed so far in this turn
    iteration: int = 0

    # Tool calls executed so far in this turn, in request order
    tool_calls: list[ToolCall] = Field(default_factory=list)

    # Assistant text of each iteration
    texts: list[str] = Field(default_factory=list)

    usage: Usage = Field(default_factory=Usage)
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert stop condition context to dictionary for serialization."""
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Any) -> "StopConditionContext":
        """Create StopConditionContext from dictionary."""
        if isinstance(data, StopConditionContext):
            return data
        if isinstance(data, dict):
            return cls.model_validate(data)
        raise TypeError(f"Cannot create StopConditionContext from {type(data)}")


def stop_condition(fn: Callable) -> Callable:
    """
    Decorator for stop condition functions.

    Stop conditions take `ctx: StopConditionContext` as the first parameter
    and optionally a second parameter (config class instance) for configuration.
    They return a boolean (True to stop, False to continue).

    When called with config params, they return a configured callable that the
    agent calls later with StopConditionContext.

    Usage:
        # Simple stop condition (no config)
        @stop_condition
        async def always_stop(ctx: StopConditionContext) -> bool:
            return True

        # Stop condition with config
        class MaxTokensConfig(BaseModel):
            limit: int

        @stop_condition
        async def max_tokens(ctx: StopConditionContext, config: MaxTokensConfig) -> bool:
            return ctx.usage.total_tokens >= config.limit

        agent = Agent(..., stop_conditions=[max_tokens(MaxTokensConfig(limit=1000))])
    """
    sig = inspect.signature(fn)
    params = list(sig.parameters.values())

    # Validate signature: first parameter must be StopConditionContext
    if not params or params[0].annotation not in (StopConditionContext, "StopConditionContext"):
        raise TypeError(
            f"Invalid stop_condition function '{fn.__name__}': "
            f"first parameter must be typed as 'StopConditionContext'. "
            f"Got {params[0].annotation if params else 'no parameters'}."
        )

    # Check if there's a second parameter (for config) - it's optional
    config_class = None
    has_config = len(params) >= 2 and params[1].annotation != inspect.Signature.empty
    if has_config:
        config_class = params[1].annotation

        # Validate that it's a Pydantic BaseModel
        if not (isinstance(config_class, type) and issubclass(config_class, BaseModel)):
            raise TypeError(
                f"Invalid stop_condition function '{fn.__name__}': "
                f"second parameter must be a Pydantic BaseModel class, got {config_class}."
            )

    return_annotation = sig.return_annotation
    if return_annotation != inspect.Signature.empty and return_annotation not in (bool, "bool"):
        logger.warning(
            "stop_condition '%s' should return bool, got %s",
            fn.__name__,
            return_annotation,
        )

    is_async = asyncio.iscoroutinefunction(fn)

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        """
        Return a configured callable when the condition takes config, else the
        function itself.
        """
        if not has_config:
            return fn

        if args and len(args) == 1 and isinstance(args[0], config_class):
            config = args[0]
        elif args and len(args) == 1 and isinstance(args[0], dict):
            config = config_class.model_validate(args[0])
        elif kwargs:
            config = config_class(**kwargs)
        elif args:
            raise TypeError(
                f"stop_condition '{fn.__name__}' takes a {config_class.__name__}, "
                "a dict or keyword arguments"
            )
        else:
            # Config classes with all-default fields can be built empty
            config = config_class()

        # Preserve async/sync behavior of original function
        if is_async:

            async def configured_callable(ctx: StopConditionContext) -> bool:
                return await fn(ctx, config)
        else:

            def configured_callable(ctx: StopConditionContext) -> bool:
                return fn(ctx, config)

        configured_callable.__stop_condition_fn__ = fn
        configured_callable.__stop_condition_name__ = fn.__name__
        configured_callable.__stop_condition_config__ = config
        return configured_callable

    # Add metadata for identification
    wrapper.__stop_condition_fn__ = fn
    wrapper.__stop_condition_name__ = fn.__name__
    wrapper.__stop_condition_has_config__ = has_config
    wrapper.__stop_condition_config_class__ = config_class

    return wrapper


async def evaluate_stop_conditions(
    conditions: list[Callable], ctx: StopConditionContext
) -> str | None:
    """Return the name of the first condition that fires, or None."""
    for condition in conditions:
        result = condition(ctx)
        if inspect.isawaitable(result):
            result = await result
        if result:
            name = getattr(condition, "__stop_condition_name__", None)
            return name or getattr(condition, "__name__", "stop_condition")
    return None


# Built-in stop condition functions
class MaxTokensConfig(BaseModel):
    """Configuration for max_tokens stop condition."""

    limit: int


@stop_condition
async def max_tokens(ctx: StopConditionContext, config: MaxTokensConfig) -> bool:
    """
    Stop when total tokens used in the turn reach the limit.

    Usage:
        agent = Agent(..., stop_conditions=[max_tokens(MaxTokensConfig(limit=1000))])
    """
    total = ctx.usage.total_tokens or ctx.usage.input_tokens + ctx.usage.output_tokens
    return total >= config.limit


class MaxStepsConfig(BaseModel):
    """Configuration for max_steps stop condition."""

    count: int = 5


@stop_condition
def max_steps(ctx: StopConditionContext, config: MaxStepsConfig) -> bool:
    """
    Stop when the number of iterations reaches count.

    Usage:
        agent = Agent(..., stop_conditions=[max_steps()])  # Uses default count=5
        agent = Agent(..., stop_conditions=[max_steps(MaxStepsConfig(count=10))])
    """
    return ctx.iteration >= config.count


class ExecutedToolConfig(BaseModel):
    """Configuration for executed_tool stop condition."""

    tool_names: list[str]


@stop_condition
def executed_tool(ctx: StopConditionContext, config: ExecutedToolConfig) -> bool:
    """
    Stop when all specified tools have been executed.

    Usage:
        agent = Agent(..., stop_conditions=[
            executed_tool(ExecutedToolConfig(tool_names=["write_file", "bash"]))
        ])
    """
    required = set(config.tool_names)
    if not required:
        return False
    return required.issubset({call.name for call in ctx.tool_calls})


class HasTextConfig(BaseModel):
    """Configuration for has_text stop condition."""

    texts: list[str]


@stop_condition
def has_text(ctx: StopConditionContext, config: HasTextConfig) -> bool:
    """
    Stop when all specified texts are found in the assistant's text.

    Usage:
        agent = Agent(..., stop_conditions=[has_text(HasTextConfig(texts=["done", "complete"]))])
    """
    if not config.texts:
        return False
    full_text = " ".join(t for t in ctx.texts if t)
    return all(t in full_text for t in config.texts)

__version__ = "0.1.0"

# Core imports
from .agents.agent import Agent, AgentCallbacks, AgentResult, AgentStopReason
from .agents.debugger import AgentDebugger, AgentSnapshot
from .agents.stop_conditions import (
    ExecutedToolConfig,
    HasTextConfig,
    MaxStepsConfig,
    MaxTokensConfig,
    StopConditionContext,
    executed_tool,
    has_text,
    max_steps,
    max_tokens,
    stop_condition,
)
from .execution import (
    ApprovalGate,
    ApprovalStore,
    ConfirmationKind,
    ConfirmationPayload,
    ConfirmationResult,
)
from .features.audit import AuditLogger
from .llm import Provider, ProviderError, ProviderResponse, extract_tool_calls, get_provider
from .memory import (
    CompactionMode,
    CompactionResult,
    ContextConfig,
    ToolResultCache,
    WorkingSet,
    build_continuation_prompt,
    compute_context_config,
)
from .tools.tool import Tool, ToolInputError, ToolRegistry, tool
from .types.types import (
    Message,
    ToolCall,
    ToolCallSource,
    ToolDefinition,
    ToolResult,
    Usage,
)
from .utils.config import AgentSettings, load_settings

__all__ = [
    "Agent",
    "AgentCallbacks",
    "AgentResult",
    "AgentStopReason",
    "AgentSettings",
    "load_settings",
    "stop_condition",
    "max_steps",
    "max_tokens",
    "executed_tool",
    "has_text",
    "MaxTokensConfig",
    "MaxStepsConfig",
    "ExecutedToolConfig",
    "HasTextConfig",
    "StopConditionContext",
    # Debugging and audit
    "AgentDebugger",
    "AgentSnapshot",
    "AuditLogger",
    # Providers
    "Provider",
    "ProviderError",
    "ProviderResponse",
    "get_provider",
    "extract_tool_calls",
    # Tools
    "tool",
    "Tool",
    "ToolInputError",
    "ToolRegistry",
    # Approval gate
    "ApprovalGate",
    "ApprovalStore",
    "ConfirmationKind",
    "ConfirmationPayload",
    "ConfirmationResult",
    # Memory
    "CompactionMode",
    "CompactionResult",
    "ContextConfig",
    "ToolResultCache",
    "WorkingSet",
    "build_continuation_prompt",
    "compute_context_config",
    # Types
    "Message",
    "ToolCall",
    "ToolCallSource",
    "ToolDefinition",
    "ToolResult",
    "Usage",
]

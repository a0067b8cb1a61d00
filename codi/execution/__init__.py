"""Execution safety -- deciding whether a tool call runs.

Provides dangerous-command detection, persisted approval allow-lists,
command and path categories, diff previews and the approval gate that
combines them.
"""

# Approvals
from .approvals import ApprovalCheck, ApprovalList, ApprovalStore
from .categories import COMMAND_CATEGORIES, PATH_CATEGORIES, Category

# Diff previews
from .diff import DiffResult, generate_edit_diff, generate_write_diff

# Gate
from .gate import (
    ApprovalGate,
    ConfirmationKind,
    ConfirmationPayload,
    ConfirmationResult,
    GateDecision,
    GateOutcome,
    normalize_tool_call,
)
from .patterns import suggest_path_pattern, suggest_pattern

# Security utilities
from .security import (
    DESTRUCTIVE_TOOLS,
    SAFE_TOOLS,
    DangerousPattern,
    assert_safe_path,
    check_dangerous_bash,
    compile_user_patterns,
    is_within_restriction,
)

__all__ = [
    # Gate
    "ApprovalGate",
    "ConfirmationKind",
    "ConfirmationPayload",
    "ConfirmationResult",
    "GateDecision",
    "GateOutcome",
    "normalize_tool_call",
    # Approvals
    "ApprovalCheck",
    "ApprovalList",
    "ApprovalStore",
    "COMMAND_CATEGORIES",
    "PATH_CATEGORIES",
    "Category",
    "suggest_pattern",
    "suggest_path_pattern",
    # Diff previews
    "DiffResult",
    "generate_edit_diff",
    "generate_write_diff",
    # Security
    "DESTRUCTIVE_TOOLS",
    "SAFE_TOOLS",
    "DangerousPattern",
    "assert_safe_path",
    "check_dangerous_bash",
    "compile_user_patterns",
    "is_within_restriction",
]

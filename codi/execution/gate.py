"""Approval gate deciding whether a tool call runs, and with whose consent.

Order of checks for each call:

1. Normalize alternate input shapes (``bash`` with ``cmd``)
2. Tools in the auto-approve set run without confirmation
3. ``bash`` commands matching an approved pattern or category run
4. File-mutating calls whose path matches an approved path pattern or category run
5. Remaining destructive calls require confirmation

Commands matching a blocking dangerous pattern always require confirmation.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable, Iterable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..types.types import ToolCall
from .approvals import ApprovalStore
from .categories import match_command_categories, match_path_categories
from .diff import DiffResult, generate_edit_diff, generate_write_diff
from .patterns import suggest_path_pattern, suggest_pattern
from .security import (
    DESTRUCTIVE_TOOLS,
    FILE_MUTATING_TOOLS,
    DangerCheck,
    DangerousPattern,
    check_dangerous_bash,
    is_within_restriction,
)

logger = logging.getLogger(__name__)

PATH_KEYS = ("path", "file_path", "file")
SHELL_NAMES = frozenset({"bash", "sh"})


# -- Normalization ------------------------------------------------------------


def normalize_tool_call(call: ToolCall) -> ToolCall:
    """Map alternate ``bash`` input shapes onto ``{"command": str}``.

    Some models send ``{"cmd": ["bash", "-lc", "git status"]}`` or
    ``{"cmd": "git status"}``. From a list, the first element that is neither
    a shell name nor a flag is the command. A list without one is left as is.
    """
    if call.name != "bash" or "command" in call.input or "cmd" not in call.input:
        return call
    raw = call.input["cmd"]
    if isinstance(raw, list):
        command = next(
            (
                str(part)
                for part in raw
                if not str(part).startswith("-") and str(part) not in SHELL_NAMES
            ),
            None,
        )
        if command is None:
            return call
    else:
        command = str(raw)
    new_input = {k: v for k, v in call.input.items() if k != "cmd"}
    new_input["command"] = command
    return call.model_copy(update={"input": new_input})


def get_tool_path(tool_input: dict[str, Any]) -> str | None:
    for key in PATH_KEYS:
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return value
    return None


# -- Confirmation models ------------------------------------------------------


class ConfirmationKind(str, Enum):
    APPROVE = "approve"
    DENY = "deny"
    ABORT = "abort"
    APPROVE_PATTERN = "approve_pattern"
    APPROVE_CATEGORY = "approve_category"


class ConfirmationResult(BaseModel):
    """The user's answer to a confirmation request."""

    kind: ConfirmationKind
    pattern: str | None = None
    category_id: str | None = None

    @classmethod
    def approve(cls) -> ConfirmationResult:
        return cls(kind=ConfirmationKind.APPROVE)

    @classmethod
    def deny(cls) -> ConfirmationResult:
        return cls(kind=ConfirmationKind.DENY)

    @classmethod
    def abort(cls) -> ConfirmationResult:
        return cls(kind=ConfirmationKind.ABORT)

    @classmethod
    def approve_pattern(cls, pattern: str) -> ConfirmationResult:
        return cls(kind=ConfirmationKind.APPROVE_PATTERN, pattern=pattern)

    @classmethod
    def approve_category(cls, category_id: str) -> ConfirmationResult:
        return cls(kind=ConfirmationKind.APPROVE_CATEGORY, category_id=category_id)


class SuggestedCategory(BaseModel):
    id: str
    name: str
    description: str


class ConfirmationPayload(BaseModel):
    """Everything a UI needs to ask the user about one tool call."""

    tool_call: ToolCall
    is_dangerous: bool = False
    danger_reason: str | None = None
    blocked: bool = False
    diff_preview: DiffResult | None = None
    diff_error: str | None = None
    suggested_pattern: str | None = None
    matched_categories: list[SuggestedCategory] = Field(default_factory=list)


ConfirmCallback = Callable[[ConfirmationPayload], Awaitable[ConfirmationResult]]


class GateDecision(str, Enum):
    EXECUTE = "execute"
    DENY = "deny"
    ABORT = "abort"


class GateOutcome(BaseModel):
    decision: GateDecision
    call: ToolCall
    reason: str | None = None
    confirmed: bool = False


# -- Gate ---------------------------------------------------------------------


class ApprovalGate:
    """Decides, per tool call, between running it and asking the user.

    Args:
        store: Persisted allow-lists. Without a store no allow-list applies.
        auto_approve_all: Skip confirmation for every tool.
        auto_approve_tools: Tool names that never need confirmation.
        dangerous_patterns: Extra user-supplied dangerous command patterns.
        workspace_root: Paths outside this directory never match path allow-lists.
    """

    def __init__(
        self,
        store: ApprovalStore | None = None,
        auto_approve_all: bool = False,
        auto_approve_tools: Iterable[str] = (),
        dangerous_patterns: list[DangerousPattern] | None = None,
        workspace_root: str | None = None,
    ):
        self.store = store
        self.auto_approve_all = auto_approve_all
        self.auto_approve_tools = set(auto_approve_tools)
        self.dangerous_patterns = dangerous_patterns or []
        self.workspace_root = os.path.abspath(workspace_root or os.getcwd())

    def should_auto_approve(self, tool_name: str) -> bool:
        return self.auto_approve_all or tool_name in self.auto_approve_tools

    def check_danger(self, call: ToolCall) -> DangerCheck:
        command = call.input.get("command")
        if call.name != "bash" or not isinstance(command, str):
            return DangerCheck(is_dangerous=False)
        return check_dangerous_bash(command, self.dangerous_patterns)

    def _relative_path(self, path: str) -> str | None:
        """Path relative to the workspace, or None when it lies outside."""
        resolved = os.path.abspath(os.path.join(self.workspace_root, path))
        if not is_within_restriction(resolved, self.workspace_root):
            return None
        return os.path.relpath(resolved, self.workspace_root).replace(os.sep, "/")

    def _allow_listed(self, call: ToolCall) -> str | None:
        if self.store is None:
            return None
        if call.name == "bash":
            command = call.input.get("command")
            if isinstance(command, str) and command:
                check = self.store.check_command_approval(command)
                return check.reason if check.approved else None
        elif call.name in FILE_MUTATING_TOOLS:
            path = get_tool_path(call.input)
            relative = self._relative_path(path) if path else None
            if relative is not None:
                check = self.store.check_path_approval(call.name, relative)
                return check.reason if check.approved else None
        return None

    def needs_confirmation(self, call: ToolCall) -> bool:
        """Whether ``call`` (already normalized) must be confirmed before running."""
        if self.check_danger(call).blocked:
            return True
        if self.should_auto_approve(call.name):
            return False
        if call.name not in DESTRUCTIVE_TOOLS:
            return False
        reason = self._allow_listed(call)
        if reason:
            logger.debug("Auto-approved %s: %s", call.name, reason)
            return False
        return True

    def build_confirmation(self, call: ToolCall) -> ConfirmationPayload:
        danger = self.check_danger(call)
        payload = ConfirmationPayload(
            tool_call=call,
            is_dangerous=danger.is_dangerous,
            danger_reason=danger.reason,
            blocked=danger.blocked,
        )
        if call.name == "bash":
            command = call.input.get("command")
            if isinstance(command, str) and command:
                payload.suggested_pattern = suggest_pattern(command)
                payload.matched_categories = [
                    SuggestedCategory(id=c.id, name=c.name, description=c.description)
                    for c in match_command_categories(command)
                ]
        elif call.name in FILE_MUTATING_TOOLS:
            path = get_tool_path(call.input)
            if path:
                payload.suggested_pattern = suggest_path_pattern(self._relative_path(path) or path)
                payload.matched_categories = [
                    SuggestedCategory(id=c.id, name=c.name, description=c.description)
                    for c in match_path_categories(path)
                ]
                self._attach_diff(payload, call, path)
        return payload

    def _attach_diff(self, payload: ConfirmationPayload, call: ToolCall, path: str) -> None:
        try:
            if call.name == "write_file":
                content = call.input.get("content")
                if not isinstance(content, str):
                    raise ValueError("Content is required for diff generation")
                payload.diff_preview = generate_write_diff(path, content, self.workspace_root)
            elif call.name == "edit_file":
                payload.diff_preview = generate_edit_diff(
                    path,
                    str(call.input.get("old_string", "")),
                    str(call.input.get("new_string", "")),
                    bool(call.input.get("replace_all", False)),
                    self.workspace_root,
                )
        except (OSError, ValueError) as err:
            payload.diff_error = str(err)

    def _persist(self, call: ToolCall, result: ConfirmationResult) -> None:
        """Store a pattern or category chosen during confirmation.

        The approval stands on its own: it is not rolled back if the call
        then fails.
        """
        if self.store is None:
            logger.warning("No approval store configured, %s not persisted", result.kind.value)
            return
        is_bash = call.name == "bash"
        try:
            if result.kind == ConfirmationKind.APPROVE_PATTERN and result.pattern:
                if is_bash:
                    self.store.add_approved_pattern(result.pattern)
                else:
                    self.store.add_approved_path_pattern(result.pattern, call.name)
            elif result.kind == ConfirmationKind.APPROVE_CATEGORY and result.category_id:
                if is_bash:
                    self.store.add_approved_category(result.category_id)
                else:
                    self.store.add_approved_path_category(result.category_id)
        except (OSError, ValueError) as err:
            logger.warning("Failed to persist approval for %s: %s", call.name, err)

    async def review(self, call: ToolCall, on_confirm: ConfirmCallback | None) -> GateOutcome:
        """Normalize a call and decide whether it runs.

        Without a confirmation callback, calls that need confirmation are denied.
        """
        call = normalize_tool_call(call)
        if not self.needs_confirmation(call):
            return GateOutcome(decision=GateDecision.EXECUTE, call=call)

        if on_confirm is None:
            return GateOutcome(
                decision=GateDecision.DENY,
                call=call,
                reason=f"{call.name} requires confirmation but no confirmation handler is set",
            )

        result = await on_confirm(self.build_confirmation(call))
        if result.kind == ConfirmationKind.ABORT:
            return GateOutcome(decision=GateDecision.ABORT, call=call, confirmed=True)
        if result.kind == ConfirmationKind.DENY:
            return GateOutcome(
                decision=GateDecision.DENY,
                call=call,
                reason="User denied this operation",
                confirmed=True,
            )
        if result.kind in (ConfirmationKind.APPROVE_PATTERN, ConfirmationKind.APPROVE_CATEGORY):
            self._persist(call, result)
        return GateOutcome(decision=GateDecision.EXECUTE, call=call, confirmed=True)

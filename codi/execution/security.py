"""Security checks for tool calls.

Classifies tools by risk, flags dangerous shell commands, and guards file
operations against path traversal.
"""

from __future__ import annotations

import os
import re

from pydantic import BaseModel

# Tools that only read data and are safe to auto-approve
SAFE_TOOLS = frozenset({"read_file", "glob", "grep", "list_directory"})

# Tools that modify the filesystem or run processes and need confirmation
DESTRUCTIVE_TOOLS = frozenset({"write_file", "edit_file", "insert_line", "patch_file", "bash"})

FILE_MUTATING_TOOLS = frozenset({"write_file", "edit_file", "insert_line", "patch_file"})


class DangerousPattern(BaseModel):
    """A shell-command regex with a human-readable reason.

    Blocking patterns are never auto-approved by allow-lists.
    """

    pattern: re.Pattern[str]
    description: str
    block: bool = False


class DangerCheck(BaseModel):
    is_dangerous: bool
    reason: str | None = None
    blocked: bool = False


def _p(pattern: str, description: str, block: bool = False) -> DangerousPattern:
    return DangerousPattern(pattern=re.compile(pattern), description=description, block=block)


DANGEROUS_BASH_PATTERNS: list[DangerousPattern] = [
    # Blocking
    _p(r"rm\s+-rf\s+/(?!\w)", "removes root filesystem", block=True),
    _p(r"mkfs\.", "formats filesystem", block=True),
    _p(r"dd\s+.*of=/dev", "direct disk write", block=True),
    _p(r">\s*/dev/sd[a-z]", "overwrites disk device", block=True),
    # Warning
    _p(r"\brm\s+(-[rf]+\s+)*[/~]", "removes files/directories"),
    _p(r"\brm\s+-[rf]*\s", "force/recursive delete"),
    _p(r"\bsudo\b", "runs as superuser"),
    _p(r"\bchmod\s+777\b", "sets insecure permissions"),
    _p(r"\b(mkfs|dd\s+if=)", "disk/filesystem operation"),
    _p(r">\s*/dev/", "writes to device"),
    _p(r"\bcurl\b.*\|\s*(ba)?sh", "pipes remote script to shell"),
    _p(r"\bwget\b.*\|\s*(ba)?sh", "pipes remote script to shell"),
    _p(r"\bgit\s+push\s+.*--force", "force pushes to remote"),
    _p(r"\bgit\s+reset\s+--hard", "hard reset (loses changes)"),
]


def check_dangerous_bash(
    command: str, extra_patterns: list[DangerousPattern] | None = None
) -> DangerCheck:
    """Check a shell command against built-in and user-supplied dangerous patterns.

    The first matching pattern supplies the reason; a command is blocked if
    any matching pattern is blocking.
    """
    patterns = DANGEROUS_BASH_PATTERNS + (extra_patterns or [])
    matched = [p for p in patterns if p.pattern.search(command)]
    if not matched:
        return DangerCheck(is_dangerous=False)
    blocking = next((p for p in matched if p.block), None)
    reason = (blocking or matched[0]).description
    return DangerCheck(is_dangerous=True, reason=reason, blocked=blocking is not None)


def compile_user_patterns(patterns: list[str]) -> list[DangerousPattern]:
    """Compile user-configured regexes.

    Raises:
        ValueError: If a pattern is not a valid regular expression.
    """
    compiled = []
    for raw in patterns:
        try:
            compiled.append(_p(raw, f"matches custom pattern {raw!r}"))
        except re.error as err:
            raise ValueError(f"Invalid dangerous pattern {raw!r}: {err}") from err
    return compiled


def is_within_restriction(resolved_path: str, restriction: str) -> bool:
    """Check whether a resolved path stays within a restriction directory."""
    base = os.path.abspath(restriction)
    return resolved_path == base or resolved_path.startswith(base + os.sep)


def assert_safe_path(file_path: str, restriction: str) -> str:
    """Resolve ``file_path`` against ``restriction`` and return the absolute path.

    Raises:
        ValueError: If the resolved path escapes the restriction directory.
    """
    base = os.path.abspath(restriction)
    resolved = os.path.abspath(os.path.join(base, file_path))

    if not is_within_restriction(resolved, base):
        raise ValueError(
            f'Path traversal detected: "{file_path}" resolves outside of "{restriction}"'
        )
    return resolved

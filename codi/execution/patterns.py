"""Glob-style patterns for approved commands and file paths.

Command patterns: ``*`` matches any text, ``?`` a single character.
Path patterns: ``**`` matches across directories, ``*`` stays within one
path segment and ``?`` matches one non-separator character.
Both are anchored and case-insensitive. Neither wildcard crosses a newline.
"""

from __future__ import annotations

import re
from functools import lru_cache

from pydantic import BaseModel

# Tools whose first argument is a subcommand worth keeping in a suggested pattern
TOOLS_WITH_SUBCOMMAND = frozenset(
    {
        "npm",
        "yarn",
        "pnpm",
        "bun",
        "npx",
        "git",
        "go",
        "cargo",
        "pip",
        "pip3",
        "bundle",
        "mix",
        "make",
        "docker",
        "kubectl",
        "helm",
        "terraform",
        "aws",
        "gcloud",
        "az",
    }
)

COMPOUND_EXTENSIONS = (
    ".test.ts",
    ".test.tsx",
    ".test.js",
    ".test.jsx",
    ".spec.ts",
    ".spec.tsx",
    ".spec.js",
    ".spec.jsx",
    ".config.ts",
    ".config.js",
    ".config.json",
    ".d.ts",
)

_SPECIAL_CHARS = re.compile(r"[.+^${}()|[\]\\]")


def _escape(pattern: str) -> str:
    return _SPECIAL_CHARS.sub(lambda m: "\\" + m.group(), pattern)


@lru_cache(maxsize=256)
def pattern_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a command pattern."""
    escaped = _escape(pattern).replace("*", ".*").replace("?", ".")
    return re.compile(f"^{escaped}$", re.IGNORECASE)


def matches_pattern(command: str, pattern: str) -> bool:
    return bool(pattern_to_regex(pattern).match(command.strip()))


class ParsedCommand(BaseModel):
    tool: str
    subcommand: str | None = None
    args: list[str] = []
    full_command: str


def parse_command(command: str) -> ParsedCommand:
    parts = command.split()
    tool = parts[0] if parts else ""
    if len(parts) >= 2 and tool in TOOLS_WITH_SUBCOMMAND:
        return ParsedCommand(
            tool=tool, subcommand=parts[1], args=parts[2:], full_command=command.strip()
        )
    return ParsedCommand(tool=tool, args=parts[1:], full_command=command.strip())


def suggest_pattern(command: str) -> str:
    """Suggest a reusable pattern for a command.

    Examples:
        ``npm test --watch`` -> ``npm test *``
        ``git status`` -> ``git status*``
        ``ls -la`` -> ``ls *``
    """
    parts = command.split()
    if not parts:
        return command
    if len(parts) >= 2 and parts[0] in TOOLS_WITH_SUBCOMMAND:
        if len(parts) > 2:
            return f"{parts[0]} {parts[1]} *"
        return f"{parts[0]} {parts[1]}*"
    if len(parts) > 1:
        return f"{parts[0]} *"
    return f"{parts[0]}*"


def normalize_path(path: str) -> str:
    return path.replace("\\", "/")


@lru_cache(maxsize=256)
def path_pattern_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a path pattern."""
    escaped = _escape(normalize_path(pattern))
    escaped = escaped.replace("**", "\0").replace("*", "[^/]*").replace("\0", ".*")
    escaped = escaped.replace("?", "[^/]")
    return re.compile(f"^{escaped}$", re.IGNORECASE)


def matches_path_pattern(path: str, pattern: str) -> bool:
    return bool(path_pattern_to_regex(pattern).match(normalize_path(path)))


def get_file_extension(filename: str) -> str:
    """Return the extension including compound ones (``.test.ts``); dotfiles have none."""
    for ext in COMPOUND_EXTENSIONS:
        if filename.endswith(ext):
            return ext
    dot = filename.rfind(".")
    return filename[dot:] if dot > 0 else ""


def suggest_path_pattern(path: str) -> str:
    """Suggest a pattern covering files like ``path`` in the same directory.

    Examples:
        ``src/components/Button.tsx`` -> ``src/components/*.tsx``
        ``tests/unit/auth.test.ts`` -> ``tests/unit/*.test.ts``
        ``config.json`` -> ``*.json``
    """
    normalized = normalize_path(path)
    directory, _, filename = normalized.rpartition("/")
    extension = get_file_extension(filename)
    if directory:
        return f"{directory}/*{extension}"
    return f"*{extension}"

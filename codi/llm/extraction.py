"""Extract tool calls from response text.

Backends without native tool calling (common with local models) write tool
calls into their text. Shapes recognized, tried in order until one yields
calls:

1. JSON objects with ``name`` and ``arguments`` / ``parameters`` / ``input``
2. ``[Calling tool_name]: {...}`` lines
3. Fenced ```json blocks holding such an object, or a list of them
4. Fenced ```bash / ```sh / ```shell blocks, as ``bash`` calls

Only tools that exist are accepted. Zero extracted calls is a normal
outcome: the text is then a plain answer.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from collections.abc import Collection
from typing import Any

from ..types.types import ToolCall, ToolCallSource

logger = logging.getLogger(__name__)

ARGUMENT_KEYS = ("arguments", "parameters", "input")

_SINGLE_QUOTED_VALUE = re.compile(r":(\s*)'((?:[^'\\]|\\.)*)'", re.DOTALL)
_SINGLE_QUOTED_KEY = re.compile(r"([{,]\s*)'([^'\\]+)'(\s*:)")
_CALLING = re.compile(r"\[Calling\s+([a-z_][a-z0-9_]*)\]\s*:\s*", re.IGNORECASE)
_JSON_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)
_SHELL_FENCE = re.compile(r"```(?:bash|sh|shell)\s*\n(.*?)```", re.DOTALL)


def try_fix_json(text: str) -> str:
    """Repair single-quoted keys and values."""
    fixed = _SINGLE_QUOTED_KEY.sub(r'\1"\2"\3', text)
    return _SINGLE_QUOTED_VALUE.sub(r':\1"\2"', fixed)


def try_parse_json(text: str) -> Any | None:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(try_fix_json(text))
    except json.JSONDecodeError:
        return None


def find_json_object(text: str, start: int = 0) -> tuple[str, int] | None:
    """Return the first balanced ``{...}`` at or after ``start`` and the index past it."""
    begin = text.find("{", start)
    if begin == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(begin, len(text)):
        char = text[i]
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            in_string = not in_string
        elif in_string:
            continue
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[begin : i + 1], i + 1
    return None


def _make_call(name: str, arguments: dict[str, Any], n: int, batch: str) -> ToolCall:
    return ToolCall(
        id=f"extracted_{batch}_{n}",
        name=name,
        input=arguments,
        source=ToolCallSource.EXTRACTED,
    )


def _arguments_of(obj: dict[str, Any]) -> dict[str, Any] | None:
    for key in ARGUMENT_KEYS:
        value = obj.get(key)
        if isinstance(value, dict):
            return value
    return None


def _from_json_objects(text: str, tools: Collection[str]) -> list[tuple[str, dict[str, Any]]]:
    found = []
    pos = 0
    while (extracted := find_json_object(text, pos)) is not None:
        raw, end = extracted
        obj = try_parse_json(raw)
        if isinstance(obj, dict) and obj.get("name") in tools:
            arguments = _arguments_of(obj)
            if arguments is not None:
                found.append((obj["name"], arguments))
                pos = end
                continue
        # Not a tool call; nested objects may still be
        pos = text.find("{", pos) + 1
    return found


def _from_calling_lines(text: str, tools: Collection[str]) -> list[tuple[str, dict[str, Any]]]:
    found = []
    pos = 0
    while (match := _CALLING.search(text, pos)) is not None:
        pos = match.end()
        name = match.group(1)
        if name not in tools:
            continue
        extracted = find_json_object(text, match.end())
        if extracted is None:
            continue
        raw, pos = extracted
        arguments = try_parse_json(raw)
        if isinstance(arguments, dict):
            found.append((name, arguments))
    return found


def _from_json_fences(text: str, tools: Collection[str]) -> list[tuple[str, dict[str, Any]]]:
    found = []
    for match in _JSON_FENCE.finditer(text):
        content = match.group(1).strip()
        if not content.startswith(("{", "[")):
            continue
        parsed = try_parse_json(content)
        items = parsed if isinstance(parsed, list) else [parsed]
        for item in items:
            if isinstance(item, dict) and item.get("name") in tools:
                found.append((item["name"], _arguments_of(item) or {}))
    return found


def _from_shell_fences(text: str, tools: Collection[str]) -> list[tuple[str, dict[str, Any]]]:
    if "bash" not in tools:
        return []
    found = []
    for match in _SHELL_FENCE.finditer(text):
        command = match.group(1).strip()
        if command:
            found.append(("bash", {"command": command}))
    return found


def extract_tool_calls(text: str, available_tools: Collection[str]) -> list[ToolCall]:
    """Extract tool calls written into ``text``, tagging them as extracted."""
    if not text or not available_tools:
        return []
    tools = set(available_tools)
    strategies = (_from_json_objects, _from_calling_lines, _from_json_fences, _from_shell_fences)
    for strategy in strategies:
        found = strategy(text, tools)
        if found:
            batch = uuid.uuid4().hex[:8]
            logger.debug("Extracted %d tool calls from text via %s", len(found), strategy.__name__)
            return [_make_call(name, args, n, batch) for n, (name, args) in enumerate(found)]
    return []

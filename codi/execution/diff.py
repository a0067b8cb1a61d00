"""Diff previews for pending write and edit operations."""

from __future__ import annotations

import difflib
import logging
import os

from pydantic import BaseModel

logger = logging.getLogger(__name__)

CONTEXT_LINES = 3


class DiffResult(BaseModel):
    unified_diff: str
    lines_added: int
    lines_removed: int
    is_new_file: bool
    summary: str


def _resolve(file_path: str, base_dir: str | None) -> str:
    return os.path.abspath(os.path.join(base_dir or os.getcwd(), file_path))


def generate_write_diff(
    file_path: str, new_content: str, base_dir: str | None = None
) -> DiffResult:
    """Diff the current file (or nothing, for a new file) against ``new_content``."""
    resolved = _resolve(file_path, base_dir)
    is_new_file = not os.path.exists(resolved)
    old_content = ""
    if not is_new_file:
        try:
            with open(resolved, encoding="utf-8") as f:
                old_content = f.read()
        except (OSError, UnicodeDecodeError) as err:
            logger.debug("Cannot read %s for diff, treating as new: %s", resolved, err)
    return generate_diff(file_path, old_content, new_content, is_new_file)


def generate_edit_diff(
    file_path: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
    base_dir: str | None = None,
) -> DiffResult:
    """Diff the result of replacing ``old_string`` with ``new_string`` in a file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If ``old_string`` does not occur in the file.
    """
    resolved = _resolve(file_path, base_dir)
    if not os.path.exists(resolved):
        raise FileNotFoundError(f"File not found: {resolved}")
    with open(resolved, encoding="utf-8") as f:
        old_content = f.read()
    if old_string not in old_content:
        raise ValueError("String not found in file")
    count = -1 if replace_all else 1
    new_content = old_content.replace(old_string, new_string, count)
    return generate_diff(file_path, old_content, new_content, False)


def generate_diff(
    file_path: str, old_content: str, new_content: str, is_new_file: bool = False
) -> DiffResult:
    lines = list(
        difflib.unified_diff(
            old_content.splitlines(keepends=True),
            new_content.splitlines(keepends=True),
            fromfile="/dev/null" if is_new_file else f"a/{file_path}",
            tofile=f"b/{file_path}",
            n=CONTEXT_LINES,
        )
    )
    added = sum(1 for line in lines if line.startswith("+") and not line.startswith("+++"))
    removed = sum(1 for line in lines if line.startswith("-") and not line.startswith("---"))

    if is_new_file:
        summary = f"New file: {added} lines"
    elif not added and not removed:
        summary = "No changes"
    else:
        parts = []
        if removed:
            parts.append(f"-{removed}")
        if added:
            parts.append(f"+{added}")
        summary = f"{', '.join(parts)} lines"

    unified = "".join(line if line.endswith("\n") else line + "\n" for line in lines)
    return DiffResult(
        unified_diff=unified,
        lines_added=added,
        lines_removed=removed,
        is_new_file=is_new_file,
        summary=summary,
    )


def truncate_diff(diff: str, max_lines: int = 30) -> str:
    """Keep the headers plus the first and last hunk lines of a long diff."""
    lines = diff.splitlines()
    if len(lines) <= max_lines:
        return diff
    headers = [line for line in lines if line.startswith(("---", "+++"))]
    body = [line for line in lines if not line.startswith(("---", "+++"))]
    available = max_lines - len(headers) - 1
    half = available // 2
    if len(body) <= available or half <= 0:
        return diff
    hidden = len(body) - 2 * half
    return "\n".join([*headers, *body[:half], f"... {hidden} more lines ...", *body[-half:]])

"""Persisted allow-lists for shell commands and file operations.

Approvals live in a global JSON file (``~/.codi/approvals.json`` by default)
and are merged with a read-only workspace config. Writes are append-only:
an entry is added only when it is not already present, and the file is
re-read before every write so entries added elsewhere are never lost.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .categories import (
    Category,
    get_command_category,
    get_path_category,
    matches_command_category,
    matches_path_category,
)
from .patterns import matches_path_pattern, matches_pattern, normalize_path

logger = logging.getLogger(__name__)

DEFAULT_APPROVALS_PATH = Path.home() / ".codi" / "approvals.json"
WORKSPACE_CONFIG_FILES = (".codi.json", ".codi/config.json", "codi.config.json")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# -- Models -------------------------------------------------------------------


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    approved_at: str = Field(default_factory=_now, alias="approvedAt")
    description: str | None = None


class ApprovedPattern(_Record):
    """An approved command pattern such as ``npm test *``."""

    pattern: str


class ApprovedCategory(_Record):
    category_id: str = Field(alias="categoryId")


class ApprovedPathPattern(_Record):
    """An approved path pattern, scoped to one file tool or ``*`` for all of them."""

    pattern: str
    tool_name: str = Field(default="*", alias="toolName")


class ApprovalsFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    version: int = 1
    command_patterns: list[ApprovedPattern] = Field(default_factory=list, alias="commandPatterns")
    command_categories: list[ApprovedCategory] = Field(
        default_factory=list, alias="commandCategories"
    )
    path_patterns: list[ApprovedPathPattern] = Field(default_factory=list, alias="pathPatterns")
    path_categories: list[ApprovedCategory] = Field(default_factory=list, alias="pathCategories")


class ApprovalCheck(BaseModel):
    approved: bool
    reason: str | None = None
    matched_pattern: str | None = None
    matched_category: str | None = None


class ApprovalList(BaseModel):
    command_patterns: list[ApprovedPattern]
    command_categories: list[Category]
    path_patterns: list[ApprovedPathPattern]
    path_categories: list[Category]
    workspace_commands: list[str]
    workspace_paths: list[str]


# -- Store --------------------------------------------------------------------


class ApprovalStore:
    """Loads, checks and appends approval entries.

    Args:
        path: Global approvals file. Created on first write.
        workspace_dir: Directory searched for a workspace config whose
            ``approvedCommands`` / ``approvedPaths`` lists are merged in
            read-only.
    """

    def __init__(self, path: str | Path | None = None, workspace_dir: str | Path | None = None):
        self.path = Path(path) if path is not None else DEFAULT_APPROVALS_PATH
        self.workspace_dir = Path(workspace_dir) if workspace_dir is not None else None
        self._workspace_commands: list[str] = []
        self._workspace_paths: list[str] = []
        self._load_workspace()

    # -- Loading --

    def _load_workspace(self) -> None:
        if self.workspace_dir is None:
            return
        for candidate in WORKSPACE_CONFIG_FILES:
            config_path = self.workspace_dir / candidate
            if not config_path.is_file():
                continue
            try:
                data = json.loads(config_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as err:
                logger.warning("Ignoring unreadable workspace config %s: %s", config_path, err)
                return
            self._workspace_commands = _string_list(data.get("approvedCommands"))
            self._workspace_paths = _string_list(data.get("approvedPaths"))
            logger.debug(
                "Loaded %d command and %d path approvals from %s",
                len(self._workspace_commands),
                len(self._workspace_paths),
                config_path,
            )
            return

    def _read(self, strict: bool = False) -> ApprovalsFile:
        """Read the global file.

        An unreadable file is treated as empty for checks. Writes pass
        ``strict=True`` so a corrupt file is never overwritten.
        """
        if not self.path.exists():
            return ApprovalsFile()
        try:
            return ApprovalsFile.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as err:
            if strict:
                raise ValueError(f"Approvals file {self.path} is unreadable: {err}") from err
            logger.warning("Ignoring unreadable approvals file %s: %s", self.path, err)
            return ApprovalsFile()

    def _write(self, data: ApprovalsFile) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = data.model_dump_json(by_alias=True, exclude_none=True, indent=2) + "\n"
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".approvals-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise

    # -- Checks --

    def check_command_approval(self, command: str) -> ApprovalCheck:
        """Check a shell command against approved patterns, then categories."""
        data = self._read()
        patterns = [p.pattern for p in data.command_patterns] + self._workspace_commands
        for pattern in patterns:
            if matches_pattern(command, pattern):
                return ApprovalCheck(
                    approved=True, reason=f"matches pattern: {pattern}", matched_pattern=pattern
                )
        for entry in data.command_categories:
            if matches_command_category(command, entry.category_id):
                category = get_command_category(entry.category_id)
                return ApprovalCheck(
                    approved=True,
                    reason=f"matches category: {category.name if category else entry.category_id}",
                    matched_category=entry.category_id,
                )
        return ApprovalCheck(approved=False)

    def check_path_approval(self, tool_name: str, file_path: str) -> ApprovalCheck:
        """Check a file operation against approved path patterns, then categories."""
        data = self._read()
        normalized = normalize_path(file_path)
        entries = [(p.pattern, p.tool_name) for p in data.path_patterns]
        entries += [(pattern, "*") for pattern in self._workspace_paths]
        for pattern, pattern_tool in entries:
            if pattern_tool not in ("*", tool_name):
                continue
            if matches_path_pattern(normalized, pattern):
                return ApprovalCheck(
                    approved=True,
                    reason=f"matches path pattern: {pattern}",
                    matched_pattern=pattern,
                )
        for entry in data.path_categories:
            if matches_path_category(normalized, entry.category_id):
                category = get_path_category(entry.category_id)
                return ApprovalCheck(
                    approved=True,
                    reason=f"matches path category: "
                    f"{category.name if category else entry.category_id}",
                    matched_category=entry.category_id,
                )
        return ApprovalCheck(approved=False)

    # -- Appends --

    def add_approved_pattern(self, pattern: str, description: str | None = None) -> bool:
        """Persist a command pattern. Returns False if it was already approved."""
        data = self._read(strict=True)
        if any(p.pattern == pattern for p in data.command_patterns):
            return False
        data.command_patterns.append(ApprovedPattern(pattern=pattern, description=description))
        self._write(data)
        logger.info("Approved command pattern %r", pattern)
        return True

    def add_approved_category(self, category_id: str) -> bool:
        if get_command_category(category_id) is None:
            raise ValueError(f"Unknown category: {category_id}")
        data = self._read(strict=True)
        if any(c.category_id == category_id for c in data.command_categories):
            return False
        data.command_categories.append(ApprovedCategory(category_id=category_id))
        self._write(data)
        logger.info("Approved command category %s", category_id)
        return True

    def add_approved_path_pattern(
        self, pattern: str, tool_name: str = "*", description: str | None = None
    ) -> bool:
        data = self._read(strict=True)
        if any(p.pattern == pattern and p.tool_name == tool_name for p in data.path_patterns):
            return False
        data.path_patterns.append(
            ApprovedPathPattern(pattern=pattern, tool_name=tool_name, description=description)
        )
        self._write(data)
        logger.info("Approved path pattern %r for %s", pattern, tool_name)
        return True

    def add_approved_path_category(self, category_id: str) -> bool:
        if get_path_category(category_id) is None:
            raise ValueError(f"Unknown path category: {category_id}")
        data = self._read(strict=True)
        if any(c.category_id == category_id for c in data.path_categories):
            return False
        data.path_categories.append(ApprovedCategory(category_id=category_id))
        self._write(data)
        logger.info("Approved path category %s", category_id)
        return True

    # -- Removal --

    def remove_approved_pattern(self, pattern: str) -> bool:
        data = self._read(strict=True)
        kept = [p for p in data.command_patterns if p.pattern != pattern]
        return self._replace(data, "command_patterns", kept)

    def remove_approved_category(self, category_id: str) -> bool:
        data = self._read(strict=True)
        kept = [c for c in data.command_categories if c.category_id != category_id]
        return self._replace(data, "command_categories", kept)

    def remove_approved_path_pattern(self, pattern: str, tool_name: str | None = None) -> bool:
        """Remove a path pattern for one tool, or for every tool when ``tool_name`` is None."""
        data = self._read(strict=True)
        kept = [
            p
            for p in data.path_patterns
            if not (p.pattern == pattern and (tool_name is None or p.tool_name == tool_name))
        ]
        return self._replace(data, "path_patterns", kept)

    def remove_approved_path_category(self, category_id: str) -> bool:
        data = self._read(strict=True)
        kept = [c for c in data.path_categories if c.category_id != category_id]
        return self._replace(data, "path_categories", kept)

    def _replace(self, data: ApprovalsFile, field: str, kept: list[Any]) -> bool:
        if len(kept) == len(getattr(data, field)):
            return False
        setattr(data, field, kept)
        self._write(data)
        return True

    def list_approvals(self) -> ApprovalList:
        data = self._read()
        return ApprovalList(
            command_patterns=data.command_patterns,
            command_categories=[
                c
                for c in (get_command_category(e.category_id) for e in data.command_categories)
                if c is not None
            ],
            path_patterns=data.path_patterns,
            path_categories=[
                c
                for c in (get_path_category(e.category_id) for e in data.path_categories)
                if c is not None
            ],
            workspace_commands=list(self._workspace_commands),
            workspace_paths=list(self._workspace_paths),
        )


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]

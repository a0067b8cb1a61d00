"""Agent debugger: breakpoints, checkpoints and time travel.

Checkpoints are written as one ``<id>.json`` file per checkpoint under the
checkpoint directory, and branch topology is kept in ``timeline.json`` beside
them. Agent state inside a checkpoint goes through ``serialize_snapshot`` /
``deserialize_snapshot`` so the on-disk format is versioned explicitly.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from ..memory.tokens import estimate_messages_tokens
from ..memory.windowing import WorkingSet
from ..types.types import Message

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
TIMELINE_FILE = "timeline.json"
MAIN_BRANCH = "main"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# -- Snapshots ----------------------------------------------------------------


class AgentSnapshot(BaseModel):
    """The parts of agent state a checkpoint restores."""

    messages: list[Message] = Field(default_factory=list)
    summary: str | None = None
    working_set: WorkingSet = Field(default_factory=WorkingSet)
    iteration: int = 0


def serialize_snapshot(snapshot: AgentSnapshot) -> dict[str, Any]:
    """Serialize a snapshot to a plain, versioned record."""
    return {
        "version": SNAPSHOT_VERSION,
        "iteration": snapshot.iteration,
        "summary": snapshot.summary,
        "messages": [m.model_dump(mode="json") for m in snapshot.messages],
        "working_set": {
            "recent_files": list(snapshot.working_set.recent_files),
            "active_entities": list(snapshot.working_set.active_entities),
        },
    }


def deserialize_snapshot(data: dict[str, Any]) -> AgentSnapshot:
    """Rebuild a snapshot from ``serialize_snapshot`` output.

    Raises:
        ValueError: If the record has an unknown version or invalid content.
    """
    version = data.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version: {version!r}")
    try:
        working_set = data.get("working_set") or {}
        return AgentSnapshot(
            messages=[Message.model_validate(m) for m in data.get("messages", [])],
            summary=data.get("summary"),
            working_set=WorkingSet(
                recent_files=list(working_set.get("recent_files", [])),
                active_entities=list(working_set.get("active_entities", [])),
            ),
            iteration=int(data.get("iteration", 0)),
        )
    except ValidationError as e:
        raise ValueError(f"Invalid snapshot: {e}") from e


# -- Models -------------------------------------------------------------------


class Checkpoint(BaseModel):
    id: str
    label: str | None = None
    iteration: int
    timestamp: str
    message_count: int
    token_count: int
    branch: str = MAIN_BRANCH


class Branch(BaseModel):
    name: str
    parent_branch: str | None = None
    fork_point: str | None = None
    created: str = Field(default_factory=_now_iso)
    checkpoints: list[str] = Field(default_factory=list)
    current: bool = False


class Timeline(BaseModel):
    branches: list[Branch] = Field(default_factory=lambda: [Branch(name=MAIN_BRANCH, current=True)])
    active_branch: str = MAIN_BRANCH


class BreakpointType(str, Enum):
    TOOL = "tool"
    ITERATION = "iteration"
    PATTERN = "pattern"
    ERROR = "error"


class Breakpoint(BaseModel):
    id: str
    type: BreakpointType
    # Tool name, iteration number or regex, by type
    condition: str | int | None = None
    enabled: bool = True
    hit_count: int = 0


class BreakpointContext(BaseModel):
    """What the agent is doing when breakpoints are checked."""

    type: Literal["tool_call", "iteration", "error"]
    iteration: int
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    error: str | None = None


# -- Debugger -----------------------------------------------------------------


class AgentDebugger:
    """Breakpoints, checkpoints and branchable time travel for an agent.

    Args:
        checkpoint_dir: Directory holding checkpoint files and the timeline.
        checkpoint_interval: Iterations between automatic checkpoints.
    """

    def __init__(self, checkpoint_dir: str, checkpoint_interval: int = 5):
        self.checkpoint_dir = checkpoint_dir
        self.checkpoint_interval = checkpoint_interval
        self.current_iteration = 0
        self.paused = False
        self.step_mode = False
        self._last_checkpoint_iteration = 0
        self._breakpoints: dict[str, Breakpoint] = {}
        self.timeline = Timeline()
        self.current_branch = MAIN_BRANCH
        self.load_timeline()

    # -- Iterations and pause control --

    def increment_iteration(self) -> int:
        self.current_iteration += 1
        return self.current_iteration

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False
        self.step_mode = False

    def step(self) -> None:
        """Run one more iteration, then pause again."""
        self.paused = False
        self.step_mode = True

    def should_pause(self) -> bool:
        return self.paused or self.step_mode

    # -- Breakpoints --

    def add_breakpoint(
        self, type: BreakpointType | str, condition: str | int | None = None
    ) -> Breakpoint:
        bp_type = BreakpointType(type)
        if bp_type == BreakpointType.PATTERN:
            if not isinstance(condition, str):
                raise ValueError("pattern breakpoints need a regex condition")
            re.compile(condition)
        bp = Breakpoint(id=f"bp_{uuid.uuid4().hex[:8]}", type=bp_type, condition=condition)
        self._breakpoints[bp.id] = bp
        return bp

    def remove_breakpoint(self, breakpoint_id: str) -> bool:
        return self._breakpoints.pop(breakpoint_id, None) is not None

    def clear_breakpoints(self) -> None:
        self._breakpoints.clear()

    def list_breakpoints(self) -> list[Breakpoint]:
        return list(self._breakpoints.values())

    def check_breakpoints(self, context: BreakpointContext) -> Breakpoint | None:
        """Return the first enabled breakpoint matching ``context``, counting the hit."""
        for bp in self._breakpoints.values():
            if not bp.enabled:
                continue
            if bp.type == BreakpointType.TOOL:
                hit = context.type == "tool_call" and context.tool_name == bp.condition
            elif bp.type == BreakpointType.ITERATION:
                hit = context.iteration == bp.condition
            elif bp.type == BreakpointType.PATTERN:
                hit = context.tool_input is not None and bool(
                    re.search(str(bp.condition), json.dumps(context.tool_input), re.IGNORECASE)
                )
            else:
                hit = context.type == "error"
            if hit:
                bp.hit_count += 1
                return bp
        return None

    # -- Checkpoints --

    def _checkpoint_path(self, checkpoint_id: str) -> str:
        return os.path.join(self.checkpoint_dir, f"{checkpoint_id}.json")

    def create_checkpoint(self, snapshot: AgentSnapshot, label: str | None = None) -> Checkpoint:
        """Write a checkpoint of ``snapshot`` at the current iteration."""
        checkpoint = Checkpoint(
            id=f"cp_{self.current_iteration}_{int(time.time() * 1000)}",
            label=label,
            iteration=self.current_iteration,
            timestamp=_now_iso(),
            message_count=len(snapshot.messages),
            token_count=estimate_messages_tokens(snapshot.messages),
            branch=self.current_branch,
        )
        self._last_checkpoint_iteration = self.current_iteration

        os.makedirs(self.checkpoint_dir, exist_ok=True)
        record = checkpoint.model_dump(mode="json")
        record["state"] = serialize_snapshot(snapshot)
        with open(self._checkpoint_path(checkpoint.id), "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)

        branch = self._branch(self.current_branch)
        if branch is not None and checkpoint.id not in branch.checkpoints:
            branch.checkpoints.append(checkpoint.id)
            self.save_timeline()
        logger.debug("Created checkpoint %s at iteration %d", checkpoint.id, checkpoint.iteration)
        return checkpoint

    def maybe_create_checkpoint(self, snapshot: AgentSnapshot) -> Checkpoint | None:
        """Create a checkpoint once ``checkpoint_interval`` iterations have passed."""
        if self.current_iteration - self._last_checkpoint_iteration >= self.checkpoint_interval:
            return self.create_checkpoint(snapshot)
        return None

    def _read_checkpoint_file(self, path: str) -> tuple[Checkpoint, AgentSnapshot] | None:
        try:
            with open(path, encoding="utf-8") as f:
                record = json.load(f)
            state = record.pop("state")
            return Checkpoint.model_validate(record), deserialize_snapshot(state)
        except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning("Skipping invalid checkpoint file %s: %s", path, e)
            return None

    def load_checkpoint(self, checkpoint_id: str) -> tuple[Checkpoint, AgentSnapshot] | None:
        path = self._checkpoint_path(checkpoint_id)
        if not os.path.exists(path):
            return None
        return self._read_checkpoint_file(path)

    def list_checkpoints(self) -> list[Checkpoint]:
        """All readable checkpoints, ordered by iteration."""
        if not os.path.isdir(self.checkpoint_dir):
            return []
        checkpoints = []
        for name in sorted(os.listdir(self.checkpoint_dir)):
            if not name.endswith(".json") or name == TIMELINE_FILE:
                continue
            loaded = self._read_checkpoint_file(os.path.join(self.checkpoint_dir, name))
            if loaded is not None:
                checkpoints.append(loaded[0])
        return sorted(checkpoints, key=lambda cp: cp.iteration)

    # -- Time travel --

    def rewind(self, checkpoint_id: str) -> AgentSnapshot | None:
        """Return the state stored in a checkpoint for the agent to apply."""
        loaded = self.load_checkpoint(checkpoint_id)
        if loaded is None:
            return None
        checkpoint, snapshot = loaded
        self.current_iteration = checkpoint.iteration
        self._last_checkpoint_iteration = checkpoint.iteration
        return snapshot

    def _branch(self, name: str) -> Branch | None:
        return next((b for b in self.timeline.branches if b.name == name), None)

    def create_branch(self, checkpoint_id: str, branch_name: str) -> bool:
        """Fork a new branch at a checkpoint. False if either is invalid."""
        loaded = self.load_checkpoint(checkpoint_id)
        if loaded is None or self._branch(branch_name) is not None:
            return False
        self.timeline.branches.append(
            Branch(name=branch_name, parent_branch=loaded[0].branch, fork_point=checkpoint_id)
        )
        self.save_timeline()
        return True

    def switch_branch(self, branch_name: str) -> tuple[bool, AgentSnapshot | None]:
        """Make ``branch_name`` current.

        Returns (switched, state to restore). The state comes from the latest
        checkpoint on the branch, else its fork point, and is None for a
        branch with neither.
        """
        branch = self._branch(branch_name)
        if branch is None:
            return False, None

        checkpoint_id = branch.checkpoints[-1] if branch.checkpoints else branch.fork_point
        snapshot = None
        if checkpoint_id:
            snapshot = self.rewind(checkpoint_id)
            if snapshot is None:
                return False, None

        for b in self.timeline.branches:
            b.current = b.name == branch_name
        self.current_branch = branch_name
        self.timeline.active_branch = branch_name
        self.save_timeline()
        return True, snapshot

    def list_branches(self) -> list[Branch]:
        return list(self.timeline.branches)

    def get_timeline(self) -> Timeline:
        return self.timeline

    def save_timeline(self) -> None:
        os.makedirs(self.checkpoint_dir, exist_ok=True)
        with open(os.path.join(self.checkpoint_dir, TIMELINE_FILE), "w", encoding="utf-8") as f:
            f.write(self.timeline.model_dump_json(indent=2))

    def load_timeline(self) -> None:
        path = os.path.join(self.checkpoint_dir, TIMELINE_FILE)
        if not os.path.exists(path):
            return
        try:
            with open(path, encoding="utf-8") as f:
                self.timeline = Timeline.model_validate_json(f.read())
            self.current_branch = self.timeline.active_branch
        except (OSError, ValueError) as e:
            logger.warning("Failed to load timeline %s: %s", path, e)

"""Session audit log.

Events are appended as JSON lines to one file per session. A disabled
logger accepts every call and writes nothing.
"""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_DIR = os.path.join(os.path.expanduser("~"), ".codi", "audit")


class AuditEventType(str, Enum):
    SESSION_START = "session_start"
    USER_INPUT = "user_input"
    API_REQUEST = "api_request"
    API_RESPONSE = "api_response"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    COMPACTION = "compaction"
    MAX_ITERATIONS = "max_iterations"
    ERROR = "error"
    USER_ABORT = "user_abort"
    SESSION_END = "session_end"


class AuditEvent(BaseModel):
    """One line of the audit log."""

    type: AuditEventType
    session_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict[str, Any] = Field(default_factory=dict)


class AuditLogger:
    """Append-only JSONL audit log for one agent session.

    Args:
        enabled: When False every method is a no-op.
        audit_dir: Directory for session files. Defaults to ``~/.codi/audit``.
        session_id: Session identifier, generated when omitted.
    """

    def __init__(
        self,
        enabled: bool = False,
        audit_dir: str | None = None,
        session_id: str | None = None,
    ):
        self.enabled = enabled
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.audit_dir = audit_dir or DEFAULT_AUDIT_DIR
        self.path = os.path.join(self.audit_dir, f"{self.session_id}.jsonl")
        self._failed = False

    def log(self, event_type: AuditEventType | str, **data: Any) -> AuditEvent | None:
        """Append an event. Returns it, or None when the logger is disabled."""
        if not self.enabled:
            return None
        event = AuditEvent(type=AuditEventType(event_type), session_id=self.session_id, data=data)
        try:
            os.makedirs(self.audit_dir, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(event.model_dump_json() + "\n")
        except OSError as e:
            # Warn once per session; the agent keeps running without an audit trail
            if not self._failed:
                logger.warning("Failed to write audit log %s: %s", self.path, e)
                self._failed = True
        return event

    def read_events(self) -> list[AuditEvent]:
        """Read back this session's events."""
        if not os.path.exists(self.path):
            return []
        with open(self.path, encoding="utf-8") as f:
            return [AuditEvent.model_validate_json(line) for line in f if line.strip()]

    def session_start(self, **data: Any) -> None:
        self.log(AuditEventType.SESSION_START, **data)

    def session_end(self, **data: Any) -> None:
        self.log(AuditEventType.SESSION_END, **data)

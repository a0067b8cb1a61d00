"""Agent settings loaded from the environment."""

import logging
import os

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class AgentSettings(BaseModel):
    """Loop limits and feature toggles for an agent."""

    max_iterations: int = 2000
    max_consecutive_errors: int = 3
    max_chat_duration_seconds: float = 3600.0
    max_messages: int = 500
    enable_compression: bool = False
    audit: bool = False
    audit_dir: str | None = None
    otel_enabled: bool = False


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default, cast=int):
    value = os.getenv(name)
    if not value:
        return default
    try:
        return cast(value)
    except ValueError:
        logger.warning("Invalid %s value '%s', using default %s", name, value, default)
        return default


def load_settings(dotenv: bool = True) -> AgentSettings:
    """Build AgentSettings from ``CODI_*`` environment variables.

    A ``.env`` file in the working directory is loaded first unless
    ``dotenv`` is False. Variables already set in the environment win.
    """
    if dotenv:
        load_dotenv(find_dotenv(usecwd=True))
    defaults = AgentSettings()
    return AgentSettings(
        max_iterations=_env_number("CODI_MAX_ITERATIONS", defaults.max_iterations),
        max_consecutive_errors=_env_number(
            "CODI_MAX_CONSECUTIVE_ERRORS", defaults.max_consecutive_errors
        ),
        max_chat_duration_seconds=_env_number(
            "CODI_MAX_CHAT_DURATION_SECONDS", defaults.max_chat_duration_seconds, float
        ),
        max_messages=_env_number("CODI_MAX_MESSAGES", defaults.max_messages),
        enable_compression=_env_bool("CODI_ENABLE_COMPRESSION", defaults.enable_compression),
        audit=_env_bool("CODI_AUDIT", defaults.audit),
        audit_dir=os.getenv("CODI_AUDIT_DIR") or None,
        otel_enabled=_env_bool("CODI_OTEL_ENABLED", defaults.otel_enabled),
    )

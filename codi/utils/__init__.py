"""Utility functions for codi."""

from .config import AgentSettings, load_settings

__all__ = [
    "AgentSettings",
    "load_settings",
]

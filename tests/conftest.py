"""Shared pytest configuration and fixtures."""

from unittest.mock import MagicMock

import pytest
from helpers import ScriptedProvider

from codi.execution.approvals import ApprovalStore


@pytest.fixture
def scripted_provider():
    """A ScriptedProvider with no queued responses."""
    return ScriptedProvider()


@pytest.fixture
def approval_store(tmp_path):
    """ApprovalStore backed by a temporary file and an empty workspace."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return ApprovalStore(path=tmp_path / "approvals.json", workspace_dir=workspace)


@pytest.fixture
def mock_tracer():
    """Mock OpenTelemetry tracer."""
    tracer = MagicMock()
    span = MagicMock()
    span.__enter__ = MagicMock(return_value=span)
    span.__exit__ = MagicMock(return_value=False)
    tracer.start_as_current_span = MagicMock(return_value=span)
    return tracer

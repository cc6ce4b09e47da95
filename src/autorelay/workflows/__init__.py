"""Workflow definitions — local files, remote mirror, and merge rules."""

from __future__ import annotations

from autorelay.workflows.records import new_workflow, workflow_from_record, workflow_to_record
from autorelay.workflows.remote import RemoteWorkflowStore
from autorelay.workflows.store import WorkflowStore

__all__ = [
    "RemoteWorkflowStore",
    "WorkflowStore",
    "new_workflow",
    "workflow_from_record",
    "workflow_to_record",
]

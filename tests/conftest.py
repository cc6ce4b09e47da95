"""Shared fixtures for the autorelay test suite."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from autorelay.models import MessageContent, SourceApp
from autorelay.workflows.store import WorkflowStore


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def workflows_dir(tmp_path: Path) -> Path:
    path = tmp_path / "workflows"
    path.mkdir()
    return path


@pytest.fixture()
def store(workflows_dir: Path) -> WorkflowStore:
    return WorkflowStore(workflows_dir)


def write_workflow(directory: Path, stem: str, **fields: Any) -> Path:
    """Write a raw workflow record the way the store lays files out."""
    record: dict[str, Any] = {
        "source": "Gmail",
        "sourceAccount": "Any",
        "destination": "Telegram",
        "destinationAccount": "123",
        "instructions": "",
        "active": True,
        "timestamp": 1,
    }
    record.update(fields)
    path = directory / f"{stem}.json"
    path.write_text(json.dumps(record), encoding="utf-8")
    return path


def make_content(**overrides: Any) -> MessageContent:
    fields: dict[str, Any] = {
        "id": "m1",
        "sender": "alice@example.com",
        "recipient": "me@example.com",
        "subject": "Hi",
        "body": "Hello",
        "timestamp": 1,
        "source": SourceApp.GMAIL,
    }
    fields.update(overrides)
    return MessageContent(**fields)

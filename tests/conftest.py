from __future__ import annotations

import asyncio
import os
from typing import Dict, List

import pytest

from tierloader import BaseResourceLoader, LifecycleEvent, LoaderSettings
from tierloader.config import reset_settings


class ControlledLoader(BaseResourceLoader):
    """Fake collaborator whose completion is driven by the test."""

    def __init__(self, emit_started: bool = True):
        super().__init__("controlled")
        self.emit_started = emit_started
        self.calls: List[str] = []
        self.signals: Dict[str, object] = {}
        self.settings: Dict[str, object] = {}

    def load(self, resource_id, settings, signals):
        self.calls.append(resource_id)
        self.signals[resource_id] = signals
        self.settings[resource_id] = settings
        if self.emit_started:
            signals.started()
        return None

    def succeed(self, resource_id: str) -> None:
        self.signals[resource_id].succeeded()

    def fail(self, resource_id: str, message: str = "boom") -> None:
        self.signals[resource_id].failed(message)


class EventRecorder:
    def __init__(self):
        self.events: List[LifecycleEvent] = []

    def __call__(self, event: LifecycleEvent) -> None:
        self.events.append(event)

    def terminal(self) -> List[LifecycleEvent]:
        return [event for event in self.events if event.finished]

    def for_id(self, resource_id: str) -> List[LifecycleEvent]:
        return [event for event in self.events if event.id == resource_id]


async def settle(rounds: int = 10) -> None:
    """Let the event loop run pending callbacks and task steps."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def fixture_isolated_environment(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith("TIERLOADER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(name="config")
def fixture_config():
    return LoaderSettings()


@pytest.fixture(name="loader")
def fixture_loader():
    return ControlledLoader()


@pytest.fixture(name="recorder")
def fixture_recorder():
    return EventRecorder()

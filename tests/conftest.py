"""Shared fixtures for crewgate tests."""

import os
import threading
import time
from unittest.mock import MagicMock

import pytest
import yaml

from crewgate.agents import Agent
from crewgate.config import CrewConfig
from crewgate.human import HumanGate, HumanSession, ScriptedResponder


class RecordingBackend:
    """Backend that records every call and answers from a script.

    ``outputs`` items may be strings or exceptions (raised); once exhausted
    the backend echoes the description.
    """

    def __init__(self, name, outputs=None, delay=0.0, tracker=None):
        self.name = name
        self.outputs = list(outputs or [])
        self.delay = delay
        self.tracker = tracker
        self.calls = []
        self._lock = threading.Lock()

    def invoke(self, description, context):
        with self._lock:
            self.calls.append((description, context))
            nxt = self.outputs.pop(0) if self.outputs else None
        if self.tracker is not None:
            self.tracker.enter(self.name)
        try:
            if self.delay:
                time.sleep(self.delay)
        finally:
            if self.tracker is not None:
                self.tracker.leave(self.name)
        if isinstance(nxt, Exception):
            raise nxt
        if nxt is None:
            return f"{self.name}: {description}"
        return nxt

    @property
    def call_count(self):
        return len(self.calls)


class ConcurrencyTracker:
    """Counts how many invocations overlap."""

    def __init__(self):
        self._lock = threading.Lock()
        self.active = set()
        self.max_active = 0
        self.overlaps = []

    def enter(self, name):
        with self._lock:
            if self.active:
                self.overlaps.append((name, frozenset(self.active)))
            self.active.add(name)
            self.max_active = max(self.max_active, len(self.active))

    def leave(self, name):
        with self._lock:
            self.active.discard(name)


@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a temporary directory and cd into it."""
    orig = os.getcwd()
    os.chdir(tmp_path)
    yield tmp_path
    os.chdir(orig)


@pytest.fixture
def tracker():
    return ConcurrencyTracker()


@pytest.fixture
def make_agent():
    """Factory: make_agent(name, outputs=None, delay=0.0, tracker=None) -> (Agent, backend)."""

    def _make(name, outputs=None, delay=0.0, tracker=None, role=None, tools=()):
        backend = RecordingBackend(name, outputs=outputs, delay=delay, tracker=tracker)
        agent = Agent(
            name=name,
            role=role or f"{name} role",
            goal=f"{name} goal",
            backend=backend,
            tools=tools,
        )
        return agent, backend

    return _make


@pytest.fixture
def scripted():
    return ScriptedResponder()


@pytest.fixture
def gate(scripted):
    return HumanGate(scripted, on_timeout="reject", session=HumanSession("human-test"))


@pytest.fixture
def quiet_config():
    return CrewConfig(max_concurrency=4, approval_timeout=5.0, log_file=False)


@pytest.fixture
def crew_yaml(tmp_dir):
    """Write a crew definition to tmp_dir and return its Path."""

    def _write(data, name="crew.yml"):
        path = tmp_dir / name
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        return path

    return _write


@pytest.fixture
def mock_console():
    """A mock Rich Console that silently accepts all print calls."""
    c = MagicMock()
    c.print = MagicMock()
    c.input = MagicMock(return_value="n")
    return c

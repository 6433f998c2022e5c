"""Pytest configuration and shared fixtures."""

import sys
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable

import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.correlator import CommandCorrelator
from core.session import SessionSettings, StageSession
from core.transport import MockTransport


def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate is true or fail the test."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("Condition not met in time")
        time.sleep(0.005)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def executor():
    """Background threads for calls that block on the stage."""
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=False)


@pytest.fixture
def in_background(executor) -> Callable[..., Future]:
    def submit(fn, *args, **kwargs) -> Future:
        return executor.submit(fn, *args, **kwargs)
    return submit


@pytest.fixture
def fast_settings() -> SessionSettings:
    """No board-reset delay and short timeouts."""
    return SessionSettings(startup_delay=0, handshake_timeout=0.5, command_timeout=0.2)


@pytest.fixture
def transport() -> MockTransport:
    return MockTransport()


@pytest.fixture
def session(transport, fast_settings) -> StageSession:
    """Session whose every connect() uses the same mock transport."""
    return StageSession(transport_factory=lambda port: transport, settings=fast_settings)


@pytest.fixture
def connected_session(session) -> StageSession:
    session.connect("PORT1")
    return session


class WireRecorder:
    """Stand-in transport write for driving a correlator directly."""

    def __init__(self):
        self.written = []
        self.connected = True
        self.replies = {}
        self.correlator = None

    def write_line(self, text: str) -> None:
        self.written.append(text)
        for line in self.replies.get(text, []):
            self.correlator.handle_line(line)


@pytest.fixture
def wire() -> WireRecorder:
    return WireRecorder()


@pytest.fixture
def correlator(wire) -> CommandCorrelator:
    corr = CommandCorrelator(write_line=wire.write_line, is_connected=lambda: wire.connected)
    wire.correlator = corr
    return corr

"""
Shared pytest fixtures for shell session tests.

- FakeProcess: stands in for asyncio.subprocess.Process with a
  controllable stdout stream and exit code
- sh_settings / manager: a real ShellSessionManager driving /bin/sh
- next_event: pull the next event for one session off a bus queue
"""

import asyncio
import sys
from typing import List, Optional
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from shell_sessions import SessionSettings, ShellSessionManager
from shell_sessions.events import EventType, ShellEvent

EVENT_TIMEOUT = 10.0

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs /bin/sh")


class FakeProcess:
    """Minimal asyncio.subprocess.Process lookalike."""

    def __init__(self, stdout: Optional[asyncio.StreamReader] = None, returncode: int = 0, pid: int = 4242):
        self.stdout = stdout
        self.stderr = None
        self.stdin = MagicMock()
        self.pid = pid
        self.returncode: Optional[int] = None
        self._exit_code = returncode
        self._exited = asyncio.Event()
        self.killed = False

    def finish(self, code: Optional[int] = None) -> None:
        if code is not None:
            self._exit_code = code
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        self.returncode = self._exit_code
        return self._exit_code

    def kill(self) -> None:
        self.killed = True
        self.finish(-9)

    def terminate(self) -> None:
        self.killed = True
        self.finish(-15)


async def next_event(q: "asyncio.Queue[ShellEvent]", session_id: Optional[str] = None) -> ShellEvent:
    while True:
        event = await asyncio.wait_for(q.get(), timeout=EVENT_TIMEOUT)
        if session_id is None or event.session_id == session_id:
            return event


async def collect_until_exit(q: "asyncio.Queue[ShellEvent]", session_id: str) -> List[ShellEvent]:
    events: List[ShellEvent] = []
    while True:
        event = await next_event(q, session_id)
        events.append(event)
        if event.type is EventType.SHELL_EXIT:
            return events


@pytest.fixture
def sh_settings() -> SessionSettings:
    return SessionSettings(shell="/bin/sh", shell_args=[])


@pytest_asyncio.fixture
async def manager(sh_settings):
    mgr = ShellSessionManager(settings=sh_settings)
    yield mgr
    await mgr.close_all()

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ShellSession:
    """A live shell process with piped stdio, addressed by a caller-chosen id.

    The pump and the manager share this object. ``stdin_lock`` gives one
    writer at a time; ``process_lock`` serializes termination requests
    against the pump collecting the exit status.
    """

    session_id: str
    process: asyncio.subprocess.Process
    command: str
    args: List[str] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    encoding: str = "utf-8"
    stdin_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    process_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    pump: Optional[asyncio.Task] = None
    stderr_drain: Optional[asyncio.Task] = None
    exit_status: Optional[int] = None
    exited: bool = False
    closed: bool = False

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid

    @property
    def status(self) -> str:
        if self.exited:
            return "exited"
        if self.closed:
            return "closing"
        return "running"

    async def write(self, text: str) -> bool:
        """Forward ``text`` to stdin verbatim. Failures are logged, not raised."""
        stdin = self.process.stdin
        async with self.stdin_lock:
            if stdin is None or stdin.is_closing():
                logger.warning("stdin of session %s is closed; input dropped", self.session_id)
                return False
            try:
                stdin.write(text.encode(self.encoding))
                await stdin.drain()
            except (UnicodeError, LookupError) as exc:
                logger.warning("session %s: input not encodable as %s: %s", self.session_id, self.encoding, exc)
                return False
            except (BrokenPipeError, ConnectionResetError) as exc:
                logger.warning("session %s: shell stopped reading input (%s)", self.session_id, exc)
                return False
            except OSError as exc:
                logger.warning("session %s: write failed: %s", self.session_id, exc)
                return False
        return True

    async def terminate(self, *, force: bool = True) -> None:
        """Ask the process to stop and close its stdin. Already-exited is fine."""
        self.closed = True
        async with self.process_lock:
            if self.process.returncode is None:
                self._signal(force)
        async with self.stdin_lock:
            stdin = self.process.stdin
            if stdin and not stdin.is_closing():
                stdin.close()
                try:
                    await stdin.wait_closed()
                except (BrokenPipeError, ConnectionResetError):
                    pass

    def _signal(self, force: bool) -> None:
        if os.name != "nt":
            sig = signal.SIGKILL if force else signal.SIGTERM
            try:
                # Spawned with start_new_session, so pgid == pid.
                os.killpg(self.process.pid, sig)
                return
            except ProcessLookupError:
                return
            except PermissionError:
                pass
        try:
            if force:
                self.process.kill()
            else:
                self.process.terminate()
        except ProcessLookupError:
            pass

    async def record_exit(self) -> Optional[int]:
        """Wait for the process to exit and store its status.

        The wait happens outside ``process_lock`` so a concurrent
        :meth:`terminate` can still reach the process.
        """
        returncode = await self.process.wait()
        async with self.process_lock:
            # Negative codes mean the process was killed by a signal.
            self.exit_status = returncode if returncode is not None and returncode >= 0 else None
            self.exited = True
        return self.exit_status

    def to_payload(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "command": self.command,
            "args": list(self.args),
            "pid": self.pid,
            "status": self.status,
            "created_at": self.created_at,
            "exit_status": self.exit_status,
        }

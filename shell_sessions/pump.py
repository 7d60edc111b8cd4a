from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import aiofiles

from .events import EventBus, ShellEvent
from .session import ShellSession

logger = logging.getLogger(__name__)

ExitCallback = Callable[[ShellSession], Optional[Awaitable[Any]]]

STDOUT_CHUNK = 4096
STDERR_CHUNK = 4096
_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9_.-]")


def _strip_terminator(raw: bytes) -> bytes:
    if raw.endswith(b"\n"):
        raw = raw[:-1]
        if raw.endswith(b"\r"):
            raw = raw[:-1]
    return raw


class OutputPump:
    """Drains one session's stdout into ``shell-output`` events.

    Emits one event per newline-terminated record, in read order. A read
    failure produces a single ``shell-error`` and stops the loop. Either way
    the pump then waits for the process and emits exactly one ``shell-exit``.
    """

    def __init__(
        self,
        session: ShellSession,
        bus: EventBus,
        *,
        encoding: str = "utf-8",
        errors: str = "replace",
        flush_partial_line: bool = True,
        on_exit: Optional[ExitCallback] = None,
    ) -> None:
        self.session = session
        self.bus = bus
        self.encoding = encoding
        self.errors = errors
        self.flush_partial_line = flush_partial_line
        self.on_exit = on_exit

    def start(self) -> asyncio.Task:
        task = asyncio.create_task(self.run(), name=f"shell-pump:{self.session.session_id}")
        self.session.pump = task
        return task

    async def run(self) -> Optional[int]:
        session_id = self.session.session_id
        stream = self.session.process.stdout
        if stream is not None:
            try:
                await self._read_records(stream)
            except Exception as exc:
                logger.exception("session %s: output pump failed", session_id)
                await self._fail(exc)

        exit_status = await self.session.record_exit()
        logger.info("session %s exited with status %s", session_id, exit_status)
        await self.bus.publish(ShellEvent.exit(session_id, exit_status))

        if self.on_exit is not None:
            result = self.on_exit(self.session)
            if asyncio.iscoroutine(result):
                await result
        return exit_status

    async def _read_records(self, stream: asyncio.StreamReader) -> None:
        # Chunked reads with our own split, so a record longer than the
        # stream limit is still delivered whole.
        session_id = self.session.session_id
        pending = bytearray()
        while True:
            try:
                chunk = await stream.read(STDOUT_CHUNK)
            except OSError as exc:
                await self._fail(exc)
                return
            if not chunk:
                break

            pending += chunk
            start = 0
            while True:
                end = pending.find(b"\n", start)
                if end < 0:
                    break
                if not await self._emit(bytes(pending[start:end + 1])):
                    return
                start = end + 1
            del pending[:start]

        if not pending:
            return
        if not self.flush_partial_line:
            logger.debug("session %s: dropping %d trailing bytes", session_id, len(pending))
            return
        await self._emit(bytes(pending))

    async def _emit(self, raw: bytes) -> bool:
        try:
            text = _strip_terminator(raw).decode(self.encoding, self.errors)
        except (UnicodeError, LookupError) as exc:
            # LookupError: unknown codec or error handler.
            await self._fail(exc)
            return False
        await self.bus.publish(ShellEvent.output(self.session.session_id, text))
        return True

    async def _fail(self, exc: BaseException) -> None:
        logger.warning("session %s: output read failed: %s", self.session.session_id, exc)
        await self.bus.publish(ShellEvent.error(self.session.session_id, str(exc) or type(exc).__name__))


class StderrDrain:
    """Keeps a session's stderr pipe empty; it is never forwarded as events."""

    def __init__(
        self,
        session: ShellSession,
        *,
        log_dir: Optional[Path] = None,
        encoding: str = "utf-8",
    ) -> None:
        self.session = session
        self.log_dir = log_dir
        self.encoding = encoding

    @property
    def log_path(self) -> Optional[Path]:
        if self.log_dir is None:
            return None
        session_id = self.session.session_id
        name = _UNSAFE_FILENAME.sub("_", session_id)
        if name != session_id or not name:
            # Sanitizing can map distinct ids to one name; tag with the raw id.
            digest = hashlib.sha256(session_id.encode("utf-8", "surrogatepass")).hexdigest()[:8]
            name = f"{name or 'session'}-{digest}"
        return self.log_dir / f"{name}.stderr.log"

    def start(self) -> asyncio.Task:
        task = asyncio.create_task(self.run(), name=f"shell-stderr:{self.session.session_id}")
        self.session.stderr_drain = task
        return task

    async def run(self) -> None:
        stream = self.session.process.stderr
        if stream is None:
            return
        log_path = self.log_path
        if log_path is None:
            await self._copy(stream, None)
            return
        try:
            await asyncio.to_thread(log_path.parent.mkdir, parents=True, exist_ok=True)
            log_fh = await aiofiles.open(log_path, "ab")
        except OSError as exc:
            logger.warning("session %s: cannot open stderr log %s: %s", self.session.session_id, log_path, exc)
            await self._copy(stream, None)
            return
        try:
            await self._copy(stream, log_fh)
        finally:
            try:
                await log_fh.close()
            except OSError as exc:
                logger.warning("session %s: closing stderr log failed: %s", self.session.session_id, exc)

    async def _copy(self, stream: asyncio.StreamReader, log_fh: Any) -> None:
        while True:
            try:
                data = await stream.read(STDERR_CHUNK)
            except OSError:
                return
            if not data:
                return
            if log_fh is not None:
                try:
                    await log_fh.write(data)
                    await log_fh.flush()
                except OSError as exc:
                    logger.warning("session %s: stderr log write failed: %s", self.session.session_id, exc)
                    log_fh = None
            logger.debug(
                "session %s stderr: %s",
                self.session.session_id,
                data.decode(self.encoding, errors="replace").rstrip(),
            )

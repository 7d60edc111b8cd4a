from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import psutil

from .config import SessionSettings
from .errors import SpawnError
from .events import EventBus
from .pump import OutputPump, StderrDrain
from .registry import SessionRegistry
from .session import ShellSession
from .shellenv import resolve_shell
from .spawner import spawn_process

logger = logging.getLogger(__name__)


class ShellSessionManager:
    """Starts, feeds and closes interactive shells keyed by caller ids.

    Output reaches consumers only through ``events``. ``send`` and ``close``
    on an id that isn't registered are silent no-ops that return ``False``.
    """

    def __init__(
        self,
        *,
        settings: Optional[SessionSettings] = None,
        registry: Optional[SessionRegistry] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.settings = settings or SessionSettings()
        self.registry = registry if registry is not None else SessionRegistry()
        self.events = events if events is not None else EventBus()
        self.started_at = time.time()

    def resolve_command(self) -> Tuple[str, List[str]]:
        if self.settings.shell:
            return self.settings.shell, list(self.settings.shell_args or [])
        return resolve_shell()

    # ------------------------------------------------------------------
    # Commands

    async def start(self, session_id: str) -> ShellSession:
        """Start a shell for ``session_id``, or return the one already running.

        Raises :class:`SpawnError` if the shell cannot be launched.
        """
        existing = self.registry.lookup(session_id)
        if existing is not None:
            logger.info("shell for session %s already exists, skipping spawn", session_id)
            return existing

        command, args = self.resolve_command()
        logger.info("spawning shell %s %s for session %s", command, args, session_id)
        try:
            proc = await spawn_process(
                command,
                args,
                cwd=self.settings.resolve_cwd(),
                env=self.settings.prepare_env(),
                limit=self.settings.stream_limit,
            )
        except SpawnError as exc:
            exc.session_id = session_id
            raise

        session = ShellSession(
            session_id=session_id,
            process=proc,
            command=command,
            args=list(args),
            encoding=self.settings.encoding,
        )

        if not self.registry.register_if_absent(session_id, session):
            # A concurrent start registered first while we were spawning.
            logger.warning("session %s registered concurrently; discarding pid %s", session_id, proc.pid)
            await self._discard(session)
            winner = self.registry.lookup(session_id)
            return winner if winner is not None else session

        self._launch_pump(session)
        return session

    async def send(self, session_id: str, text: str) -> bool:
        """Write ``text`` to the session's stdin as-is. No newline is added."""
        session = self.registry.lookup(session_id)
        if session is None:
            return False
        return await session.write(text)

    async def close(self, session_id: str, *, force: Optional[bool] = None) -> bool:
        """Unregister the session and ask its process to stop.

        The pump notices the end of output and emits the ``shell-exit`` event.
        """
        session = self.registry.remove(session_id)
        if session is None:
            return False
        kill = self.settings.kill_on_close if force is None else force
        logger.info("closing session %s (pid %s)", session_id, session.pid)
        await session.terminate(force=kill)
        return True

    async def close_all(self) -> None:
        """Close every session and wait for their pumps to finish."""
        sessions = self.registry.sessions()
        for session in sessions:
            await self.close(session.session_id)
        pumps = [s.pump for s in sessions if s.pump is not None]
        drains = [s.stderr_drain for s in sessions if s.stderr_drain is not None]
        if pumps or drains:
            await asyncio.gather(*pumps, *drains, return_exceptions=True)

    # ------------------------------------------------------------------
    # Introspection

    def get(self, session_id: str) -> Optional[ShellSession]:
        return self.registry.lookup(session_id)

    def list_sessions(self) -> List[Dict[str, Any]]:
        sessions = sorted(self.registry.sessions(), key=lambda s: s.created_at)
        return [s.to_payload() for s in sessions]

    async def describe(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self.registry.lookup(session_id)
        if session is None:
            return None
        payload = session.to_payload()
        payload["stats"] = await self._process_stats(session)
        return payload

    async def _process_stats(self, session: ShellSession) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"alive": False, "uptime": None}
        if session.exited or session.process.returncode is not None:
            return stats
        try:
            proc = await asyncio.to_thread(psutil.Process, session.pid)
            with proc.oneshot():
                stats["alive"] = proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
                stats["cpu_percent"] = proc.cpu_percent(interval=0.0)
                stats["memory_rss"] = proc.memory_info().rss
                stats["num_threads"] = proc.num_threads()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return stats
        if stats["alive"]:
            stats["uptime"] = max(0.0, time.time() - session.created_at)
        return stats

    # ------------------------------------------------------------------
    # Helpers

    def _launch_pump(self, session: ShellSession) -> None:
        OutputPump(
            session,
            self.events,
            encoding=self.settings.encoding,
            errors=self.settings.encoding_errors,
            flush_partial_line=self.settings.flush_partial_line,
            on_exit=self._on_session_exit,
        ).start()
        StderrDrain(
            session,
            log_dir=self.settings.stderr_log_dir,
            encoding=self.settings.encoding,
        ).start()

    def _on_session_exit(self, session: ShellSession) -> None:
        if not self.settings.prune_on_exit:
            return
        if self.registry.discard(session.session_id, session):
            logger.info("session %s pruned after its shell exited", session.session_id)

    async def _discard(self, session: ShellSession) -> None:
        await session.terminate(force=True)
        await session.process.communicate()

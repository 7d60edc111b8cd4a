from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from .errors import SpawnError

logger = logging.getLogger(__name__)

DEFAULT_STREAM_LIMIT = 64 * 1024


async def spawn_process(
    command: str,
    args: Optional[Sequence[str]] = None,
    *,
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    limit: int = DEFAULT_STREAM_LIMIT,
) -> asyncio.subprocess.Process:
    """Start ``command`` with stdin, stdout and stderr all piped to us.

    Any OS-level failure is re-raised as :class:`SpawnError`; nothing else is
    touched, so a bad shell path only fails this one call.
    """
    argv: List[str] = [str(a) for a in (args or [])]
    try:
        proc = await asyncio.create_subprocess_exec(
            command,
            *argv,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=limit,
            # Own process group so close can take down the shell's children too.
            start_new_session=True,
        )
    except OSError as exc:
        logger.warning("spawn of %s %s failed: %s", command, argv, exc)
        raise SpawnError(command, argv, exc) from exc
    logger.debug("spawned %s %s as pid %s", command, argv, proc.pid)
    return proc

from typing import Dict, Iterator, List, Optional

from .session import ShellSession


class SessionRegistry:
    """Maps session ids to live sessions.

    Every method is synchronous and never yields to the event loop, so each
    call is atomic with respect to other coroutines and unrelated ids never
    wait on each other.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, ShellSession] = {}

    def register_if_absent(self, session_id: str, session: ShellSession) -> bool:
        if session_id in self._sessions:
            return False
        self._sessions[session_id] = session
        return True

    def lookup(self, session_id: str) -> Optional[ShellSession]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[ShellSession]:
        return self._sessions.pop(session_id, None)

    def discard(self, session_id: str, session: ShellSession) -> bool:
        """Remove ``session_id`` only if it still maps to ``session``."""
        if self._sessions.get(session_id) is not session:
            return False
        del self._sessions[session_id]
        return True

    def ids(self) -> List[str]:
        return list(self._sessions)

    def sessions(self) -> List[ShellSession]:
        return list(self._sessions.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

from typing import List, Optional


class ShellSessionError(Exception):
    """Base class for shell session failures."""


class SpawnError(ShellSessionError):
    """The operating system refused to create the shell process."""

    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        cause: Optional[BaseException] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.command = command
        self.args_list = list(args or [])
        self.cause = cause
        self.session_id = session_id
        reason = f": {cause}" if cause else ""
        super().__init__(f"failed to spawn shell {command!r}{reason}")


class ConfigError(ShellSessionError, ValueError):
    """Settings could not be parsed."""

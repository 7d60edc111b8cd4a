"""Shell Sessions - interactive shell processes streamed as events."""

from .config import SessionSettings, load_settings
from .errors import ShellSessionError, SpawnError, ConfigError
from .events import EventBus, ShellEvent, EventType
from .manager import ShellSessionManager
from .pump import OutputPump, StderrDrain
from .registry import SessionRegistry
from .session import ShellSession
from .shellenv import resolve_shell
from .spawner import spawn_process

__all__ = [
    "ShellSessionManager",
    "ShellSession",
    "SessionRegistry",
    "OutputPump",
    "StderrDrain",
    "EventBus",
    "ShellEvent",
    "EventType",
    "SessionSettings",
    "load_settings",
    "ShellSessionError",
    "SpawnError",
    "ConfigError",
    "resolve_shell",
    "spawn_process",
]

from __future__ import annotations

import codecs
import os
import shlex
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from .errors import ConfigError

ENV_PREFIX = "SHELL_SESSIONS_"
CONFIG_ENV = ENV_PREFIX + "CONFIG"

_TRUTHY = {"1", "true", "yes", "y", "on"}
_FALSY = {"0", "false", "no", "n", "off", ""}
_OPTIONAL = {"shell", "shell_args", "cwd", "stderr_log_dir"}


def _truthy(value: Any, *, name: str) -> bool:
    if isinstance(value, bool):
        return value
    val = str(value).strip().lower()
    if val in _TRUTHY:
        return True
    if val in _FALSY:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


@dataclass(frozen=True)
class SessionSettings:
    """Knobs for spawning shells and pumping their output."""

    # Explicit shell; None means detect from the environment.
    shell: Optional[str] = None
    shell_args: Optional[List[str]] = None
    cwd: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    encoding: str = "utf-8"
    encoding_errors: str = "replace"  # "strict" turns decode failures into shell-error
    stream_limit: int = 64 * 1024
    flush_partial_line: bool = True
    prune_on_exit: bool = True
    kill_on_close: bool = True
    stderr_log_dir: Optional[Path] = None

    def resolve_cwd(self) -> Optional[str]:
        if not self.cwd:
            return None
        return str(Path(os.path.expanduser(self.cwd)).resolve())

    def prepare_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.env)
        return env


def _coerce(raw: Mapping[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(SessionSettings)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigError(f"unknown setting(s): {', '.join(unknown)}")

    out: Dict[str, Any] = {}
    for key, value in raw.items():
        if value is None:
            if key in _OPTIONAL:
                out[key] = None
            continue
        if key in ("flush_partial_line", "prune_on_exit", "kill_on_close"):
            out[key] = _truthy(value, name=key)
        elif key == "stream_limit":
            try:
                out[key] = int(value)
            except (TypeError, ValueError):
                raise ConfigError(f"stream_limit must be an integer, got {value!r}") from None
            if out[key] <= 0:
                raise ConfigError("stream_limit must be positive")
        elif key == "shell_args":
            if isinstance(value, str):
                value = shlex.split(value)
            if not isinstance(value, list):
                raise ConfigError("shell_args must be a list or a string")
            out[key] = [str(v) for v in value]
        elif key == "env":
            if not isinstance(value, dict):
                raise ConfigError("env must be a mapping")
            out[key] = {str(k): str(v) for k, v in value.items()}
        elif key == "stderr_log_dir":
            out[key] = Path(os.path.expanduser(str(value)))
        elif key == "encoding":
            try:
                codecs.lookup(str(value))
            except LookupError:
                raise ConfigError(f"unknown encoding {value!r}") from None
            out[key] = str(value)
        elif key == "encoding_errors":
            try:
                codecs.lookup_error(str(value))
            except LookupError:
                raise ConfigError(f"unknown encoding error handler {value!r}") from None
            out[key] = str(value)
        else:
            out[key] = str(value)
    return out


def _from_environ(environ: Mapping[str, str]) -> Dict[str, Any]:
    mapping = {
        "SHELL": "shell",
        "SHELL_ARGS": "shell_args",
        "CWD": "cwd",
        "ENCODING": "encoding",
        "ENCODING_ERRORS": "encoding_errors",
        "STREAM_LIMIT": "stream_limit",
        "FLUSH_PARTIAL_LINE": "flush_partial_line",
        "PRUNE_ON_EXIT": "prune_on_exit",
        "KILL_ON_CLOSE": "kill_on_close",
        "STDERR_LOG_DIR": "stderr_log_dir",
    }
    raw: Dict[str, Any] = {}
    for suffix, key in mapping.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is not None:
            raw[key] = value
    return raw


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    # Either a dedicated section or a bare mapping.
    section = data.get("shell_sessions", data)
    if not isinstance(section, dict):
        raise ConfigError(f"'shell_sessions' in {path} must be a mapping")
    return dict(section)


def load_settings(
    path: Optional[Union[str, Path]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> SessionSettings:
    """Build settings from defaults, an optional YAML file and the environment.

    The file comes from ``path`` or ``$SHELL_SESSIONS_CONFIG``; a missing
    file is an error only when it was named explicitly. ``SHELL_SESSIONS_*``
    variables override the file.
    """
    environ = os.environ if environ is None else environ
    settings = SessionSettings()

    explicit = path is not None
    config_path = path or environ.get(CONFIG_ENV)
    if config_path:
        p = Path(os.path.expanduser(str(config_path)))
        if p.exists():
            settings = replace(settings, **_coerce(_read_yaml(p)))
        elif explicit:
            raise ConfigError(f"config file not found: {p}")

    overrides = _coerce(_from_environ(environ))
    if overrides:
        settings = replace(settings, **overrides)
    return settings

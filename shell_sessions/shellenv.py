from __future__ import annotations

import os
import sys
from typing import List, Mapping, Optional, Tuple

DEFAULT_POSIX_SHELL = "/bin/bash"
DEFAULT_WINDOWS_SHELL = "powershell.exe"

# Flags that keep the interpreter alive after it runs a command.
CMD_STAY_OPEN = "/K"
POWERSHELL_STAY_OPEN = "-NoExit"


def _is_windows(platform: str) -> bool:
    value = platform.lower()
    return value.startswith("win") or value == "nt"


def _get(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(name)
    if value is None or not str(value).strip():
        return None
    return str(value)


def _windows_comspec(environ: Mapping[str, str]) -> Optional[str]:
    # Windows env lookups are case-insensitive; plain mappings are not.
    for key in ("ComSpec", "COMSPEC", "comspec"):
        value = _get(environ, key)
        if value:
            return value
    return None


def resolve_shell(
    platform: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[str, List[str]]:
    """Pick the user's interactive shell and its startup arguments.

    On POSIX this is ``$SHELL`` or ``/bin/bash``. On Windows an explicit
    ``$SHELL`` is trusted verbatim; otherwise ``ComSpec`` is inspected and
    given a "stay open" flag when it is ``cmd`` or a PowerShell, falling back
    to ``powershell.exe -NoExit`` when nothing is set.

    Never raises and never touches the filesystem.
    """
    platform = platform or sys.platform
    environ = os.environ if environ is None else environ

    shell = _get(environ, "SHELL")

    if not _is_windows(platform):
        return (shell or DEFAULT_POSIX_SHELL, [])

    if shell:
        # The user picked a shell; don't guess its flags.
        return (shell, [])

    comspec = _windows_comspec(environ)
    if not comspec:
        return (DEFAULT_WINDOWS_SHELL, [POWERSHELL_STAY_OPEN])

    lowered = comspec.lower()
    if "cmd" in lowered:
        return (comspec, [CMD_STAY_OPEN])
    if "powershell" in lowered or "pwsh" in lowered:
        return (comspec, [POWERSHELL_STAY_OPEN])
    return (comspec, [])

"""Running shell commands for the web command line."""

from __future__ import annotations

import logging
import os
import subprocess

log = logging.getLogger(__name__)


def _argv(cmd: str) -> list[str]:
    parts = cmd.split(" ")
    if os.name == "nt":
        return ["cmd.exe", "/c", *parts]
    return parts


def run_cmd(cmd: str) -> str:
    """Run a command split on spaces; return its stderr if any, else its stdout.

    Failures are logged, never raised: a command that cannot start gives "".
    """
    try:
        # Running user-supplied commands is the purpose of this function.
        result = subprocess.run(_argv(cmd), capture_output=True, check=False)
    except (OSError, ValueError) as exc:
        log.error("error running system command: %s", exc)
        return ""

    if result.returncode != 0:
        log.error("error running system command: exit status %d", result.returncode)

    stdout = result.stdout.decode(errors="replace")
    stderr = result.stderr.decode(errors="replace")
    return stderr if stderr else stdout
"""External command execution."""

from __future__ import annotations

import subprocess
from typing import Optional, Sequence

from release_upgrade.logging import COMMAND_OUTPUT_TAG, get_logger

log = get_logger(source="command", tags=["command"])
output_log = get_logger(source="command", tags=["command", COMMAND_OUTPUT_TAG])


class CommandError(RuntimeError):
    """An external command exited non-zero or could not be started."""

    def __init__(self, command: Sequence[str], returncode: int, message: str):
        self.command = list(command)
        self.returncode = returncode
        self.message = message
        super().__init__(f"Command failed ({' '.join(command)}): {message}")


def run_checked_command(command: Sequence[str], input_text: Optional[str] = None) -> str:
    """Run a command and raise CommandError if it fails.

    Returns:
        The command's standard output
    """
    command = [str(part) for part in command]
    log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            command,
            input=input_text,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        raise CommandError(command, 127, str(e)) from e
    if result.stdout:
        output_log.trace(result.stdout.rstrip())
    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        stdout = (result.stdout or "").strip()
        message = stderr or stdout or "Command failed"
        raise CommandError(command, result.returncode, message)
    return result.stdout

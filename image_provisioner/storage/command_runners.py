"""Command execution utilities for external image tools."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from image_provisioner.logging import get_logger


log = get_logger(source="command", tags=["command"])
output_log = get_logger(source="command", tags=["command", "command-output"])


def find_tool(*candidates: str) -> Optional[str]:
    """Return the path of the first candidate found on PATH."""
    for candidate in candidates:
        path = shutil.which(candidate)
        if path:
            return path
    return None


def run_checked_command(command: Sequence[str], input_text: Optional[str] = None) -> str:
    """Run a command and raise RuntimeError if it fails."""
    command = [str(part) for part in command]
    log.debug(f"Running command: {' '.join(command)}")
    result = subprocess.run(
        command,
        input=input_text,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        stdout = (result.stdout or "").strip()
        message = stderr or stdout or "Command failed"
        raise RuntimeError(f"Command failed ({' '.join(command)}): {message}")
    if result.stdout:
        output_log.trace(result.stdout.rstrip())
    return result.stdout


def run_to_file(command: Sequence[str], output_path: Path) -> None:
    """Run a command streaming its stdout into ``output_path``.

    The output is written in binary mode so large images never pass through
    Python memory. A failed command leaves no output file behind.
    """
    command = [str(part) for part in command]
    log.debug(f"Running command: {' '.join(command)} > {output_path}")
    try:
        with open(output_path, "wb") as output:
            result = subprocess.run(
                command,
                stdout=output,
                stderr=subprocess.PIPE,
            )
    except OSError:
        output_path.unlink(missing_ok=True)
        raise
    if result.returncode != 0:
        output_path.unlink(missing_ok=True)
        stderr = (result.stderr or b"").decode("utf-8", errors="replace").strip()
        message = stderr or "Command failed"
        raise RuntimeError(f"Command failed ({' '.join(command)}): {message}")


__all__ = [
    "find_tool",
    "run_checked_command",
    "run_to_file",
]

"""Run local external tools and surface their combined output on failure."""

import logging
import os
import subprocess
from typing import Dict, Optional, Sequence

from ocp_libvirt.exceptions import ExternalCommandError

logger = logging.getLogger(__name__)


def run_command(
    cmd: Sequence[str], timeout: Optional[float] = None, env: Optional[Dict[str, str]] = None
) -> str:
    """
    Run a command, returning its combined stdout/stderr.

    Args:
        cmd: Command and arguments
        timeout: Seconds before the command is killed, None for no limit
        env: Extra environment variables layered over the current environment

    Returns:
        Combined output, stripped

    Raises:
        ExternalCommandError: If the command is missing, times out or exits non-zero
    """
    logger.debug("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            list(cmd),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
            env={**os.environ, **env} if env else None,
        )
    except FileNotFoundError:
        raise ExternalCommandError(cmd, 127, f"executable not found: {cmd[0]}")
    except subprocess.TimeoutExpired as e:
        output = e.output if isinstance(e.output, str) else ""
        raise ExternalCommandError(cmd, -1, f"timed out after {timeout}s\n{output}")

    if result.returncode != 0:
        raise ExternalCommandError(cmd, result.returncode, result.stdout or "")
    return (result.stdout or "").strip()

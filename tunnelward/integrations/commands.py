"""Thin wrapper over subprocess for platform tools (useradd, chage, systemctl, ...)"""

import subprocess
from typing import List, Optional, Sequence

from ..utils.exceptions import CommandError
from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30


def run_command(
    args: Sequence[str],
    input_text: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ok_returncodes: Sequence[int] = (0,),
    log_failures: bool = True,
) -> subprocess.CompletedProcess:
    """
    Run a command once, no retries.

    Raises:
        CommandError: the binary is missing, the call timed out, or it exited
            with a code outside ok_returncodes
    """
    cmd: List[str] = [str(a) for a in args]
    name = cmd[0]
    try:
        result = subprocess.run(
            cmd,
            input=input_text,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError:
        raise CommandError(name, f"Command not found: {name}")
    except subprocess.TimeoutExpired:
        logger.error("Command timed out", command=name, timeout_seconds=timeout)
        raise CommandError(name, f"{name} timed out after {timeout}s")

    if result.returncode not in ok_returncodes:
        stderr = (result.stderr or "").strip()
        if log_failures:
            logger.error("Command failed", command=name, returncode=result.returncode, stderr=stderr)
        raise CommandError(
            name,
            f"{name} exited with code {result.returncode}: {stderr}",
            returncode=result.returncode,
        )
    return result


def command_succeeds(args: Sequence[str], timeout: float = DEFAULT_TIMEOUT_SECONDS) -> bool:
    """True when the command exits 0; missing binaries and timeouts count as False"""
    try:
        run_command(args, timeout=timeout, log_failures=False)
        return True
    except CommandError:
        return False

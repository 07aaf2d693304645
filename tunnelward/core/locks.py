"""
PID-marker file locks.

- RunLock: non-blocking, host-wide exclusivity for supervisor runs. A marker
  whose PID is no longer alive is stale and gets reclaimed.
- store_lock: blocking (with timeout) critical section around record store
  mutations, so concurrent create/delete invocations cannot interleave their
  check-then-write steps.

Markers are written to a temp file and hard-linked into place, so a marker
never exists without the owner's PID in it. Only the owner removes its
marker.
"""

from __future__ import annotations

import os
import signal
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, Optional

import psutil

from ..utils.exceptions import AlreadyRunning, LockTimeout
from ..utils.logger import get_logger

logger = get_logger(__name__)

LOCK_TIMEOUT_SECONDS = 30
LOCK_POLL_INTERVAL = 0.2
UNREADABLE_GRACE_SECONDS = 10
RELEASE_SIGNALS = tuple(s for s in (getattr(signal, "SIGTERM", None), getattr(signal, "SIGHUP", None)) if s)


def lock_path(locks_dir: Path, key: str) -> Path:
    safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in key)
    return Path(locks_dir) / f"{safe}.lock"


def read_pid(path: Path) -> Optional[int]:
    try:
        return int(Path(path).read_text().strip())
    except (OSError, ValueError):
        return None


def pid_alive(pid: Optional[int]) -> bool:
    return pid is not None and pid > 0 and psutil.pid_exists(pid)


def _try_create(path: Path) -> bool:
    """Publish a marker that already holds our PID; False if one exists"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_name, 0o644)
        try:
            os.link(temp_name, str(path))
        except FileExistsError:
            return False
        return True
    finally:
        os.unlink(temp_name)


def _marker_age(path: Path) -> Optional[float]:
    try:
        return time.time() - path.stat().st_mtime
    except FileNotFoundError:
        return None


def _reclaim_if_stale(path: Path) -> bool:
    """
    Remove the marker if its holder is gone. Returns True while it is still held.

    A marker without a readable PID counts as held until it is older than
    UNREADABLE_GRACE_SECONDS.
    """
    pid = read_pid(path)
    if pid_alive(pid):
        return True
    if pid is None:
        age = _marker_age(path)
        if age is None:
            return False
        if age < UNREADABLE_GRACE_SECONDS:
            return True
    logger.warning("Removing stale lock file", path=str(path), pid=pid)
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    return False


def _release(path: Path) -> None:
    if read_pid(path) == os.getpid():
        try:
            path.unlink()
        except FileNotFoundError:
            pass


@contextmanager
def store_lock(path: Path, timeout_seconds: float = LOCK_TIMEOUT_SECONDS) -> Generator[None, None, None]:
    """Blocks until the store lock is acquired or timeout_seconds pass"""
    path = Path(path)
    start = time.monotonic()
    while True:
        if _try_create(path):
            break
        if not _reclaim_if_stale(path):
            continue
        if (time.monotonic() - start) >= timeout_seconds:
            raise LockTimeout(str(path), timeout_seconds)
        time.sleep(LOCK_POLL_INTERVAL)
    try:
        yield
    finally:
        _release(path)


class RunLock:
    """
    Exclusive supervisor run marker.

    Usage:
        with RunLock(path):
            ...  # raises AlreadyRunning on entry if another live process holds it

    SIGTERM/SIGHUP are turned into SystemExit while held so the marker is
    removed on external termination as well.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._previous_handlers: Dict[int, object] = {}
        self.held = False

    def acquire(self) -> None:
        while not _try_create(self.path):
            if _reclaim_if_stale(self.path):
                holder = read_pid(self.path)
                logger.warning("Monitor is already running", pid=holder, path=str(self.path))
                raise AlreadyRunning(str(self.path), pid=holder)
        self.held = True
        self._install_signal_handlers()
        logger.debug("Acquired run lock", path=str(self.path), pid=os.getpid())

    def release(self) -> None:
        if not self.held:
            return
        self._restore_signal_handlers()
        _release(self.path)
        self.held = False
        logger.debug("Released run lock", path=str(self.path))

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in RELEASE_SIGNALS:
            self._previous_handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, self._on_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    @staticmethod
    def _on_signal(signum, frame):
        raise SystemExit(128 + signum)

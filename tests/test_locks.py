"""Tests for PID-marker locks"""

import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import pytest

from tunnelward.core import locks
from tunnelward.core.locks import RunLock, lock_path, read_pid, store_lock
from tunnelward.utils.exceptions import AlreadyRunning, LockTimeout

REPO_ROOT = Path(__file__).resolve().parents[1]


def test_lock_path_sanitizes_key(tmp_path):
    assert lock_path(tmp_path, "store") == tmp_path / "store.lock"
    assert lock_path(tmp_path, "../etc/passwd") == tmp_path / "___etc_passwd.lock"


def test_run_lock_writes_pid_and_releases(tmp_path):
    path = tmp_path / "monitor.lock"
    with RunLock(path) as lock:
        assert lock.held
        assert read_pid(path) == os.getpid()
    assert not path.exists()
    assert not lock.held


def test_run_lock_is_exclusive(tmp_path):
    path = tmp_path / "monitor.lock"
    with RunLock(path):
        with pytest.raises(AlreadyRunning) as exc_info:
            RunLock(path).acquire()
        assert exc_info.value.pid == os.getpid()
        # the losing contender must not remove the holder's marker
        assert path.exists()
    assert not path.exists()


def test_run_lock_reclaims_stale_marker(tmp_path, monkeypatch):
    path = tmp_path / "monitor.lock"
    path.write_text("424242")
    monkeypatch.setattr(locks, "pid_alive", lambda pid: False)

    with RunLock(path):
        assert read_pid(path) == os.getpid()


def test_run_lock_reclaims_unreadable_marker(tmp_path):
    path = tmp_path / "monitor.lock"
    path.write_text("not-a-pid")
    old = time.time() - locks.UNREADABLE_GRACE_SECONDS - 5
    os.utime(path, (old, old))

    with RunLock(path):
        assert read_pid(path) == os.getpid()


def test_fresh_empty_marker_counts_as_held(tmp_path):
    """A marker mid-write by another process must not be reclaimed"""
    path = tmp_path / "monitor.lock"
    path.write_text("")

    with pytest.raises(AlreadyRunning) as exc_info:
        RunLock(path).acquire()
    assert exc_info.value.pid is None
    with pytest.raises(LockTimeout):
        with store_lock(path, timeout_seconds=0.3):
            pass
    assert path.exists()


def test_marker_is_published_with_pid(tmp_path, monkeypatch):
    path = tmp_path / "monitor.lock"
    published = []
    real_link = os.link

    def recording_link(src, dst, *args, **kwargs):
        published.append((Path(src).read_text(), Path(dst).name))
        return real_link(src, dst, *args, **kwargs)

    monkeypatch.setattr(locks.os, "link", recording_link)

    with RunLock(path):
        with pytest.raises(AlreadyRunning):
            RunLock(path).acquire()

    assert published == [(str(os.getpid()), "monitor.lock")] * 2
    assert list(tmp_path.iterdir()) == []


def test_run_lock_release_leaves_foreign_marker(tmp_path):
    path = tmp_path / "monitor.lock"
    lock = RunLock(path)
    lock.acquire()
    path.write_text("424242")
    lock.release()
    assert path.exists()


def test_run_lock_restores_signal_handlers(tmp_path):
    before = signal.getsignal(signal.SIGTERM)
    with RunLock(tmp_path / "monitor.lock"):
        assert signal.getsignal(signal.SIGTERM) is not before
    assert signal.getsignal(signal.SIGTERM) == before


def test_run_lock_released_on_exception(tmp_path):
    path = tmp_path / "monitor.lock"
    with pytest.raises(RuntimeError):
        with RunLock(path):
            raise RuntimeError("boom")
    assert not path.exists()


def test_store_lock_times_out_on_live_holder(tmp_path):
    path = tmp_path / "locks" / "store.lock"
    with store_lock(path):
        with pytest.raises(LockTimeout):
            with store_lock(path, timeout_seconds=0.3):
                pass
        assert read_pid(path) == os.getpid()
    assert not path.exists()


def test_store_lock_reclaims_stale_marker(tmp_path, monkeypatch):
    path = tmp_path / "store.lock"
    path.write_text("424242")
    monkeypatch.setattr(locks, "pid_alive", lambda pid: False)

    with store_lock(path, timeout_seconds=0.3):
        assert read_pid(path) == os.getpid()
    assert not path.exists()


def test_sigterm_releases_run_lock(tmp_path):
    path = tmp_path / "monitor.lock"
    with pytest.raises(SystemExit) as exc_info:
        with RunLock(path):
            os.kill(os.getpid(), signal.SIGTERM)
            time.sleep(5)
    assert exc_info.value.code == 128 + signal.SIGTERM
    assert not path.exists()


HOLD_RUN_LOCK = """
import sys, time
from pathlib import Path
from tunnelward.core.locks import RunLock

with RunLock(sys.argv[1]):
    Path(sys.argv[2]).write_text("ready")
    time.sleep(60)
"""

COUNT_UNDER_STORE_LOCK = """
import sys
from pathlib import Path
from tunnelward.core.locks import store_lock

counter = Path(sys.argv[2])
for _ in range(int(sys.argv[3])):
    with store_lock(sys.argv[1], timeout_seconds=30):
        value = int(counter.read_text())
        counter.write_text(str(value + 1))
"""


def _spawn(script, *args):
    env = dict(os.environ, PYTHONPATH=str(REPO_ROOT))
    return subprocess.Popen([sys.executable, "-c", script, *map(str, args)], env=env)


def _wait_for(path, child, timeout=15):
    deadline = time.monotonic() + timeout
    while not path.exists():
        assert child.poll() is None, "lock holder exited early"
        assert time.monotonic() < deadline, "lock holder never became ready"
        time.sleep(0.05)


def test_run_lock_held_by_another_process(tmp_path):
    path = tmp_path / "monitor.lock"
    ready = tmp_path / "ready"
    child = _spawn(HOLD_RUN_LOCK, path, ready)
    try:
        _wait_for(ready, child)
        with pytest.raises(AlreadyRunning) as exc_info:
            RunLock(path).acquire()
        assert exc_info.value.pid == child.pid
        assert read_pid(path) == child.pid
    finally:
        child.terminate()
        child.wait(timeout=15)

    assert not path.exists()
    with RunLock(path):
        assert read_pid(path) == os.getpid()


def test_store_lock_serializes_processes(tmp_path):
    path = tmp_path / "locks" / "store.lock"
    counter = tmp_path / "counter"
    counter.write_text("0")

    children = [_spawn(COUNT_UNDER_STORE_LOCK, path, counter, 5) for _ in range(3)]
    for child in children:
        assert child.wait(timeout=60) == 0

    assert counter.read_text() == "15"
    assert not path.exists()

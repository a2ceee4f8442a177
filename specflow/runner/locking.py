"""
Lock management for specflow.

One exclusive flock on <state_dir>/locks/state.lock serializes every
mutation of the state directory.
"""

import atexit
import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path

from specflow.lib.errors import LockTimeoutError

logger = logging.getLogger(__name__)

LOCK_RELPATH = Path("locks") / "state.lock"


def lock_path(state_dir: Path) -> Path:
    return state_dir / LOCK_RELPATH


def is_locked(state_dir: Path) -> bool:
    """True if another holder currently owns the state lock."""
    path = lock_path(state_dir)
    if not path.exists():
        return False
    with open(path, 'r') as fd:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        fcntl.flock(fd, fcntl.LOCK_UN)
    return False


@contextmanager
def state_lock(state_dir: Path, timeout: float = 10.0, poll_interval: float = 0.05):
    """
    Acquire the state directory lock, yield, release on exit.

    Lock files are never deleted: unlinking one while another process waits
    on it would hand out two "exclusive" locks on different inodes.

    Raises:
        LockTimeoutError: lock not obtained within `timeout` seconds
    """
    path = lock_path(state_dir)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = open(path, 'a')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            waited = time.monotonic() - start
            if waited > timeout:
                fd.close()
                raise LockTimeoutError(
                    f"Could not acquire state lock within {timeout}s",
                    lock=str(path),
                    timeout=timeout,
                )
            time.sleep(poll_interval)

    waited_ms = (time.monotonic() - start) * 1000
    if waited_ms > 1000:
        logger.warning(f"[LOCK] waited {waited_ms:.0f}ms for {path}")

    def cleanup():
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        except (OSError, ValueError):
            pass
        fd.close()

    atexit.register(cleanup)
    try:
        fd.truncate(0)
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        atexit.unregister(cleanup)
        cleanup()

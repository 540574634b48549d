"""
Leader lock for the firing loop.

Only the process holding this lock runs the `SchedulerLoop`; every other worker
serves the API only. The lock file holds the owner's PID on the first line and
a UTC heartbeat timestamp on the second.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by another user
        return True
    except OSError:
        return False
    return True


def read_lock_file(lock_path: str) -> Tuple[Optional[int], Optional[datetime]]:
    """Return (pid, heartbeat) from a lock file; unreadable parts are None."""
    try:
        with open(lock_path, "r", encoding="utf-8") as f:
            pid_line = (f.readline() or "").strip()
            ts_line = (f.readline() or "").strip()
    except OSError:
        return None, None

    pid = int(pid_line) if pid_line.isdigit() else None

    heartbeat = None
    if ts_line:
        try:
            heartbeat = datetime.fromisoformat(ts_line.removesuffix("Z"))
        except ValueError:
            heartbeat = None
        else:
            if heartbeat.tzinfo is None:
                heartbeat = heartbeat.replace(tzinfo=timezone.utc)
            heartbeat = heartbeat.astimezone(timezone.utc)
    return pid, heartbeat


@dataclass
class SchedulerLock:
    """
    File-based single-runner lock.

    `try_acquire()` creates the file atomically. An existing file is taken over
    when its PID is dead, or when `stale_after_seconds` is set and its heartbeat
    is older than that. A live holder should call `heartbeat()` more often than
    `stale_after_seconds`.
    """

    lock_path: str
    stale_after_seconds: Optional[int] = None
    is_process_alive: Callable[[int], bool] = _pid_alive
    now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)

    _held: bool = field(default=False, repr=False)

    @property
    def held(self) -> bool:
        return self._held

    def _is_stale(self, heartbeat: Optional[datetime]) -> bool:
        if self.stale_after_seconds is None or heartbeat is None:
            return False
        return (self.now() - heartbeat).total_seconds() > float(self.stale_after_seconds)

    def _write(self, fd: int) -> None:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            stamp = self.now().astimezone(timezone.utc).replace(tzinfo=None).isoformat()
            f.write(f"{os.getpid()}\n{stamp}Z\n")

    def try_acquire(self) -> bool:
        if self._held:
            return True
        os.makedirs(os.path.dirname(self.lock_path) or ".", exist_ok=True)

        if os.path.exists(self.lock_path):
            pid, heartbeat = read_lock_file(self.lock_path)
            if pid and self.is_process_alive(pid) and not self._is_stale(heartbeat):
                return False
            try:
                os.remove(self.lock_path)
            except FileNotFoundError:
                pass
            except OSError:
                return False

        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except OSError:
            # lost the race to another process
            return False

        try:
            self._write(fd)
        except OSError:
            try:
                os.remove(self.lock_path)
            except OSError:
                pass
            return False

        self._held = True
        return True

    def heartbeat(self) -> bool:
        """Refresh the timestamp; returns False if the lock was taken over."""
        if not self._held:
            return False
        pid, _ = read_lock_file(self.lock_path)
        if pid != os.getpid():
            self._held = False
            return False
        tmp_path = f"{self.lock_path}.{os.getpid()}.tmp"
        try:
            self._write(os.open(tmp_path, os.O_CREAT | os.O_TRUNC | os.O_WRONLY))
            os.replace(tmp_path, self.lock_path)
        except OSError:
            return False
        return True

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        pid, _ = read_lock_file(self.lock_path)
        if pid not in (None, os.getpid()):
            return
        try:
            os.remove(self.lock_path)
        except OSError:
            pass

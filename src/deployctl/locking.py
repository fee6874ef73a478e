"""Advisory locks that keep two processes off the same deployment."""
from __future__ import annotations

import fcntl
import json
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

GLOBAL_LOCK_NAME = "deployctl"


class LockTimeoutError(RuntimeError):
    """Raised when a lock cannot be acquired within the timeout."""


@dataclass(frozen=True)
class LockHandle:
    """Metadata about an acquired lock."""

    path: Path
    wait_ms: int


class LockManager:
    """Create and acquire ``fcntl`` lock files under the runtime directory."""

    def __init__(self, runtime_dir: Path, default_timeout: float = 30.0) -> None:
        """Store the lock directory and default acquisition timeout."""
        self._root = runtime_dir
        self._default_timeout = default_timeout

    def lock_path(self, name: str) -> Path:
        """Return the lock file used for *name*."""
        return self._root / f"{name}.lock"

    @contextmanager
    def deployment_lock(
        self,
        name: str,
        *,
        timeout: float | None = None,
    ) -> Iterator[LockHandle]:
        """Hold the lock for deployment *name* for the duration of the block."""
        with self._acquire(self.lock_path(name), timeout) as handle:
            yield handle

    @contextmanager
    def mutate_deployments(
        self,
        names: list[str],
        *,
        timeout: float | None = None,
    ) -> Iterator[LockHandle]:
        """Acquire the global lock, then per-deployment locks in sorted order."""
        started = time.monotonic()
        with self._acquire(self.lock_path(GLOBAL_LOCK_NAME), timeout):
            with _nested(self, sorted(set(names)), timeout):
                wait_ms = int((time.monotonic() - started) * 1000)
                yield LockHandle(path=self.lock_path(GLOBAL_LOCK_NAME), wait_ms=wait_ms)

    @contextmanager
    def _acquire(self, path: Path, timeout: float | None) -> Iterator[LockHandle]:
        limit = self._default_timeout if timeout is None else timeout
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o640)
        started = time.monotonic()
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError as exc:
                    if time.monotonic() - started >= limit:
                        raise LockTimeoutError(
                            f"Timed out after {limit:.1f}s waiting for lock {path}."
                        ) from exc
                    time.sleep(0.05)
            wait_ms = int((time.monotonic() - started) * 1000)
            metadata = {
                "pid": os.getpid(),
                "path": str(path),
                "acquired_at": datetime.now(UTC).isoformat(),
            }
            os.ftruncate(fd, 0)
            os.pwrite(fd, json.dumps(metadata).encode("utf-8"), 0)
            try:
                yield LockHandle(path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


@contextmanager
def _nested(manager: LockManager, names: list[str], timeout: float | None) -> Iterator[None]:
    if not names:
        yield
        return
    head, *rest = names
    with manager.deployment_lock(head, timeout=timeout):
        with _nested(manager, rest, timeout):
            yield


__all__ = ["LockHandle", "LockManager", "LockTimeoutError"]

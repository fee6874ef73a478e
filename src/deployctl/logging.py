"""Structured operation logging for deployctl commands.

Every mutating command runs inside :meth:`StructuredLogger.operation`. The
yielded :class:`OperationScope` collects the individual steps taken and the
final result, and one JSON document per operation is appended to
``operations.jsonl`` in the logs directory. Logging must never break a
command: when the directory cannot be created or a write fails the logger
disables itself and carries on silently.
"""
from __future__ import annotations

import json
import os
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from . import __version__

OPERATIONS_LOG = "operations.jsonl"


def _sanitize(value: object) -> object:
    """Return a JSON-safe representation of *value*."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


@dataclass
class OperationScope:
    """Collects steps and the outcome of a single command invocation."""

    command: str
    args: Mapping[str, object] = field(default_factory=dict)
    target: Mapping[str, object] = field(default_factory=dict)
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None
    lock_wait_ms: int | None = None

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        """Record one step of the operation."""
        self.steps.append(
            {
                "name": name,
                "status": status,
                "detail": _sanitize(detail),
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )

    def set_lock_wait_ms(self, value: int) -> None:
        """Record how long the command waited for its lock."""
        self.lock_wait_ms = int(value)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation successful."""
        self._set_result("success", message, changed=changed, warnings=warnings, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] = (),
        errors: Sequence[str] = (),
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        warnings: Sequence[str] = (),
        rc: int | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation failed."""
        self._set_result(
            "error",
            message,
            changed=changed,
            warnings=warnings,
            errors=list(errors) if errors else [message],
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        warnings: Sequence[str] = (),
        errors: Sequence[str] = (),
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        payload: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": int(changed),
            "warnings": [str(item) for item in warnings],
            "errors": [str(item) for item in errors],
        }
        if rc is not None:
            payload["rc"] = rc
        if context:
            payload["context"] = _sanitize(dict(context))
        self.result = payload


class StructuredLogger:
    """Append-only JSON lines log of deployctl operations."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare the logs directory, disabling logging if it is unusable."""
        self._logs_dir = logs_dir
        self._operations_log_path = logs_dir / OPERATIONS_LOG
        self._enabled = True
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def operations_log_path(self) -> Path:
        """Return the path of the operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Run a command inside a logged scope."""
        scope = OperationScope(command=command, args=dict(args or {}), target=dict(target or {}))
        started = time.monotonic()
        timestamp = datetime.now(UTC).isoformat()
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("completed")
            duration_ms = int((time.monotonic() - started) * 1000)
            self._write(
                {
                    "timestamp": timestamp,
                    "command": scope.command,
                    "args": _sanitize(scope.args),
                    "target": _sanitize(scope.target),
                    "steps": scope.steps,
                    "lock_wait_ms": scope.lock_wait_ms,
                    "duration_ms": duration_ms,
                    "context": {"deployctl_version": __version__, "pid": os.getpid()},
                    "result": scope.result,
                }
            )

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
        except OSError:
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]

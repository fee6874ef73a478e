"""Run stages in order and roll back everything on the first failure.

The executor is a small state machine::

    PLANNING -> RUNNING -> COMMITTED
                        -> ROLLED_BACK

Every successfully applied action is appended to the registry's run log
before the next one starts; an action that fails reverts its own partial
work before raising. Any exception escaping a stage, including an
interrupt, leaves the run uncommitted; a single ``finally`` block then undoes
the logged actions in strict reverse order and the original exception is
re-raised. Failures while undoing are collected as warnings, never raised.
"""
from __future__ import annotations

import signal
import threading
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from types import FrameType
from typing import Any

from ..actions import Action, UndoStatus
from ..errors import RunInterrupted, UndoWarning
from ..logging import OperationScope
from ..models import ResourceDescriptor
from ..state.resources import DeploymentRecord, ResourceRegistry
from .stage import Stage, check_label

HANDLED_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGTERM, signal.SIGHUP)


class PipelineState(str, Enum):
    """Lifecycle of one executor run."""

    PLANNING = "planning"
    RUNNING = "running"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class RollbackStatus(str, Enum):
    """What happened to one logged action during rollback or teardown."""

    ROLLED_BACK = "rolled_back"
    ALREADY_ABSENT = "already_absent"
    SKIPPED = "skipped"
    FAILED = "failed"


_UNDO_TO_ROLLBACK = {
    UndoStatus.REVERTED: RollbackStatus.ROLLED_BACK,
    UndoStatus.ABSENT: RollbackStatus.ALREADY_ABSENT,
    UndoStatus.SKIPPED: RollbackStatus.SKIPPED,
}


@dataclass(frozen=True)
class RollbackEntry:
    """Rollback outcome for one resource."""

    descriptor: ResourceDescriptor
    status: RollbackStatus
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a serialisable representation."""
        return {
            "resource": self.descriptor.label(),
            "locator": self.descriptor.locator,
            "status": self.status.value,
            "detail": self.detail,
        }


@dataclass
class RunReport:
    """Outcome of one pipeline run, successful or not."""

    deployment: str
    state: PipelineState = PipelineState.PLANNING
    applied: list[ResourceDescriptor] = field(default_factory=list)
    changed: int = 0
    rollback: list[RollbackEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: BaseException | None = None
    summary: dict[str, Any] = field(default_factory=dict)
    record: DeploymentRecord | None = None

    @property
    def committed(self) -> bool:
        """Return True when the run reached ``COMMITTED``."""
        return self.state is PipelineState.COMMITTED

    @property
    def rolled_back(self) -> list[RollbackEntry]:
        """Return resources that were cleanly reversed or already gone."""
        return [
            entry
            for entry in self.rollback
            if entry.status in (RollbackStatus.ROLLED_BACK, RollbackStatus.ALREADY_ABSENT)
        ]

    @property
    def manual_cleanup(self) -> list[RollbackEntry]:
        """Return resources whose undo failed and need an operator."""
        return [entry for entry in self.rollback if entry.status is RollbackStatus.FAILED]

    def to_dict(self) -> dict[str, Any]:
        """Return a serialisable representation for the operations log."""
        return {
            "deployment": self.deployment,
            "state": self.state.value,
            "applied": [descriptor.label() for descriptor in self.applied],
            "changed": self.changed,
            "rollback": [entry.to_dict() for entry in self.rollback],
            "warnings": list(self.warnings),
            "error": str(self.error) if self.error is not None else None,
            "summary": dict(self.summary),
        }


class PipelineExecutor:
    """Apply stages for one deployment with exact, reverse-order rollback."""

    def __init__(
        self,
        deployment: str,
        stages: Sequence[Stage],
        registry: ResourceRegistry,
        *,
        operation: OperationScope | None = None,
        metadata: Mapping[str, Any] | Callable[[], Mapping[str, Any]] | None = None,
        summary: Mapping[str, Any] | Callable[[], Mapping[str, Any]] | None = None,
        handle_signals: bool = True,
    ) -> None:
        """Prepare a run; nothing on the host is touched until :meth:`run`."""
        self.deployment = deployment
        self.stages = list(stages)
        self.registry = registry
        self.operation = operation
        self.metadata = metadata
        self.summary = summary
        self.handle_signals = handle_signals
        self.state = PipelineState.PLANNING
        self.report = RunReport(deployment=deployment)
        self._rolling_back = False

    def run(self) -> RunReport:
        """Run every stage, then commit; roll back and re-raise on failure."""
        if self.state is not PipelineState.PLANNING:
            raise RuntimeError(f"Pipeline for '{self.deployment}' has already run.")
        previous = self.registry.load(self.deployment)
        if previous is not None:
            self._step(
                "registry.previous",
                "info",
                f"{len(previous.resources)} resource(s) committed at {previous.timestamp}",
            )
        self.registry.clear()
        self.state = PipelineState.RUNNING
        self.report.state = self.state

        with self._signal_guard():
            try:
                for stage in self.stages:
                    self._run_stage(stage)
                self.report.record = self.registry.commit(
                    self.deployment, metadata=_materialise(self.metadata)
                )
                self.state = PipelineState.COMMITTED
            except BaseException as exc:
                self.report.error = exc
                raise
            finally:
                if self.state is not PipelineState.COMMITTED:
                    self._rollback()
                self.report.state = self.state

        self.report.summary = _materialise(self.summary)
        self._finalize_actions()
        self._step("registry.commit", "success", f"{len(self.report.applied)} action(s)")
        return self.report

    # ------------------------------------------------------------------
    def _run_stage(self, stage: Stage) -> None:
        for action in stage.actions:
            try:
                changed = action.apply()
            except BaseException:
                if action.abandon_error is not None:
                    self._record_rollback(
                        action.descriptor, RollbackStatus.FAILED, action.abandon_error
                    )
                    self.report.warnings.append(
                        f"{action.descriptor.label()}: {action.abandon_error}"
                    )
                raise
            self.registry.record(action, stage=stage.name)
            self.report.applied.append(action.descriptor)
            if changed:
                self.report.changed += 1
            self.report.warnings.extend(action.warnings)
            self._step(
                f"{stage.name}.{action.descriptor.label()}",
                "success" if changed else "unchanged",
                action.descriptor.locator,
            )
            for warning in action.warnings:
                self._step(f"{stage.name}.{action.descriptor.label()}", "warning", warning)
        for check in stage.checks:
            check()
            self._step(f"{stage.name}.check.{check_label(check)}", "success")

    def _rollback(self) -> None:
        self._rolling_back = True
        try:
            for entry in reversed(self.registry.entries):
                self._rollback_one(entry.action)
        finally:
            self.registry.clear()
            self.state = PipelineState.ROLLED_BACK
            self._rolling_back = False

    def _rollback_one(self, action: Action) -> None:
        descriptor = action.descriptor
        try:
            status = action.undo()
        except UndoWarning as warning:
            self._record_rollback(descriptor, RollbackStatus.FAILED, str(warning.cause))
            self.report.warnings.append(str(warning))
            return
        except Exception as exc:  # noqa: BLE001 - rollback must reach every action
            detail = f"{type(exc).__name__}: {exc}"
            self._record_rollback(descriptor, RollbackStatus.FAILED, detail)
            self.report.warnings.append(f"could not undo {descriptor.label()}: {detail}")
            return
        self._record_rollback(descriptor, _UNDO_TO_ROLLBACK[status])

    def _record_rollback(
        self,
        descriptor: ResourceDescriptor,
        status: RollbackStatus,
        detail: str | None = None,
    ) -> None:
        self.report.rollback.append(RollbackEntry(descriptor, status, detail))
        step_status = "error" if status is RollbackStatus.FAILED else "success"
        self._step(f"rollback.{descriptor.label()}", step_status, detail or status.value)

    def _finalize_actions(self) -> None:
        for entry in self.registry.entries:
            try:
                entry.action.finalize()
            except OSError as exc:
                self.report.warnings.append(
                    f"cleanup after commit failed for {entry.action.descriptor.label()}: {exc}"
                )

    def _step(self, name: str, status: str, detail: object = None) -> None:
        if self.operation is not None:
            self.operation.add_step(name, status=status, detail=detail)

    def _on_signal(self, signum: int, _frame: FrameType | None) -> None:
        if self._rolling_back:
            return
        raise RunInterrupted(signum)

    @contextmanager
    def _signal_guard(self) -> Iterator[None]:
        if not self.handle_signals or threading.current_thread() is not threading.main_thread():
            yield
            return
        previous = {sig: signal.getsignal(sig) for sig in HANDLED_SIGNALS}
        for sig in HANDLED_SIGNALS:
            signal.signal(sig, self._on_signal)
        try:
            yield
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)


def _materialise(
    value: Mapping[str, Any] | Callable[[], Mapping[str, Any]] | None,
) -> dict[str, Any]:
    if callable(value):
        value = value()
    return dict(value or {})


__all__ = [
    "PipelineExecutor",
    "PipelineState",
    "RollbackEntry",
    "RollbackStatus",
    "RunReport",
]

"""Reverse a committed deployment from its registry record.

The teardown replays ``undo()`` for every recorded action in reverse order,
whether or not the current process applied it. Resources that have already
disappeared count as success. Destructive resources (databases, packages,
certificates) are only removed after a per-resource confirmation, and shared
host services are never touched.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from ..actions import Action, TeardownPolicy, Toolkit, UndoStatus, action_from_record
from ..errors import UndoWarning
from ..logging import OperationScope
from ..models import ResourceDescriptor, ResourceKind
from ..providers import DatabaseError, PackageError
from ..state.resources import DeploymentRecord, ResourceRecord, ResourceRegistry
from .executor import RollbackEntry, RollbackStatus

_UNDO_TO_STATUS = {
    UndoStatus.REVERTED: RollbackStatus.ROLLED_BACK,
    UndoStatus.ABSENT: RollbackStatus.ALREADY_ABSENT,
    UndoStatus.SKIPPED: RollbackStatus.SKIPPED,
}

_STATUS_WORDS = {
    RollbackStatus.ROLLED_BACK: "removed",
    RollbackStatus.ALREADY_ABSENT: "already absent",
    RollbackStatus.SKIPPED: "kept",
    RollbackStatus.FAILED: "failed",
}


@dataclass
class TeardownReport:
    """Outcome of one teardown."""

    deployment: str
    record_found: bool = False
    entries: list[RollbackEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    record_removed: bool = False

    def _with(self, *statuses: RollbackStatus) -> list[RollbackEntry]:
        return [entry for entry in self.entries if entry.status in statuses]

    @property
    def removed(self) -> list[RollbackEntry]:
        """Return resources this teardown removed."""
        return self._with(RollbackStatus.ROLLED_BACK)

    @property
    def already_absent(self) -> list[RollbackEntry]:
        """Return resources that were gone before the teardown reached them."""
        return self._with(RollbackStatus.ALREADY_ABSENT)

    @property
    def kept(self) -> list[RollbackEntry]:
        """Return resources deliberately left in place."""
        return self._with(RollbackStatus.SKIPPED)

    @property
    def failed(self) -> list[RollbackEntry]:
        """Return resources that need manual cleanup."""
        return self._with(RollbackStatus.FAILED)

    @property
    def succeeded(self) -> bool:
        """Return True when nothing failed."""
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        """Return a serialisable representation."""
        return {
            "deployment": self.deployment,
            "record_found": self.record_found,
            "record_removed": self.record_removed,
            "entries": [entry.to_dict() for entry in self.entries],
            "warnings": list(self.warnings),
        }


def status_word(status: RollbackStatus) -> str:
    """Return the operator-facing word for a teardown status."""
    return _STATUS_WORDS[status]


class TeardownPipeline:
    """Undo a committed deployment, tolerating partial prior cleanup."""

    def __init__(
        self,
        registry: ResourceRegistry,
        toolkit: Toolkit,
        *,
        operation: OperationScope | None = None,
    ) -> None:
        """Bind the teardown to the registry and the providers it undoes through."""
        self.registry = registry
        self.toolkit = toolkit
        self.operation = operation

    def run(
        self,
        deployment: str,
        *,
        extra_databases: Iterable[str] = (),
        extra_packages: Iterable[str] = (),
    ) -> TeardownReport:
        """Tear down *deployment* and any operator-named databases or packages.

        The registry record is deleted when every entry was removed, found
        absent or deliberately kept. Otherwise it is narrowed to the failed
        entries so a later teardown can retry them.
        """
        report = TeardownReport(deployment=deployment)
        record = self.registry.load(deployment)
        failed_records: list[ResourceRecord] = []
        if record is None:
            report.warnings.append(
                f"No registry record for '{deployment}'; nothing recorded to undo."
            )
            self._step("registry.load", "warning", "record missing")
        else:
            report.record_found = True
            self._step("registry.load", "success", f"{len(record.resources)} resource(s)")
            for resource in reversed(record.resources):
                entry = self._undo_record(resource)
                report.entries.append(entry)
                if entry.status is RollbackStatus.FAILED:
                    failed_records.append(resource)
                    report.warnings.append(f"{resource.descriptor.label()}: {entry.detail}")

        extras = [self._drop_database(name) for name in _unique(extra_databases)]
        extras += [self._purge_package(package) for package in _unique(extra_packages)]
        for entry in extras:
            report.entries.append(entry)
            if entry.status is RollbackStatus.FAILED:
                report.warnings.append(f"{entry.descriptor.label()}: {entry.detail}")

        if record is not None:
            if failed_records:
                self.registry.save(_narrowed(record, failed_records))
                self._step("registry.save", "warning", f"{len(failed_records)} failed resource(s) kept")
            else:
                report.record_removed = self.registry.delete(deployment)
                self._step("registry.delete", "success")
        return report

    # ------------------------------------------------------------------
    def _undo_record(self, resource: ResourceRecord) -> RollbackEntry:
        descriptor = resource.descriptor
        try:
            action = action_from_record(resource, self.toolkit)
        except (TypeError, ValueError) as exc:
            return self._entry(descriptor, RollbackStatus.FAILED, f"cannot rebuild action: {exc}")

        if action.teardown_policy is TeardownPolicy.KEEP:
            return self._entry(descriptor, RollbackStatus.SKIPPED, "shared host resource")
        if not action.changed:
            return self._entry(descriptor, RollbackStatus.SKIPPED, "not created by this deployment")
        if action.teardown_policy is TeardownPolicy.CONFIRM and not self._confirm(action):
            return self._entry(descriptor, RollbackStatus.SKIPPED, "kept at operator request")

        try:
            status = action.undo()
        except UndoWarning as warning:
            return self._entry(descriptor, RollbackStatus.FAILED, str(warning.cause))
        except Exception as exc:  # noqa: BLE001 - teardown must reach every entry
            return self._entry(descriptor, RollbackStatus.FAILED, f"{type(exc).__name__}: {exc}")
        return self._entry(descriptor, _UNDO_TO_STATUS[status])

    def _confirm(self, action: Action) -> bool:
        return bool(self.toolkit.confirm(action.confirm_message()))

    def _drop_database(self, name: str) -> RollbackEntry:
        descriptor = ResourceDescriptor(ResourceKind.DATABASE, name, name)
        if not self.toolkit.confirm(f"Drop database '{name}'? This cannot be undone."):
            return self._entry(descriptor, RollbackStatus.SKIPPED, "kept at operator request")
        try:
            dropped = self.toolkit.postgres.drop_database(name)
        except DatabaseError as exc:
            return self._entry(descriptor, RollbackStatus.FAILED, str(exc))
        status = RollbackStatus.ROLLED_BACK if dropped else RollbackStatus.ALREADY_ABSENT
        return self._entry(descriptor, status)

    def _purge_package(self, package: str) -> RollbackEntry:
        descriptor = ResourceDescriptor(ResourceKind.PACKAGE, package, package)
        if not self.toolkit.confirm(f"Purge package '{package}'?"):
            return self._entry(descriptor, RollbackStatus.SKIPPED, "kept at operator request")
        try:
            if not self.toolkit.packages.is_installed(package):
                return self._entry(descriptor, RollbackStatus.ALREADY_ABSENT)
            self.toolkit.packages.purge([package])
        except PackageError as exc:
            return self._entry(descriptor, RollbackStatus.FAILED, str(exc))
        return self._entry(descriptor, RollbackStatus.ROLLED_BACK)

    def _entry(
        self,
        descriptor: ResourceDescriptor,
        status: RollbackStatus,
        detail: str | None = None,
    ) -> RollbackEntry:
        step_status = {
            RollbackStatus.FAILED: "error",
            RollbackStatus.SKIPPED: "skipped",
        }.get(status, "success")
        self._step(f"teardown.{descriptor.label()}", step_status, detail or status_word(status))
        return RollbackEntry(descriptor, status, detail)

    def _step(self, name: str, status: str, detail: object = None) -> None:
        if self.operation is not None:
            self.operation.add_step(name, status=status, detail=detail)


def _narrowed(record: DeploymentRecord, keep: list[ResourceRecord]) -> DeploymentRecord:
    keys = {resource.key for resource in keep}
    return replace(
        record,
        resources=tuple(res for res in record.resources if res.key in keys),
        metadata={**record.metadata, "teardown": "incomplete"},
    )


def _unique(values: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.append(value)
    return seen


__all__ = ["TeardownPipeline", "TeardownReport", "status_word"]

"""Ledger of applied actions for a run and of committed deployments.

During a run the :class:`ResourceRegistry` keeps an append-only, in-memory
log of every action the executor applied, in order. Rollback walks that log
backwards. When the run commits, the log is persisted through the
:class:`~deployctl.state.registry.StateRegistry` keyed by deployment name so a
later teardown, possibly from another process, can reverse it.
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from ..models import ResourceDescriptor
from .registry import StateRegistry, StateRegistryError

RECORD_VERSION = 1


class LedgerAction(Protocol):
    """Structural type of the actions the registry can log."""

    descriptor: ResourceDescriptor
    changed: bool

    def to_record(self) -> dict[str, Any]:
        """Return the persisted form of the action."""


@dataclass(frozen=True)
class ResourceRecord:
    """Persisted form of one applied action."""

    descriptor: ResourceDescriptor
    action: str
    stage: str
    changed: bool
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str, str]:
        """Return the identity used to merge records across runs."""
        return (self.action, self.descriptor.kind.value, self.descriptor.identifier)

    def to_dict(self) -> dict[str, Any]:
        """Return a serialisable representation."""
        return {
            **self.descriptor.to_dict(),
            "action": self.action,
            "stage": self.stage,
            "changed": self.changed,
            "params": dict(self.params),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ResourceRecord:
        """Rebuild a record from :meth:`to_dict` output."""
        params = payload.get("params") or {}
        if not isinstance(params, Mapping):
            raise ValueError(f"Resource params must be a mapping: {params!r}")
        return cls(
            descriptor=ResourceDescriptor.from_dict(payload),
            action=str(payload.get("action", "")),
            stage=str(payload.get("stage", "")),
            changed=bool(payload.get("changed", False)),
            params=dict(params),
        )


@dataclass(frozen=True)
class DeploymentRecord:
    """Durable record of what exists on this host for one deployment."""

    deployment_name: str
    timestamp: str
    resources: tuple[ResourceRecord, ...]
    metadata: dict[str, Any] = field(default_factory=dict)

    def descriptors(self) -> list[ResourceDescriptor]:
        """Return the descriptors in application order."""
        return [resource.descriptor for resource in self.resources]

    def to_dict(self) -> dict[str, Any]:
        """Return a serialisable representation."""
        return {
            "version": RECORD_VERSION,
            "deployment_name": self.deployment_name,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
            "resources": [resource.to_dict() for resource in self.resources],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> DeploymentRecord:
        """Rebuild a record, skipping resource entries that cannot be parsed."""
        raw_resources = payload.get("resources") or []
        resources: list[ResourceRecord] = []
        if isinstance(raw_resources, Sequence):
            for item in raw_resources:
                if not isinstance(item, Mapping):
                    continue
                try:
                    resources.append(ResourceRecord.from_dict(item))
                except ValueError:
                    continue
        metadata = payload.get("metadata") or {}
        return cls(
            deployment_name=str(payload.get("deployment_name", "")),
            timestamp=str(payload.get("timestamp", "")),
            resources=tuple(resources),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        )


@dataclass(frozen=True)
class LoggedAction:
    """One entry of the in-memory run log."""

    stage: str
    action: LedgerAction


class ResourceRegistry:
    """Append-only run log plus access to committed deployment records."""

    def __init__(self, store: StateRegistry) -> None:
        """Bind the registry to its persistent store."""
        self._store = store
        self._log: list[LoggedAction] = []

    @property
    def store(self) -> StateRegistry:
        """Return the underlying state registry."""
        return self._store

    # Run log ------------------------------------------------------------
    def record(self, action: LedgerAction, *, stage: str) -> None:
        """Append *action* to the run log."""
        self._log.append(LoggedAction(stage=stage, action=action))

    @property
    def entries(self) -> tuple[LoggedAction, ...]:
        """Return the run log in application order."""
        return tuple(self._log)

    def clear(self) -> None:
        """Forget the current run log."""
        self._log.clear()

    # Committed records ----------------------------------------------------
    def commit(
        self,
        deployment: str,
        *,
        metadata: Mapping[str, Any] | None = None,
    ) -> DeploymentRecord:
        """Persist the run log for *deployment* and return the stored record.

        Resources from an earlier commit that this run did not touch are kept
        ahead of the current run's resources so a teardown still finds them.
        When this run found a resource already in place (``changed`` false) but
        an earlier commit created it, the earlier entry is kept so ownership
        survives idempotent re-runs.
        """
        current = [
            ResourceRecord.from_dict({**entry.action.to_record(), "stage": entry.stage})
            for entry in self._log
        ]
        current_keys = {resource.key for resource in current}
        previous = self.load(deployment)
        carried: list[ResourceRecord] = []
        if previous is not None:
            owned = {res.key: res for res in previous.resources if res.changed}
            current = [
                owned[res.key] if not res.changed and res.key in owned else res
                for res in current
            ]
            carried = [res for res in previous.resources if res.key not in current_keys]

        merged_metadata: dict[str, Any] = dict(previous.metadata) if previous else {}
        merged_metadata.update(dict(metadata or {}))
        record = DeploymentRecord(
            deployment_name=deployment,
            timestamp=datetime.now(UTC).isoformat(),
            resources=tuple(carried + current),
            metadata=merged_metadata,
        )
        self._store.write_deployment(deployment, record.to_dict())
        return record

    def save(self, record: DeploymentRecord) -> None:
        """Overwrite the stored record (used by teardown for partial cleanup)."""
        self._store.write_deployment(record.deployment_name, record.to_dict())

    def load(self, deployment: str) -> DeploymentRecord | None:
        """Return the committed record for *deployment*, if any."""
        raw = self._store.read_deployment(deployment)
        if raw is None:
            return None
        record = DeploymentRecord.from_dict(raw)
        if record.deployment_name and record.deployment_name != deployment:
            raise StateRegistryError(
                f"Registry record for '{deployment}' names '{record.deployment_name}'."
            )
        return record

    def delete(self, deployment: str) -> bool:
        """Delete the committed record for *deployment*."""
        return self._store.remove_deployment(deployment)

    def list(self) -> list[DeploymentRecord]:
        """Return all committed records sorted by deployment name."""
        records: list[DeploymentRecord] = []
        for name in self._store.list_deployments():
            record = self.load(name)
            if record is not None:
                records.append(record)
        return records


__all__ = [
    "DeploymentRecord",
    "LedgerAction",
    "LoggedAction",
    "ResourceRecord",
    "ResourceRegistry",
]

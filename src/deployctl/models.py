"""Value objects shared by the planner, executor and teardown pipeline."""
from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .errors import PlanningError

_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,62}$")
_DOMAIN_PATTERN = re.compile(
    r"^(?=.{1,253}$)(?!-)[a-z0-9-]{1,63}(?<!-)(\.(?!-)[a-z0-9-]{1,63}(?<!-))*$"
)
_DATABASE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_$-]{0,62}$")


class ResourceKind(str, Enum):
    """Kinds of host resources a deployment can occupy."""

    PACKAGE = "package"
    DATABASE = "database"
    SERVICE_UNIT = "service_unit"
    PROXY_CONFIG = "proxy_config"
    CERTIFICATE = "certificate"
    DIRECTORY = "directory"
    RENDERED_FILE = "rendered_file"


@dataclass(frozen=True)
class ResourceDescriptor:
    """Immutable record naming one provisionable unit."""

    kind: ResourceKind
    identifier: str
    locator: str

    def label(self) -> str:
        """Return ``kind:identifier`` for logs and summaries."""
        return f"{self.kind.value}:{self.identifier}"

    def to_dict(self) -> dict[str, str]:
        """Return a serialisable representation."""
        return {
            "kind": self.kind.value,
            "identifier": self.identifier,
            "locator": self.locator,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> ResourceDescriptor:
        """Rebuild a descriptor from :meth:`to_dict` output."""
        try:
            kind = ResourceKind(str(payload["kind"]))
            identifier = str(payload["identifier"])
            locator = str(payload.get("locator", ""))
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Invalid resource descriptor: {dict(payload)!r}") from exc
        return cls(kind=kind, identifier=identifier, locator=locator)


@dataclass(frozen=True)
class FrontendDeployment:
    """Static or single-page frontend served by nginx from the web root."""

    name: str
    domains: tuple[str, ...]
    source_dir: Path
    spa: bool = True

    def __post_init__(self) -> None:
        """Validate the identifiers the derived resource names depend on."""
        validate_name(self.name)
        if not self.domains:
            raise PlanningError("Frontend deployment requires at least one domain.")
        for domain in self.domains:
            validate_domain(domain)

    @property
    def primary_domain(self) -> str:
        """Return the domain that owns the web root and certificate."""
        return self.domains[0]


@dataclass(frozen=True)
class Deployment:
    """One named backend deployment on this host."""

    name: str
    domains: tuple[str, ...]
    project_path: Path
    wsgi_module: str
    database_name: str
    database_password: str = field(repr=False)
    env_content: str | None = field(default=None, repr=False)
    frontend: FrontendDeployment | None = None

    def __post_init__(self) -> None:
        """Validate the identifiers the derived resource names depend on."""
        validate_name(self.name)
        if not self.domains:
            raise PlanningError("Deployment requires at least one domain.")
        for domain in self.domains:
            validate_domain(domain)
        if not self.wsgi_module.strip():
            raise PlanningError("WSGI module must be a non-empty string.")
        if not _DATABASE_PATTERN.match(self.database_name):
            raise PlanningError(f"Invalid database name '{self.database_name}'.")
        if not self.database_password:
            raise PlanningError("Database password must not be empty.")
        if self.frontend is not None and self.frontend.name == self.name:
            raise PlanningError("Frontend name must differ from the backend name.")

    @property
    def primary_domain(self) -> str:
        """Return the domain used for verification and certificate naming."""
        return self.domains[0]


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of one bounded verification probe run."""

    url: str
    attempt_count: int
    last_status: int | None
    succeeded: bool
    last_error: str | None = None

    def describe(self) -> str:
        """Return a one-line human summary."""
        status = self.last_status if self.last_status is not None else "no response"
        outcome = "ok" if self.succeeded else "failed"
        detail = f"{self.url} {outcome} after {self.attempt_count} attempt(s) (last: {status})"
        if self.last_error and not self.succeeded:
            detail += f": {self.last_error}"
        return detail


def validate_name(value: str) -> str:
    """Return *value* when it is usable as a deployment name."""
    if not _NAME_PATTERN.match(value):
        raise PlanningError(
            f"Invalid deployment name '{value}'. Use lowercase letters, digits, '-' or '_' "
            "(max 63 characters, starting with a letter or digit)."
        )
    return value


def validate_domain(value: str) -> str:
    """Return *value* when it is a syntactically valid hostname."""
    if not _DOMAIN_PATTERN.match(value):
        raise PlanningError(f"Invalid domain '{value}'.")
    return value


__all__ = [
    "Deployment",
    "FrontendDeployment",
    "ResourceDescriptor",
    "ResourceKind",
    "VerificationResult",
    "validate_domain",
    "validate_name",
]

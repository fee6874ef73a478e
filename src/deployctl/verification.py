"""Bounded health checks that gate commit versus rollback.

:class:`VerificationProbe` polls one URL with a fixed retry budget. The
check classes wrap the probe and the service and database checks into the
callables a :class:`~deployctl.pipeline.stage.Stage` runs after its actions.
"""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from .config import VerificationConfig
from .errors import ActionError, VerificationTimeout
from .models import ResourceDescriptor, VerificationResult
from .providers import DatabaseError, PostgresProvider, SystemdProvider


@dataclass
class VerificationProbe:
    """Poll a URL until it answers with an accepted status code.

    Each attempt performs one request with its own timeout. Redirects are
    not followed so a 301/302 counts as the answer. The delay is slept only
    between attempts, multiplied by ``backoff`` after each failed one.
    """

    attempts: int = 5
    delay: float = 2.0
    timeout: float = 10.0
    success_statuses: frozenset[int] = frozenset({200, 301, 302})
    initial_delay: float = 0.0
    backoff: float = 1.0
    transport: httpx.BaseTransport | None = None
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.success_statuses = frozenset(self.success_statuses)

    @classmethod
    def from_config(
        cls,
        config: VerificationConfig,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> VerificationProbe:
        """Build a probe from the ``verification`` configuration section."""
        return cls(
            attempts=config.attempts,
            delay=config.delay,
            timeout=config.timeout,
            success_statuses=frozenset(config.success_statuses),
            initial_delay=config.initial_delay,
            backoff=config.backoff,
            transport=transport,
            sleep=sleep,
        )

    def check(self, url: str) -> VerificationResult:
        """Probe *url* and return the outcome; never raises for HTTP failures."""
        last_status: int | None = None
        last_error: str | None = None
        delay = self.delay
        if self.initial_delay:
            self.sleep(self.initial_delay)
        with httpx.Client(
            timeout=self.timeout,
            follow_redirects=False,
            transport=self.transport,
        ) as client:
            for attempt in range(1, self.attempts + 1):
                try:
                    response = client.get(url)
                except httpx.HTTPError as exc:
                    last_status = None
                    last_error = f"{type(exc).__name__}: {exc}"
                else:
                    last_status = response.status_code
                    last_error = None
                    if last_status in self.success_statuses:
                        return VerificationResult(url, attempt, last_status, True)
                if attempt < self.attempts:
                    self.sleep(delay)
                    delay *= self.backoff
        return VerificationResult(url, self.attempts, last_status, False, last_error)


class EndpointCheck:
    """Stage check raising :class:`VerificationTimeout` when a URL never answers."""

    def __init__(self, probe: VerificationProbe, url: str | Callable[[], str]) -> None:
        """Store the probe and the URL (or a callable resolving it at run time)."""
        self.probe = probe
        self._url = url
        self.result: VerificationResult | None = None

    @property
    def url(self) -> str:
        """Return the URL the check will probe."""
        return self._url() if callable(self._url) else self._url

    @property
    def name(self) -> str:
        """Return a label for logs."""
        return f"http:{self.url}"

    def __call__(self) -> VerificationResult:
        self.result = self.probe.check(self.url)
        if not self.result.succeeded:
            raise VerificationTimeout(self.result)
        return self.result


class ServiceCheck:
    """Stage check that a unit is active and its socket has appeared."""

    def __init__(
        self,
        systemd: SystemdProvider,
        descriptor: ResourceDescriptor,
        *,
        unit: str,
        socket_path: Path | None = None,
        attempts: int = 5,
        delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Configure the unit, its socket and how long to wait for them."""
        self.systemd = systemd
        self.descriptor = descriptor
        self.unit = unit
        self.socket_path = socket_path
        self.attempts = max(1, attempts)
        self.delay = delay
        self.sleep = sleep

    @property
    def name(self) -> str:
        """Return a label for logs."""
        return f"service:{self.unit}"

    def __call__(self) -> None:
        for attempt in range(1, self.attempts + 1):
            if self.systemd.is_active(self.unit) and (
                self.socket_path is None or self.socket_path.exists()
            ):
                return
            if attempt < self.attempts:
                self.sleep(self.delay)
        if not self.systemd.is_active(self.unit):
            problem = f"{self.unit} is not active"
        else:
            problem = f"{self.unit} is active but socket {self.socket_path} is missing"
        journal = self.systemd.logs(self.unit, lines=20)
        raise ActionError(self.descriptor, f"{problem}\n{journal}")


class DatabaseCheck:
    """Stage check that the application can log in to its database."""

    def __init__(
        self,
        postgres: PostgresProvider,
        descriptor: ResourceDescriptor,
        *,
        database: str,
        user: str,
        password: str,
    ) -> None:
        """Store the credentials the application will use."""
        self.postgres = postgres
        self.descriptor = descriptor
        self.database = database
        self.user = user
        self._password = password

    @property
    def name(self) -> str:
        """Return a label for logs."""
        return f"database:{self.database}"

    def __call__(self) -> None:
        try:
            self.postgres.check_connection(self.database, self.user, self._password)
        except DatabaseError as exc:
            raise ActionError(self.descriptor, f"connection check failed: {exc}") from exc


__all__ = [
    "DatabaseCheck",
    "EndpointCheck",
    "ServiceCheck",
    "VerificationProbe",
]

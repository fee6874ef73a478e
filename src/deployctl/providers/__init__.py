"""Narrow wrappers around the host tools deployctl drives."""
from __future__ import annotations

from .application import ApplicationError, ApplicationProvider
from .certbot import CertbotError, CertbotProvider
from .nginx import NginxError, NginxProvider
from .packages import AptProvider, PackageError
from .postgres import DatabaseError, PostgresProvider
from .systemd import SystemdError, SystemdProvider

PROVIDER_ERRORS: tuple[type[RuntimeError], ...] = (
    ApplicationError,
    CertbotError,
    DatabaseError,
    NginxError,
    PackageError,
    SystemdError,
)

__all__ = [
    "PROVIDER_ERRORS",
    "ApplicationError",
    "ApplicationProvider",
    "AptProvider",
    "CertbotError",
    "CertbotProvider",
    "DatabaseError",
    "NginxError",
    "NginxProvider",
    "PackageError",
    "PostgresProvider",
    "SystemdError",
    "SystemdProvider",
]

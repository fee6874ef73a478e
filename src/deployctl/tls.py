"""Inspect Let's Encrypt material already present on the host.

The certificate stage uses this to decide whether a live certificate can be
reinstalled into the nginx site instead of requesting a new one.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path

from cryptography import x509
from cryptography.x509.oid import NameOID


class CertificateState(Enum):
    """Classification of the live certificate for a lineage."""

    MISSING = "missing"
    VALID = "valid"
    EXPIRING = "expiring"
    MISMATCH = "mismatch"
    UNREADABLE = "unreadable"


@dataclass(frozen=True)
class TLSMaterial:
    """Paths of a certbot lineage under ``live_dir``."""

    certificate: Path
    key: Path
    chain: Path | None = None


@dataclass(frozen=True)
class CertificateReport:
    """What was found for one certificate lineage."""

    lineage: str
    state: CertificateState
    material: TLSMaterial
    names: tuple[str, ...] = ()
    not_valid_after: datetime | None = None
    message: str = ""

    @property
    def reusable(self) -> bool:
        """Return True when the live certificate can be reinstalled as-is."""
        return self.state is CertificateState.VALID

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation of the report."""
        return {
            "lineage": self.lineage,
            "state": self.state.value,
            "certificate": str(self.material.certificate),
            "key": str(self.material.key),
            "names": list(self.names),
            "not_valid_after": (
                self.not_valid_after.isoformat() if self.not_valid_after else None
            ),
            "message": self.message,
        }


class TLSInspector:
    """Look up and classify certbot lineages."""

    def __init__(self, live_dir: Path, renew_before_days: int = 30) -> None:
        """Store where certbot keeps live lineages and the renewal window."""
        self._live_dir = live_dir
        self._renew_before = timedelta(days=renew_before_days)

    def material_for(self, lineage: str) -> TLSMaterial:
        """Return the expected material paths for *lineage*."""
        live = self._live_dir / lineage
        chain = live / "chain.pem"
        return TLSMaterial(
            certificate=live / "fullchain.pem",
            key=live / "privkey.pem",
            chain=chain if chain.exists() else None,
        )

    def inspect(
        self,
        lineage: str,
        domains: Sequence[str],
        *,
        now: datetime | None = None,
    ) -> CertificateReport:
        """Classify the live certificate for *lineage* against *domains*."""
        now = now or datetime.now(UTC)
        material = self.material_for(lineage)
        if not material.certificate.exists() or not material.key.exists():
            return CertificateReport(lineage, CertificateState.MISSING, material)
        try:
            certificate = _load_certificate(material.certificate)
        except (OSError, ValueError) as exc:
            return CertificateReport(
                lineage,
                CertificateState.UNREADABLE,
                material,
                message=f"Failed to load certificate: {exc}",
            )

        names = _certificate_names(certificate)
        not_after = _as_utc(certificate.not_valid_after_utc)
        missing = [domain for domain in domains if not _covers(names, domain)]
        if missing:
            return CertificateReport(
                lineage,
                CertificateState.MISMATCH,
                material,
                names=names,
                not_valid_after=not_after,
                message=f"Certificate does not cover: {', '.join(missing)}",
            )
        if not_after - now <= self._renew_before:
            return CertificateReport(
                lineage,
                CertificateState.EXPIRING,
                material,
                names=names,
                not_valid_after=not_after,
                message=f"Certificate expires {not_after.isoformat()}",
            )
        return CertificateReport(
            lineage,
            CertificateState.VALID,
            material,
            names=names,
            not_valid_after=not_after,
        )


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _certificate_names(certificate: x509.Certificate) -> tuple[str, ...]:
    try:
        extension = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        attributes = certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        return tuple(str(attr.value).lower() for attr in attributes)
    return tuple(name.lower() for name in extension.value.get_values_for_type(x509.DNSName))


def _covers(names: Sequence[str], domain: str) -> bool:
    domain = domain.lower()
    for name in names:
        if name == domain:
            return True
        if name.startswith("*.") and domain.count(".") == name.count(".") and domain.endswith(
            name[1:]
        ):
            return True
    return False


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


__all__ = ["CertificateReport", "CertificateState", "TLSInspector", "TLSMaterial"]

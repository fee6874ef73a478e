"""Pytest configuration helpers and in-memory host fakes for the test suite."""

from __future__ import annotations

import shutil
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from deployctl.actions import Toolkit
from deployctl.providers import (
    ApplicationError,
    CertbotError,
    DatabaseError,
    NginxError,
    NginxProvider,
    SystemdError,
)
from deployctl.tls import TLSInspector


def write_lineage(
    live_dir: Path,
    lineage: str,
    *,
    names: Sequence[str] | None = None,
    common_name: str | None = None,
    valid_for: timedelta = timedelta(days=90),
) -> Path:
    """Write a self-signed ``fullchain.pem``/``privkey.pem`` pair like certbot does."""
    now = datetime.now(UTC)
    key = ec.generate_private_key(ec.SECP256R1())
    subject = issuer = x509.Name(
        [x509.NameAttribute(NameOID.COMMON_NAME, common_name or lineage)]
    )
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + valid_for)
    )
    if names is not None:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in names]),
            critical=False,
        )
    cert = builder.sign(key, hashes.SHA256())
    directory = live_dir / lineage
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "fullchain.pem").write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    (directory / "privkey.pem").write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return directory


class DummyResult:
    """Stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@dataclass
class FakePackages:
    """Apt stand-in tracking installed packages in memory."""

    installed: set[str] = field(default_factory=set)
    calls: list[tuple[str, tuple[str, ...]]] = field(default_factory=list)

    def is_installed(self, package: str) -> bool:
        return package in self.installed

    def missing(self, packages: Iterable[str]) -> list[str]:
        return [package for package in packages if package not in self.installed]

    def install(self, packages: Sequence[str]) -> None:
        self.calls.append(("install", tuple(packages)))
        self.installed.update(packages)

    def purge(self, packages: Sequence[str]) -> None:
        self.calls.append(("purge", tuple(packages)))
        self.installed.difference_update(packages)


@dataclass
class FakePostgres:
    """PostgreSQL stand-in with a set of database names."""

    databases: set[str] = field(default_factory=set)
    passwords: dict[str, str] = field(default_factory=dict)
    grants: list[tuple[str, str]] = field(default_factory=list)
    fail_create: bool = False
    fail_drop: bool = False
    connection_ok: bool = True

    def database_exists(self, name: str) -> bool:
        return name in self.databases

    def create_database(self, name: str, *, owner: str | None = None) -> None:
        if self.fail_create:
            raise DatabaseError(f"psql failed (exit 1): could not create {name}")
        self.databases.add(name)

    def drop_database(self, name: str) -> bool:
        if self.fail_drop:
            raise DatabaseError(f"psql failed (exit 1): database {name} is being accessed")
        if name not in self.databases:
            return False
        self.databases.discard(name)
        return True

    def set_password(self, user: str, password: str) -> None:
        self.passwords[user] = password

    def grant_all(self, database: str, user: str) -> None:
        self.grants.append((database, user))

    def check_connection(self, database: str, user: str, password: str) -> None:
        if not self.connection_ok or database not in self.databases:
            raise DatabaseError("psql failed (exit 2): connection refused")


@dataclass
class FakeSystemd:
    """Systemd stand-in keeping unit files on disk and state in memory."""

    systemd_dir: Path
    active: set[str] = field(default_factory=set)
    enabled: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)
    fail_start: bool = False
    sockets: dict[str, Path] = field(default_factory=dict)

    def unit_path(self, unit: str) -> Path:
        return self.systemd_dir / unit

    def read_unit(self, unit: str) -> str | None:
        path = self.unit_path(unit)
        return path.read_text(encoding="utf-8") if path.exists() else None

    def install_unit(self, unit: str, content: str) -> bool:
        if self.read_unit(unit) == content:
            return False
        self.systemd_dir.mkdir(parents=True, exist_ok=True)
        self.unit_path(unit).write_text(content, encoding="utf-8")
        self.calls.append(("daemon-reload", unit))
        return True

    def remove_unit(self, unit: str) -> bool:
        path = self.unit_path(unit)
        if not path.exists():
            return False
        path.unlink()
        return True

    def enable(self, unit: str) -> None:
        self.calls.append(("enable", unit))
        self.enabled.add(unit)

    def disable(self, unit: str) -> None:
        self.calls.append(("disable", unit))
        self.enabled.discard(unit)

    def start(self, unit: str) -> None:
        self.calls.append(("start", unit))
        if self.fail_start:
            raise SystemdError(f"systemctl start failed (exit 1): {unit} failed")
        self.active.add(unit)
        socket = self.sockets.get(unit)
        if socket is not None:
            socket.parent.mkdir(parents=True, exist_ok=True)
            socket.touch()

    def stop(self, unit: str) -> None:
        self.calls.append(("stop", unit))
        self.active.discard(unit)

    def restart(self, unit: str) -> None:
        self.calls.append(("restart", unit))
        self.active.add(unit)

    def is_active(self, unit: str) -> bool:
        return unit in self.active

    def is_enabled(self, unit: str) -> bool:
        return unit in self.enabled

    def unit_known(self, unit: str) -> bool:
        return self.unit_path(unit).exists() or unit in self.enabled or unit in self.active

    def logs(self, unit: str, *, lines: int = 20) -> str:
        return f"{unit}: worker failed to boot"

    def tmpfiles_create(self, config: Path) -> None:
        self.calls.append(("tmpfiles", str(config)))

    def daemon_reload(self) -> None:
        self.calls.append(("daemon-reload", ""))


@dataclass
class FakeCertbot:
    """Certbot stand-in writing self-signed lineages and editing sites like its installer."""

    live_dir: Path
    sites_available: Path | None = None
    lineages: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)
    fail_issue: bool = False

    def certificate_exists(self, cert_name: str) -> bool:
        return cert_name in self.lineages

    def _install(self, cert_name: str, domains: Sequence[str]) -> None:
        if self.sites_available is None or not self.sites_available.is_dir():
            return
        certificate = self.live_dir / cert_name / "fullchain.pem"
        for site in self.sites_available.iterdir():
            text = site.read_text(encoding="utf-8")
            if f" {domains[0]}" not in text or str(certificate) in text:
                continue
            text += (
                "server {\n"
                "    listen 443 ssl; # managed by Certbot\n"
                f"    server_name {' '.join(domains)};\n"
                f"    ssl_certificate {certificate}; # managed by Certbot\n"
                "}\n"
            )
            site.write_text(text, encoding="utf-8")

    def issue(
        self,
        cert_name: str,
        domains: Sequence[str],
        *,
        email: str | None,
        redirect: bool = True,
        force_renewal: bool = False,
    ) -> None:
        self.calls.append(("issue-force" if force_renewal else "issue", cert_name))
        if self.fail_issue:
            raise CertbotError("certbot failed (exit 1): DNS problem")
        write_lineage(self.live_dir, cert_name, names=list(domains))
        self.lineages.add(cert_name)
        self._install(cert_name, domains)

    def reinstall(
        self,
        cert_name: str,
        domains: Sequence[str],
        *,
        email: str | None,
        redirect: bool = True,
    ) -> None:
        self.calls.append(("reinstall", cert_name))
        self._install(cert_name, domains)

    def delete(self, cert_name: str) -> bool:
        self.calls.append(("delete", cert_name))
        if cert_name not in self.lineages:
            return False
        self.lineages.discard(cert_name)
        shutil.rmtree(self.live_dir / cert_name, ignore_errors=True)
        return True


@dataclass
class FakeApplication:
    """Application provider stand-in creating an empty virtualenv layout."""

    hooks: list[str] = field(default_factory=list)
    installs: list[tuple[str, ...]] = field(default_factory=list)
    fail_hook: str | None = None

    def create_venv(self, venv: Path) -> bool:
        python = venv / "bin" / "python"
        if python.exists():
            return False
        python.parent.mkdir(parents=True, exist_ok=True)
        python.write_text("", encoding="utf-8")
        return True

    def pip_install(
        self,
        venv: Path,
        *,
        requirements: Path | None = None,
        packages: Sequence[str] = (),
    ) -> None:
        self.installs.append(tuple(packages))

    def run_hook(
        self,
        venv: Path,
        project: Path,
        hook: str,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        if hook == self.fail_hook:
            raise ApplicationError(f"python {hook} failed (exit 1): boom")
        self.hooks.append(hook)


@dataclass
class FakeHost:
    """Bundle of fakes plus the toolkit wired to them."""

    root: Path
    packages: FakePackages
    postgres: FakePostgres
    systemd: FakeSystemd
    nginx: NginxProvider
    certbot: FakeCertbot
    application: FakeApplication
    nginx_calls: list[tuple[str, ...]]
    toolkit: Toolkit
    nginx_test_failures: list[str] = field(default_factory=list)

    @property
    def live_dir(self) -> Path:
        return self.root / "letsencrypt" / "live"


@pytest.fixture
def host(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeHost:
    """Return fakes for every provider; nginx is real but its binary is stubbed."""
    root = tmp_path / "host"
    nginx_calls: list[tuple[str, ...]] = []
    failures: list[str] = []

    def fake_run(self: NginxProvider, args: Sequence[str]) -> DummyResult:
        nginx_calls.append(tuple(args))
        if list(args) == ["-t"] and failures:
            raise NginxError(f"nginx -t failed (exit 1): {failures.pop(0)}")
        return DummyResult()

    monkeypatch.setattr(NginxProvider, "_run_nginx", fake_run)

    live_dir = root / "letsencrypt" / "live"
    packages = FakePackages()
    postgres = FakePostgres()
    systemd = FakeSystemd(root / "systemd")
    nginx = NginxProvider(
        sites_available=root / "nginx" / "sites-available",
        sites_enabled=root / "nginx" / "sites-enabled",
    )
    certbot = FakeCertbot(live_dir, sites_available=nginx.sites_available)
    application = FakeApplication()
    toolkit = Toolkit(
        packages=packages,  # type: ignore[arg-type]
        postgres=postgres,  # type: ignore[arg-type]
        systemd=systemd,  # type: ignore[arg-type]
        nginx=nginx,
        certbot=certbot,  # type: ignore[arg-type]
        application=application,  # type: ignore[arg-type]
        tls=TLSInspector(live_dir),
    )
    return FakeHost(
        root=root,
        packages=packages,
        postgres=postgres,
        systemd=systemd,
        nginx=nginx,
        certbot=certbot,
        application=application,
        nginx_calls=nginx_calls,
        toolkit=toolkit,
        nginx_test_failures=failures,
    )


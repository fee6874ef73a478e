"""Idempotent host mutations, each paired with its undo.

An :class:`Action` wraps exactly one external effect on one
:class:`~deployctl.models.ResourceDescriptor`. ``apply()`` is safe to call
when the resource is already in the desired state and reports whether it
changed anything. ``undo()`` reverses only what this action (or, for a
reconstructed action, a committed run) actually changed, and reports
"already absent" instead of failing when the resource is gone.

Concrete actions register themselves by name so the teardown pipeline can
rebuild them from a committed :class:`~deployctl.state.resources.ResourceRecord`
in a later process.
"""
from __future__ import annotations

import filecmp
import hashlib
import shutil
import stat
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, TypeVar

from .errors import ActionError, DeployError, UndoWarning
from .filesystem import apply_ownership, atomic_write_text, read_text_if_exists, remove_path
from .models import ResourceDescriptor
from .providers import (
    ApplicationProvider,
    AptProvider,
    CertbotError,
    CertbotProvider,
    NginxProvider,
    PostgresProvider,
    SystemdProvider,
)
from .state.resources import ResourceRecord
from .tls import CertificateState, TLSInspector

Confirm = Callable[[str], bool]


def decline(_: str) -> bool:
    """Confirmation callback that answers "no" to every question."""
    return False


class UndoStatus(str, Enum):
    """Outcome of reversing one action."""

    REVERTED = "reverted"
    ABSENT = "absent"
    SKIPPED = "skipped"


class TeardownPolicy(str, Enum):
    """How a teardown treats a committed resource."""

    UNDO = "undo"
    CONFIRM = "confirm"
    KEEP = "keep"


@dataclass(slots=True)
class Toolkit:
    """Providers and callbacks the actions act through."""

    packages: AptProvider
    postgres: PostgresProvider
    systemd: SystemdProvider
    nginx: NginxProvider
    certbot: CertbotProvider
    application: ApplicationProvider
    tls: TLSInspector
    confirm: Confirm = field(default=decline)


ACTION_TYPES: dict[str, type[Action]] = {}

_A = TypeVar("_A", bound="type[Action]")


def register_action(cls: _A) -> _A:
    """Class decorator making *cls* reconstructible from committed records."""
    if cls.name in ACTION_TYPES:
        raise TypeError(f"Duplicate action name: {cls.name}")
    ACTION_TYPES[cls.name] = cls
    return cls


def action_from_record(record: ResourceRecord, toolkit: Toolkit) -> Action:
    """Rebuild an applied action from its committed record."""
    try:
        cls = ACTION_TYPES[record.action]
    except KeyError as exc:
        raise ValueError(f"Unknown action '{record.action}' for {record.descriptor.label()}") from exc
    action = cls.from_params(record.descriptor, toolkit, record.params)
    action.applied = True
    action.changed = record.changed
    return action


class Action:
    """Base class for one idempotent external mutation."""

    name: ClassVar[str] = "action"
    teardown_policy: ClassVar[TeardownPolicy] = TeardownPolicy.UNDO

    def __init__(self, descriptor: ResourceDescriptor, toolkit: Toolkit) -> None:
        """Bind the action to its descriptor and providers."""
        self.descriptor = descriptor
        self.toolkit = toolkit
        self.applied = False
        self.changed = False
        self.warnings: list[str] = []
        self.abandon_error: str | None = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.descriptor.label()} applied={self.applied}>"

    def apply(self) -> bool:
        """Bring the resource to its desired state; return whether it changed.

        When ``_apply`` fails midway, whatever it had already changed is
        reverted before the error propagates, because a failed action is
        never logged and so never reached by the run's rollback. A failed
        revert is kept in :attr:`abandon_error` for the run report.
        """
        if self.applied:
            return self.changed
        try:
            self.changed = bool(self._apply())
        except DeployError:
            self._abandon()
            raise
        except (RuntimeError, OSError, UnicodeDecodeError) as exc:
            self._abandon()
            raise ActionError(self.descriptor, exc) from exc
        except BaseException:
            self._abandon()
            raise
        self.applied = True
        return self.changed

    def undo(self) -> UndoStatus:
        """Reverse :meth:`apply`; a no-op unless it applied a change."""
        if not self.applied or not self.changed:
            return UndoStatus.SKIPPED
        try:
            status = self._undo()
        except (RuntimeError, OSError) as exc:
            raise UndoWarning(self.descriptor, exc) from exc
        self.applied = False
        return status

    def finalize(self) -> None:
        """Drop any rollback material once the run has committed."""

    def confirm_message(self) -> str:
        """Return the teardown question for :attr:`TeardownPolicy.CONFIRM`."""
        return f"Remove {self.descriptor.label()} ({self.descriptor.locator})?"

    def record_params(self) -> dict[str, Any]:
        """Return the keyword arguments needed to rebuild this action."""
        return {}

    def to_record(self) -> dict[str, Any]:
        """Return the ledger form of the action."""
        return {
            **self.descriptor.to_dict(),
            "action": self.name,
            "changed": self.changed,
            "params": self.record_params(),
        }

    @classmethod
    def from_params(
        cls,
        descriptor: ResourceDescriptor,
        toolkit: Toolkit,
        params: Mapping[str, Any],
    ) -> Action:
        """Construct the action from :meth:`record_params` output."""
        return cls(descriptor, toolkit, **dict(params))

    def _apply(self) -> bool:
        raise NotImplementedError

    def _undo(self) -> UndoStatus:
        raise NotImplementedError

    def _discard_partial(self) -> None:
        """Revert the steps of a failed ``_apply`` that already took effect."""

    def _abandon(self) -> None:
        try:
            self._discard_partial()
        except (RuntimeError, OSError) as exc:
            self.abandon_error = f"partial changes left in place: {exc}"


# ----------------------------------------------------------------------
# Packages and shared host services
# ----------------------------------------------------------------------
@register_action
class InstallPackages(Action):
    """Install the missing members of a package group."""

    name = "install-packages"
    teardown_policy = TeardownPolicy.CONFIRM

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        toolkit: Toolkit,
        *,
        packages: Sequence[str],
        installed: Sequence[str] = (),
    ) -> None:
        super().__init__(descriptor, toolkit)
        self.packages = tuple(packages)
        self.installed = tuple(installed)

    def _apply(self) -> bool:
        missing = self.toolkit.packages.missing(self.packages)
        if not missing:
            return False
        self.toolkit.packages.install(missing)
        self.installed = tuple(missing)
        return True

    def _undo(self) -> UndoStatus:
        present = [pkg for pkg in self.installed if self.toolkit.packages.is_installed(pkg)]
        if not present:
            return UndoStatus.ABSENT
        self.toolkit.packages.purge(present)
        return UndoStatus.REVERTED

    def confirm_message(self) -> str:
        return f"Purge packages installed by this deployment: {', '.join(self.installed)}?"

    def record_params(self) -> dict[str, Any]:
        return {"packages": list(self.packages), "installed": list(self.installed)}


@register_action
class StartService(Action):
    """Enable and start a unit, restarting it when its inputs changed."""

    name = "start-service"

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        toolkit: Toolkit,
        *,
        unit: str,
        started: bool = False,
        enabled: bool = False,
        triggers: Sequence[Action] = (),
    ) -> None:
        super().__init__(descriptor, toolkit)
        self.unit = unit
        self.started = started
        self.enabled = enabled
        self.triggers = tuple(triggers)

    def _apply(self) -> bool:
        systemd = self.toolkit.systemd
        if not systemd.is_enabled(self.unit):
            systemd.enable(self.unit)
            self.enabled = True
        if not systemd.is_active(self.unit):
            systemd.start(self.unit)
            self.started = True
        elif any(trigger.changed for trigger in self.triggers):
            systemd.restart(self.unit)
        return self.started or self.enabled

    def _discard_partial(self) -> None:
        if self.enabled and not self.started:
            self.toolkit.systemd.disable(self.unit)
            self.enabled = False

    def _undo(self) -> UndoStatus:
        systemd = self.toolkit.systemd
        if not systemd.unit_known(self.unit):
            return UndoStatus.ABSENT
        if self.started and systemd.is_active(self.unit):
            systemd.stop(self.unit)
        if self.enabled:
            systemd.disable(self.unit)
        return UndoStatus.REVERTED

    def record_params(self) -> dict[str, Any]:
        return {"unit": self.unit, "started": self.started, "enabled": self.enabled}


@register_action
class EnsureHostService(StartService):
    """Start a host-wide service such as postgresql or nginx; teardown keeps it."""

    name = "ensure-host-service"
    teardown_policy = TeardownPolicy.KEEP


# ----------------------------------------------------------------------
# Database
# ----------------------------------------------------------------------
@register_action
class CreateDatabase(Action):
    """Create the application database and grant the application user access.

    An existing database is only dropped and recreated after explicit
    confirmation; otherwise it is adopted untouched and not owned by this
    deployment.
    """

    name = "create-database"
    teardown_policy = TeardownPolicy.CONFIRM

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        toolkit: Toolkit,
        *,
        database: str,
        owner: str = "postgres",
        password: str | None = None,
        recreate: bool = False,
        known: bool = False,
    ) -> None:
        super().__init__(descriptor, toolkit)
        self.database = database
        self.owner = owner
        self.password = password
        self.recreate = recreate
        self.known = known
        self._created = False

    def _apply(self) -> bool:
        postgres = self.toolkit.postgres
        if postgres.database_exists(self.database):
            if self.recreate or (
                not self.known
                and self.toolkit.confirm(
                    f"Database '{self.database}' already exists. "
                    "Drop and recreate it? All data in it will be lost."
                )
            ):
                postgres.drop_database(self.database)
                postgres.create_database(self.database, owner=self.owner)
                self._created = True
        else:
            postgres.create_database(self.database, owner=self.owner)
            self._created = True
        if self.password:
            postgres.set_password(self.owner, self.password)
        postgres.grant_all(self.database, self.owner)
        return self._created

    def _discard_partial(self) -> None:
        if self._created:
            self.toolkit.postgres.drop_database(self.database)
            self._created = False

    def _undo(self) -> UndoStatus:
        if self.toolkit.postgres.drop_database(self.database):
            return UndoStatus.REVERTED
        return UndoStatus.ABSENT

    def confirm_message(self) -> str:
        return f"Drop database '{self.database}'? This cannot be undone."

    def record_params(self) -> dict[str, Any]:
        return {"database": self.database, "owner": self.owner}


# ----------------------------------------------------------------------
# Files and directories
# ----------------------------------------------------------------------
@register_action
class EnsureDirectory(Action):
    """Create a directory with the requested owner and mode."""

    name = "ensure-directory"

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        toolkit: Toolkit,
        *,
        path: str | Path,
        mode: int = 0o755,
        owner: str | None = None,
        group: str | None = None,
    ) -> None:
        super().__init__(descriptor, toolkit)
        self.path = Path(path)
        self.mode = mode
        self.owner = owner
        self.group = group
        self._created_root: Path | None = None
        self._previous_mode: int | None = None

    def _apply(self) -> bool:
        if self.path.is_dir():
            self._previous_mode = stat.S_IMODE(self.path.stat().st_mode)
        else:
            root = _first_missing(self.path)
            self.path.mkdir(parents=True, exist_ok=True)
            self._created_root = root
        self.path.chmod(self.mode)
        apply_ownership(self.path, self.owner, self.group)
        return self._created_root is not None

    def _discard_partial(self) -> None:
        if self._created_root is not None:
            remove_path(self._created_root)
            self._created_root = None
        elif self._previous_mode is not None and self.path.is_dir():
            self.path.chmod(self._previous_mode)

    def _undo(self) -> UndoStatus:
        if not self.path.is_dir():
            return UndoStatus.ABSENT
        if any(self.path.iterdir()):
            # Shared with other deployments or holding their files.
            return UndoStatus.SKIPPED
        self.path.rmdir()
        return UndoStatus.REVERTED

    def record_params(self) -> dict[str, Any]:
        return {"path": str(self.path), "mode": self.mode, "owner": self.owner, "group": self.group}


@register_action
class WriteFile(Action):
    """Write rendered text to a file.

    During a run the previous content is kept in memory and restored on
    undo. A rebuilt action has no previous content and removes the file.
    """

    name = "write-file"

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        toolkit: Toolkit,
        *,
        path: str | Path,
        content: str | None = None,
        mode: int = 0o644,
        owner: str | None = None,
        group: str | None = None,
    ) -> None:
        super().__init__(descriptor, toolkit)
        self.path = Path(path)
        self.content = content
        self.mode = mode
        self.owner = owner
        self.group = group
        self._previous: tuple[str, int] | None = None
        self._written = False

    def _apply(self) -> bool:
        if self.content is None:
            raise ActionError(self.descriptor, "no content to write")
        existing = read_text_if_exists(self.path)
        if existing is not None and existing[0] == self.content:
            if existing[1] != self.mode:
                self.path.chmod(self.mode)
            return False
        self._previous = existing
        atomic_write_text(self.path, self.content, mode=self.mode)
        self._written = True
        apply_ownership(self.path, self.owner, self.group)
        self._after_write()
        return True

    def _after_write(self) -> None:
        """Hook for subclasses that must apply the file once written."""

    def _discard_partial(self) -> None:
        if not self._written:
            return
        self._written = False
        if self._previous is not None:
            content, mode = self._previous
            atomic_write_text(self.path, content, mode=mode)
        else:
            remove_path(self.path)

    def _undo(self) -> UndoStatus:
        if self._previous is not None:
            content, mode = self._previous
            atomic_write_text(self.path, content, mode=mode)
            apply_ownership(self.path, self.owner, self.group)
            return UndoStatus.REVERTED
        if remove_path(self.path):
            return UndoStatus.REVERTED
        return UndoStatus.ABSENT

    def record_params(self) -> dict[str, Any]:
        return {"path": str(self.path), "mode": self.mode, "owner": self.owner, "group": self.group}


@register_action
class InstallTmpfiles(WriteFile):
    """Write a tmpfiles.d entry and apply it straight away."""

    name = "install-tmpfiles"

    def _after_write(self) -> None:
        self.toolkit.systemd.tmpfiles_create(self.path)


@register_action
class InstallServiceUnit(Action):
    """Install the application's systemd unit file."""

    name = "install-unit"

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        toolkit: Toolkit,
        *,
        unit: str,
        content: str | None = None,
    ) -> None:
        super().__init__(descriptor, toolkit)
        self.unit = unit
        self.content = content
        self._previous: str | None = None

    def _apply(self) -> bool:
        if self.content is None:
            raise ActionError(self.descriptor, "no unit content to install")
        previous = self.toolkit.systemd.read_unit(self.unit)
        changed = self.toolkit.systemd.install_unit(self.unit, self.content)
        if changed:
            self._previous = previous
        return changed

    def _undo(self) -> UndoStatus:
        if self._previous is not None:
            self.toolkit.systemd.install_unit(self.unit, self._previous)
            return UndoStatus.REVERTED
        if self.toolkit.systemd.remove_unit(self.unit):
            return UndoStatus.REVERTED
        return UndoStatus.ABSENT

    def record_params(self) -> dict[str, Any]:
        return {"unit": self.unit}


@register_action
class PrepareApplication(Action):
    """Create the virtualenv, install requirements and run the project hooks."""

    name = "prepare-application"

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        toolkit: Toolkit,
        *,
        project: str | Path,
        venv: str | Path,
        requirements: str | Path | None = None,
        extra_packages: Sequence[str] = (),
        hooks: Sequence[str] = (),
        environment: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(descriptor, toolkit)
        self.project = Path(project)
        self.venv = Path(venv)
        self.requirements = Path(requirements) if requirements is not None else None
        self.extra_packages = tuple(extra_packages)
        self.hooks = tuple(hooks)
        self.environment = dict(environment or {})
        self._created = False

    def _apply(self) -> bool:
        application = self.toolkit.application
        self._created = application.create_venv(self.venv)
        application.pip_install(
            self.venv,
            requirements=self.requirements,
            packages=self.extra_packages,
        )
        for hook in self.hooks:
            application.run_hook(self.venv, self.project, hook, env=self.environment)
        return self._created

    def _discard_partial(self) -> None:
        # An existing virtualenv is left as pip and the hooks left it.
        if self._created:
            remove_path(self.venv)
            self._created = False

    def _undo(self) -> UndoStatus:
        if remove_path(self.venv):
            return UndoStatus.REVERTED
        return UndoStatus.ABSENT

    def record_params(self) -> dict[str, Any]:
        return {"project": str(self.project), "venv": str(self.venv)}


@register_action
class SyncStaticFiles(Action):
    """Publish a built frontend into its web root.

    The build is copied into a staging sibling first and only swapped in
    once complete, so a failed copy leaves the live web root untouched. A
    replaced web root is moved aside and restored on undo; the copy is
    discarded by :meth:`finalize` once the run commits.
    """

    name = "sync-static-files"

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        toolkit: Toolkit,
        *,
        destination: str | Path,
        source: str | Path | None = None,
        owner: str | None = None,
        group: str | None = None,
    ) -> None:
        super().__init__(descriptor, toolkit)
        self.destination = Path(destination)
        self.source = Path(source) if source is not None else None
        self.owner = owner
        self.group = group
        self._backup: Path | None = None

    @property
    def backup_path(self) -> Path:
        """Return where a replaced web root is parked until commit."""
        return self.destination.with_name(f".{self.destination.name}.deployctl-previous")

    @property
    def staging_path(self) -> Path:
        """Return where the new build is assembled before the swap."""
        return self.destination.with_name(f".{self.destination.name}.deployctl-new")

    def _apply(self) -> bool:
        if self.source is None or not self.source.is_dir():
            raise ActionError(self.descriptor, f"source directory {self.source} does not exist")
        if self.destination.is_dir() and _trees_match(self.source, self.destination):
            return False
        staging = self.staging_path
        remove_path(staging)
        shutil.copytree(self.source, staging)
        for path in [staging, *staging.rglob("*")]:
            path.chmod(0o755 if path.is_dir() else 0o644)
            apply_ownership(path, self.owner, self.group)
        if self.destination.exists():
            remove_path(self.backup_path)
            self.destination.rename(self.backup_path)
            self._backup = self.backup_path
        staging.rename(self.destination)
        return True

    def _discard_partial(self) -> None:
        remove_path(self.staging_path)
        if self._backup is not None and not self.destination.exists():
            self._backup.rename(self.destination)
            self._backup = None

    def _undo(self) -> UndoStatus:
        removed = remove_path(self.destination)
        if self._backup is not None and self._backup.exists():
            self._backup.rename(self.destination)
            self._backup = None
            return UndoStatus.REVERTED
        return UndoStatus.REVERTED if removed else UndoStatus.ABSENT

    def finalize(self) -> None:
        if self._backup is not None:
            remove_path(self._backup)
            self._backup = None

    def confirm_message(self) -> str:
        return f"Delete web root {self.destination}?"

    def record_params(self) -> dict[str, Any]:
        return {
            "destination": str(self.destination),
            "owner": self.owner,
            "group": self.group,
        }


def _first_missing(path: Path) -> Path:
    """Return the outermost ancestor of *path* (or *path*) that does not exist."""
    missing = path
    for parent in path.parents:
        if parent.exists():
            break
        missing = parent
    return missing


def _trees_match(left: Path, right: Path) -> bool:
    comparison = filecmp.dircmp(left, right)
    return _dircmp_equal(comparison)


def _dircmp_equal(comparison: filecmp.dircmp[str]) -> bool:
    if comparison.left_only or comparison.right_only or comparison.funny_files:
        return False
    _, mismatch, errors = filecmp.cmpfiles(
        comparison.left, comparison.right, comparison.common_files, shallow=False
    )
    if mismatch or errors:
        return False
    return all(_dircmp_equal(sub) for sub in comparison.subdirs.values())


# ----------------------------------------------------------------------
# Reverse proxy and certificates
# ----------------------------------------------------------------------
@register_action
class DisableDefaultSite(Action):
    """Remove the distribution's default nginx site from sites-enabled."""

    name = "disable-default-site"

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        toolkit: Toolkit,
        *,
        site: str = "default",
        target: str | None = None,
    ) -> None:
        super().__init__(descriptor, toolkit)
        self.site = site
        self.target = target

    def _apply(self) -> bool:
        nginx = self.toolkit.nginx
        link = nginx.enabled_path(self.site)
        if not link.exists() and not link.is_symlink():
            return False
        if not link.is_symlink():
            raise ActionError(self.descriptor, f"{link} is not a symlink; refusing to remove it")
        self.target = str(link.resolve())
        nginx.disable(self.site)
        nginx.test_config()
        nginx.reload()
        return True

    def _discard_partial(self) -> None:
        self._relink()

    def _undo(self) -> UndoStatus:
        if not self._relink():
            return UndoStatus.ABSENT
        self.toolkit.nginx.reload()
        return UndoStatus.REVERTED

    def _relink(self) -> bool:
        link = self.toolkit.nginx.enabled_path(self.site)
        if link.exists() or link.is_symlink() or not self.target:
            return False
        target = Path(self.target)
        if not target.exists():
            return False
        link.parent.mkdir(parents=True, exist_ok=True)
        link.symlink_to(target)
        return True

    def record_params(self) -> dict[str, Any]:
        return {"site": self.site, "target": self.target}


@register_action
class WriteProxyConfig(Action):
    """Install an HTTP virtual host, validate it and reload nginx.

    Certbot edits the installed file to add the TLS server block, so the
    file on disk is not compared against the rendering. Instead the digest
    of the rendering committed by the previous run is passed back in; when
    it still matches and the site is enabled, the file is left alone.
    """

    name = "write-proxy-config"

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        toolkit: Toolkit,
        *,
        site: str,
        content: str | None = None,
        committed_digest: str | None = None,
    ) -> None:
        super().__init__(descriptor, toolkit)
        self.site = site
        self.content = content
        self.committed_digest = committed_digest
        self._previous: str | None = None
        self._previously_enabled = False

    @property
    def digest(self) -> str | None:
        """Return the SHA-256 of the rendered configuration."""
        if self.content is None:
            return self.committed_digest
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()

    def _apply(self) -> bool:
        if self.content is None:
            raise ActionError(self.descriptor, "no site configuration to install")
        nginx = self.toolkit.nginx
        if (
            self.committed_digest == self.digest
            and nginx.site_exists(self.site)
            and nginx.is_enabled(self.site)
        ):
            return False
        result = nginx.install_site(self.site, self.content)
        if result.changed:
            self._previous = result.previous
            self._previously_enabled = result.previously_enabled
        return result.changed

    def _undo(self) -> UndoStatus:
        nginx = self.toolkit.nginx
        if self._previous is not None:
            nginx.restore_site(self.site, self._previous, enabled=self._previously_enabled)
            status = UndoStatus.REVERTED
        elif nginx.remove(self.site):
            status = UndoStatus.REVERTED
        else:
            return UndoStatus.ABSENT
        nginx.reload()
        return status

    def record_params(self) -> dict[str, Any]:
        return {"site": self.site, "committed_digest": self.digest}


@register_action
class IssueCertificate(Action):
    """Obtain a certificate with certbot and install it into the nginx site.

    A live certificate that covers every domain and is outside the renewal
    window is reinstalled instead of reissued, unless ``site`` already
    references it, as it does after an earlier run when the site file was
    left alone. Replacing any existing certificate requires
    ``reissue`` or an explicit confirmation. With ``required`` false a
    certbot failure is downgraded to a warning.
    """

    name = "issue-certificate"
    teardown_policy = TeardownPolicy.CONFIRM

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        toolkit: Toolkit,
        *,
        cert_name: str,
        domains: Sequence[str],
        email: str | None = None,
        redirect: bool = True,
        required: bool = True,
        reissue: bool = False,
        site: str | None = None,
    ) -> None:
        super().__init__(descriptor, toolkit)
        self.cert_name = cert_name
        self.domains = tuple(domains)
        self.email = email
        self.redirect = redirect
        self.required = required
        self.reissue = reissue
        self.site = site
        self.installed = False

    def _apply(self) -> bool:
        certbot = self.toolkit.certbot
        report = self.toolkit.tls.inspect(self.cert_name, self.domains)
        if report.reusable and not self.reissue and self._site_uses(report.material.certificate):
            self.installed = True
            return False
        try:
            if report.state is CertificateState.MISSING:
                certbot.issue(
                    self.cert_name, self.domains, email=self.email, redirect=self.redirect
                )
                self.installed = True
                return True
            if self.reissue or (
                not report.reusable
                and self.toolkit.confirm(
                    f"Certificate '{self.cert_name}' is {report.state.value}"
                    f"{': ' + report.message if report.message else ''}. Request a new one?"
                )
            ):
                certbot.issue(
                    self.cert_name,
                    self.domains,
                    email=self.email,
                    redirect=self.redirect,
                    force_renewal=True,
                )
            else:
                certbot.reinstall(
                    self.cert_name, self.domains, email=self.email, redirect=self.redirect
                )
        except CertbotError as exc:
            if self.required:
                raise
            self.warnings.append(
                f"TLS for {', '.join(self.domains)} was not set up ({exc}); "
                "the site is served over HTTP until a certificate is installed."
            )
            return False
        self.installed = True
        return False

    def _site_uses(self, certificate: Path) -> bool:
        if self.site is None:
            return False
        content = self.toolkit.nginx.read_site(self.site)
        return content is not None and str(certificate) in content

    def _undo(self) -> UndoStatus:
        if self.toolkit.certbot.delete(self.cert_name):
            return UndoStatus.REVERTED
        return UndoStatus.ABSENT

    def confirm_message(self) -> str:
        return f"Delete certificate '{self.cert_name}' ({', '.join(self.domains)})?"

    def record_params(self) -> dict[str, Any]:
        return {
            "cert_name": self.cert_name,
            "domains": list(self.domains),
            "email": self.email,
            "redirect": self.redirect,
        }


__all__ = [
    "ACTION_TYPES",
    "Action",
    "Confirm",
    "CreateDatabase",
    "DisableDefaultSite",
    "EnsureDirectory",
    "EnsureHostService",
    "InstallPackages",
    "InstallServiceUnit",
    "InstallTmpfiles",
    "IssueCertificate",
    "PrepareApplication",
    "StartService",
    "SyncStaticFiles",
    "TeardownPolicy",
    "Toolkit",
    "UndoStatus",
    "WriteFile",
    "WriteProxyConfig",
    "action_from_record",
    "decline",
    "register_action",
]

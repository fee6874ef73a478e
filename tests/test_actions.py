"""Tests for the idempotent actions and their undo."""
from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeHost, write_lineage

from deployctl.actions import (
    CreateDatabase,
    DisableDefaultSite,
    EnsureDirectory,
    InstallPackages,
    InstallTmpfiles,
    IssueCertificate,
    PrepareApplication,
    StartService,
    SyncStaticFiles,
    UndoStatus,
    WriteFile,
    WriteProxyConfig,
    action_from_record,
)
from deployctl.errors import ActionError, UndoWarning
from deployctl.models import ResourceDescriptor, ResourceKind
from deployctl.providers import DatabaseError, SystemdError
from deployctl.state.resources import ResourceRecord


def _descriptor(kind: ResourceKind, identifier: str, locator: str | None = None) -> ResourceDescriptor:
    return ResourceDescriptor(kind, identifier, locator or identifier)


def test_install_packages_only_installs_missing_and_undo_purges_them(host: FakeHost) -> None:
    """Pre-installed packages are neither installed nor purged."""
    host.packages.installed.add("git")
    action = InstallPackages(
        _descriptor(ResourceKind.PACKAGE, "server"),
        host.toolkit,
        packages=["git", "nginx"],
    )

    assert action.apply() is True
    assert host.packages.calls == [("install", ("nginx",))]

    assert action.undo() is UndoStatus.REVERTED
    assert host.packages.installed == {"git"}


def test_install_packages_noop_when_everything_present(host: FakeHost) -> None:
    """A fully installed group is unchanged and its undo is skipped."""
    host.packages.installed.update({"git", "nginx"})
    action = InstallPackages(
        _descriptor(ResourceKind.PACKAGE, "server"),
        host.toolkit,
        packages=["git", "nginx"],
    )

    assert action.apply() is False
    assert action.undo() is UndoStatus.SKIPPED
    assert host.packages.installed == {"git", "nginx"}


def test_create_database_creates_and_undo_drops(host: FakeHost) -> None:
    """A new database is created, granted and dropped again on undo."""
    action = CreateDatabase(
        _descriptor(ResourceKind.DATABASE, "demo"),
        host.toolkit,
        database="demo",
        password="s3cret",
    )

    assert action.apply() is True
    assert "demo" in host.postgres.databases
    assert host.postgres.passwords == {"postgres": "s3cret"}
    assert host.postgres.grants == [("demo", "postgres")]

    assert action.undo() is UndoStatus.REVERTED
    assert "demo" not in host.postgres.databases


def test_create_database_adopts_existing_when_recreate_declined(host: FakeHost) -> None:
    """An existing database is kept untouched and not owned when the operator says no."""
    host.postgres.databases.add("demo")
    questions: list[str] = []

    def refuse(message: str) -> bool:
        questions.append(message)
        return False

    host.toolkit.confirm = refuse
    action = CreateDatabase(_descriptor(ResourceKind.DATABASE, "demo"), host.toolkit, database="demo")

    assert action.apply() is False
    assert questions and "already exists" in questions[0]
    assert action.undo() is UndoStatus.SKIPPED
    assert "demo" in host.postgres.databases


def test_create_database_known_database_is_not_questioned(host: FakeHost) -> None:
    """A database this deployment already owns is reused without a prompt."""
    host.postgres.databases.add("demo")

    def explode(message: str) -> bool:
        raise AssertionError(f"unexpected prompt: {message}")

    host.toolkit.confirm = explode
    action = CreateDatabase(
        _descriptor(ResourceKind.DATABASE, "demo"),
        host.toolkit,
        database="demo",
        known=True,
    )

    assert action.apply() is False


def test_create_database_failure_is_wrapped(host: FakeHost) -> None:
    """Provider errors surface as ActionError naming the descriptor."""
    host.postgres.fail_create = True
    action = CreateDatabase(_descriptor(ResourceKind.DATABASE, "demo"), host.toolkit, database="demo")

    with pytest.raises(ActionError) as excinfo:
        action.apply()

    assert excinfo.value.descriptor.identifier == "demo"
    assert action.applied is False
    assert action.undo() is UndoStatus.SKIPPED


def test_undo_failure_raises_undo_warning(host: FakeHost) -> None:
    """Unexpected undo failures become UndoWarning, not a crash."""
    action = CreateDatabase(_descriptor(ResourceKind.DATABASE, "demo"), host.toolkit, database="demo")
    action.apply()
    host.postgres.fail_drop = True

    with pytest.raises(UndoWarning):
        action.undo()


def test_ensure_directory_keeps_non_empty_directory(host: FakeHost, tmp_path: Path) -> None:
    """A directory that gained content is left in place on undo."""
    target = tmp_path / "logs"
    action = EnsureDirectory(_descriptor(ResourceKind.DIRECTORY, str(target)), host.toolkit, path=target)

    assert action.apply() is True
    (target / "other.log").write_text("x", encoding="utf-8")

    assert action.undo() is UndoStatus.SKIPPED
    assert target.is_dir()


def test_write_file_restores_previous_content(host: FakeHost, tmp_path: Path) -> None:
    """Undo within the same run puts back the file that was replaced."""
    target = tmp_path / ".env"
    target.write_text("OLD=1\n", encoding="utf-8")
    action = WriteFile(
        _descriptor(ResourceKind.RENDERED_FILE, str(target)),
        host.toolkit,
        path=target,
        content="NEW=1\n",
        mode=0o640,
    )

    assert action.apply() is True
    assert target.read_text(encoding="utf-8") == "NEW=1\n"
    assert target.stat().st_mode & 0o777 == 0o640

    assert action.undo() is UndoStatus.REVERTED
    assert target.read_text(encoding="utf-8") == "OLD=1\n"


def test_write_file_is_idempotent(host: FakeHost, tmp_path: Path) -> None:
    """Identical content is not rewritten."""
    target = tmp_path / "gunicorn.conf.py"
    target.write_text("bind = 'x'\n", encoding="utf-8")
    target.chmod(0o644)
    action = WriteFile(
        _descriptor(ResourceKind.RENDERED_FILE, str(target)),
        host.toolkit,
        path=target,
        content="bind = 'x'\n",
    )

    assert action.apply() is False


def test_rebuilt_write_file_removes_file(host: FakeHost, tmp_path: Path) -> None:
    """An action rebuilt from the registry deletes the file it created."""
    target = tmp_path / "monitor_logs.sh"
    target.write_text("#!/bin/sh\n", encoding="utf-8")
    record = ResourceRecord(
        descriptor=_descriptor(ResourceKind.RENDERED_FILE, str(target)),
        action="write-file",
        stage="runtime-config",
        changed=True,
        params={"path": str(target), "mode": 0o755, "owner": None, "group": None},
    )

    action = action_from_record(record, host.toolkit)

    assert isinstance(action, WriteFile)
    assert action.undo() is UndoStatus.REVERTED
    assert not target.exists()
    assert action_from_record(record, host.toolkit).undo() is UndoStatus.ABSENT


def test_write_proxy_config_failed_validation_restores_site(host: FakeHost) -> None:
    """A config rejected by ``nginx -t`` leaves no site behind."""
    host.nginx_test_failures.append("unknown directive")
    action = WriteProxyConfig(
        _descriptor(ResourceKind.PROXY_CONFIG, "demo"),
        host.toolkit,
        site="demo",
        content="server { bogus; }\n",
    )

    with pytest.raises(ActionError, match="unknown directive"):
        action.apply()

    assert not host.nginx.site_path("demo").exists()
    assert not host.nginx.enabled_path("demo").is_symlink()
    assert ("-s", "reload") not in host.nginx_calls


def test_write_proxy_config_applies_and_undoes(host: FakeHost) -> None:
    """A valid site is enabled, reloaded and removed again on undo."""
    action = WriteProxyConfig(
        _descriptor(ResourceKind.PROXY_CONFIG, "demo"),
        host.toolkit,
        site="demo",
        content="server { listen 80; }\n",
    )

    assert action.apply() is True
    assert host.nginx.is_enabled("demo")
    assert host.nginx_calls == [("-t",), ("-s", "reload")]

    assert action.undo() is UndoStatus.REVERTED
    assert not host.nginx.site_exists("demo")


def test_start_service_restarts_when_trigger_changed(host: FakeHost, tmp_path: Path) -> None:
    """A running unit is restarted when one of its inputs changed."""
    unit = "gunicorn-demo.service"
    host.systemd.active.add(unit)
    host.systemd.enabled.add(unit)
    config = WriteFile(
        _descriptor(ResourceKind.RENDERED_FILE, "conf"),
        host.toolkit,
        path=tmp_path / "gunicorn.conf.py",
        content="workers = 3\n",
    )
    config.apply()
    action = StartService(
        _descriptor(ResourceKind.SERVICE_UNIT, unit),
        host.toolkit,
        unit=unit,
        triggers=[config],
    )

    assert action.apply() is False
    assert ("restart", unit) in host.systemd.calls
    assert action.undo() is UndoStatus.SKIPPED
    assert unit in host.systemd.active


def test_start_service_undo_reports_absent_unit(host: FakeHost) -> None:
    """Stopping a unit that systemd no longer knows is already done."""
    unit = "gunicorn-demo.service"
    action = StartService(_descriptor(ResourceKind.SERVICE_UNIT, unit), host.toolkit, unit=unit)
    action.apply()
    host.systemd.active.clear()
    host.systemd.enabled.clear()

    assert action.undo() is UndoStatus.ABSENT


def test_issue_certificate_requests_missing_certificate(host: FakeHost) -> None:
    """No live certificate means a fresh issuance owned by this run."""
    action = IssueCertificate(
        _descriptor(ResourceKind.CERTIFICATE, "demo.example.com"),
        host.toolkit,
        cert_name="demo.example.com",
        domains=["demo.example.com"],
    )

    assert action.apply() is True
    assert action.installed is True
    assert host.certbot.calls == [("issue", "demo.example.com")]

    assert action.undo() is UndoStatus.REVERTED
    assert "demo.example.com" not in host.certbot.lineages


def test_issue_certificate_optional_failure_becomes_warning(host: FakeHost) -> None:
    """With TLS optional a certbot failure leaves the site on HTTP."""
    host.certbot.fail_issue = True
    action = IssueCertificate(
        _descriptor(ResourceKind.CERTIFICATE, "demo.example.com"),
        host.toolkit,
        cert_name="demo.example.com",
        domains=["demo.example.com"],
        required=False,
    )

    assert action.apply() is False
    assert action.installed is False
    assert action.warnings and "HTTP" in action.warnings[0]


def test_issue_certificate_required_failure_raises(host: FakeHost) -> None:
    """With TLS required a certbot failure fails the run."""
    host.certbot.fail_issue = True
    action = IssueCertificate(
        _descriptor(ResourceKind.CERTIFICATE, "demo.example.com"),
        host.toolkit,
        cert_name="demo.example.com",
        domains=["demo.example.com"],
    )

    with pytest.raises(ActionError, match="DNS problem"):
        action.apply()


def test_sync_static_files_restores_previous_tree(host: FakeHost, tmp_path: Path) -> None:
    """Rollback brings back the web root that was replaced."""
    source = tmp_path / "dist"
    source.mkdir()
    (source / "index.html").write_text("<p>new</p>", encoding="utf-8")
    destination = tmp_path / "www" / "demo.example.com"
    destination.mkdir(parents=True)
    (destination / "index.html").write_text("<p>old</p>", encoding="utf-8")
    action = SyncStaticFiles(
        _descriptor(ResourceKind.DIRECTORY, str(destination)),
        host.toolkit,
        destination=destination,
        source=source,
    )

    assert action.apply() is True
    assert (destination / "index.html").read_text(encoding="utf-8") == "<p>new</p>"
    assert action.backup_path.exists()

    assert action.undo() is UndoStatus.REVERTED
    assert (destination / "index.html").read_text(encoding="utf-8") == "<p>old</p>"
    assert not action.backup_path.exists()


def test_sync_static_files_finalize_discards_backup(host: FakeHost, tmp_path: Path) -> None:
    """Once committed, the parked copy of the old web root is deleted."""
    source = tmp_path / "dist"
    source.mkdir()
    (source / "index.html").write_text("<p>new</p>", encoding="utf-8")
    destination = tmp_path / "www" / "site"
    destination.mkdir(parents=True)
    (destination / "stale.html").write_text("old", encoding="utf-8")
    action = SyncStaticFiles(
        _descriptor(ResourceKind.DIRECTORY, str(destination)),
        host.toolkit,
        destination=destination,
        source=source,
    )

    action.apply()
    action.finalize()

    assert not action.backup_path.exists()
    assert not (destination / "stale.html").exists()
    assert action.apply() is True  # already applied: reports the earlier result

    again = SyncStaticFiles(
        _descriptor(ResourceKind.DIRECTORY, str(destination)),
        host.toolkit,
        destination=destination,
        source=source,
    )
    assert again.apply() is False


def _refuse_ownership(path: Path, owner: str | None, group: str | None) -> None:
    raise OSError(f"Cannot set ownership {owner}:{group} on {path}: no such user")


def test_create_database_drops_new_database_when_grant_fails(
    host: FakeHost, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A database created by a failing action does not outlive it."""

    def refuse(user: str, password: str) -> None:
        raise DatabaseError("psql failed (exit 1): role postgres is locked")

    monkeypatch.setattr(host.postgres, "set_password", refuse)
    action = CreateDatabase(
        _descriptor(ResourceKind.DATABASE, "demo"),
        host.toolkit,
        database="demo",
        password="pw",
    )

    with pytest.raises(ActionError, match="locked"):
        action.apply()

    assert "demo" not in host.postgres.databases
    assert action.applied is False
    assert action.abandon_error is None


def test_create_database_keeps_adopted_database_when_grant_fails(
    host: FakeHost, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Only a database this action created is dropped after a failure."""

    def refuse(database: str, user: str) -> None:
        raise DatabaseError("psql failed (exit 1): permission denied")

    host.postgres.databases.add("demo")
    monkeypatch.setattr(host.postgres, "grant_all", refuse)
    action = CreateDatabase(
        _descriptor(ResourceKind.DATABASE, "demo"),
        host.toolkit,
        database="demo",
        known=True,
    )

    with pytest.raises(ActionError, match="permission denied"):
        action.apply()

    assert host.postgres.databases == {"demo"}


def test_create_database_reports_failed_cleanup(
    host: FakeHost, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A drop that fails after a failed grant is kept for the run report."""

    def refuse(database: str, user: str) -> None:
        raise DatabaseError("psql failed (exit 1): permission denied")

    monkeypatch.setattr(host.postgres, "grant_all", refuse)
    action = CreateDatabase(
        _descriptor(ResourceKind.DATABASE, "demo"),
        host.toolkit,
        database="demo",
    )
    host.postgres.fail_drop = True

    with pytest.raises(ActionError, match="permission denied"):
        action.apply()

    assert action.abandon_error is not None
    assert "being accessed" in action.abandon_error


def test_ensure_directory_removes_created_tree_when_ownership_fails(
    host: FakeHost, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("deployctl.actions.apply_ownership", _refuse_ownership)
    target = tmp_path / "log" / "gunicorn"
    action = EnsureDirectory(
        _descriptor(ResourceKind.DIRECTORY, str(target)),
        host.toolkit,
        path=target,
        owner="app",
    )

    with pytest.raises(ActionError, match="no such user"):
        action.apply()

    assert not (tmp_path / "log").exists()
    assert tmp_path.is_dir()


def test_ensure_directory_restores_mode_when_ownership_fails(
    host: FakeHost, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("deployctl.actions.apply_ownership", _refuse_ownership)
    target = tmp_path / "run"
    target.mkdir()
    target.chmod(0o700)
    action = EnsureDirectory(
        _descriptor(ResourceKind.DIRECTORY, str(target)),
        host.toolkit,
        path=target,
        owner="app",
    )

    with pytest.raises(ActionError):
        action.apply()

    assert target.is_dir()
    assert target.stat().st_mode & 0o777 == 0o700


def test_write_file_puts_back_previous_content_when_ownership_fails(
    host: FakeHost, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("deployctl.actions.apply_ownership", _refuse_ownership)
    target = tmp_path / ".env"
    target.write_text("OLD=1\n", encoding="utf-8")
    target.chmod(0o600)
    action = WriteFile(
        _descriptor(ResourceKind.RENDERED_FILE, str(target)),
        host.toolkit,
        path=target,
        content="NEW=1\n",
        owner="app",
    )

    with pytest.raises(ActionError, match="no such user"):
        action.apply()

    assert target.read_text(encoding="utf-8") == "OLD=1\n"
    assert target.stat().st_mode & 0o777 == 0o600


def test_write_file_rejects_existing_file_that_is_not_text(host: FakeHost, tmp_path: Path) -> None:
    """Undecodable bytes fail the action instead of escaping as a decode error."""
    target = tmp_path / ".env"
    target.write_bytes(b"\xff\xfeSECRET\x00")
    action = WriteFile(
        _descriptor(ResourceKind.RENDERED_FILE, str(target)),
        host.toolkit,
        path=target,
        content="SECRET_KEY=x\n",
    )

    with pytest.raises(ActionError, match="not UTF-8 text"):
        action.apply()

    assert target.read_bytes() == b"\xff\xfeSECRET\x00"


def test_install_tmpfiles_removes_entry_it_could_not_apply(
    host: FakeHost, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def fail(config: Path) -> None:
        raise SystemdError("systemd-tmpfiles failed (exit 1): bad line")

    monkeypatch.setattr(host.systemd, "tmpfiles_create", fail)
    target = tmp_path / "tmpfiles.d" / "gunicorn-demo.conf"
    action = InstallTmpfiles(
        _descriptor(ResourceKind.RENDERED_FILE, str(target)),
        host.toolkit,
        path=target,
        content="d /run/gunicorn 0775 app www-data -\n",
    )

    with pytest.raises(ActionError, match="bad line"):
        action.apply()

    assert not target.exists()


def test_prepare_application_removes_new_venv_when_hook_fails(
    host: FakeHost, tmp_path: Path
) -> None:
    host.application.fail_hook = "manage.py migrate"
    project = tmp_path / "shop"
    venv = project / "venv"
    action = PrepareApplication(
        _descriptor(ResourceKind.DIRECTORY, str(venv)),
        host.toolkit,
        project=project,
        venv=venv,
        hooks=["manage.py collectstatic --noinput", "manage.py migrate"],
    )

    with pytest.raises(ActionError, match="boom"):
        action.apply()

    assert not venv.exists()
    assert host.application.hooks == ["manage.py collectstatic --noinput"]


def test_prepare_application_keeps_existing_venv_when_hook_fails(
    host: FakeHost, tmp_path: Path
) -> None:
    host.application.fail_hook = "manage.py migrate"
    venv = tmp_path / "shop" / "venv"
    (venv / "bin").mkdir(parents=True)
    (venv / "bin" / "python").write_text("", encoding="utf-8")
    action = PrepareApplication(
        _descriptor(ResourceKind.DIRECTORY, str(venv)),
        host.toolkit,
        project=tmp_path / "shop",
        venv=venv,
        hooks=["manage.py migrate"],
    )

    with pytest.raises(ActionError):
        action.apply()

    assert (venv / "bin" / "python").exists()


def test_start_service_disables_unit_that_failed_to_start(host: FakeHost) -> None:
    host.systemd.fail_start = True
    action = StartService(
        _descriptor(ResourceKind.SERVICE_UNIT, "gunicorn-demo.service"),
        host.toolkit,
        unit="gunicorn-demo.service",
    )

    with pytest.raises(ActionError, match="failed"):
        action.apply()

    assert "gunicorn-demo.service" not in host.systemd.enabled
    assert host.systemd.calls[-1] == ("disable", "gunicorn-demo.service")


def test_disable_default_site_relinks_when_validation_fails(host: FakeHost) -> None:
    default = host.nginx.site_path("default")
    default.parent.mkdir(parents=True)
    default.write_text("server { listen 80 default_server; }\n", encoding="utf-8")
    host.nginx.enable("default")
    host.nginx_test_failures.append("no default server")
    action = DisableDefaultSite(
        _descriptor(ResourceKind.PROXY_CONFIG, "default"),
        host.toolkit,
        site="default",
    )

    with pytest.raises(ActionError, match="no default server"):
        action.apply()

    assert host.nginx.is_enabled("default")


def test_sync_static_files_failed_copy_keeps_live_web_root(
    host: FakeHost, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A copy that dies halfway never replaces the site being served."""
    source = tmp_path / "dist"
    source.mkdir()
    (source / "index.html").write_text("<p>new</p>", encoding="utf-8")
    destination = tmp_path / "www" / "demo.example.com"
    destination.mkdir(parents=True)
    (destination / "index.html").write_text("<p>old</p>", encoding="utf-8")

    def full_disk(src: Path, dst: Path, *args: object, **kwargs: object) -> Path:
        Path(dst).mkdir(parents=True)
        (Path(dst) / "index.html").write_text("<p>ne", encoding="utf-8")
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("deployctl.actions.shutil.copytree", full_disk)
    action = SyncStaticFiles(
        _descriptor(ResourceKind.DIRECTORY, str(destination)),
        host.toolkit,
        destination=destination,
        source=source,
    )

    with pytest.raises(ActionError, match="No space left"):
        action.apply()

    assert (destination / "index.html").read_text(encoding="utf-8") == "<p>old</p>"
    assert not action.staging_path.exists()
    assert not action.backup_path.exists()


def test_sync_static_files_failed_ownership_keeps_live_web_root(
    host: FakeHost, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("deployctl.actions.apply_ownership", _refuse_ownership)
    source = tmp_path / "dist"
    source.mkdir()
    (source / "index.html").write_text("<p>new</p>", encoding="utf-8")
    destination = tmp_path / "www" / "demo.example.com"
    destination.mkdir(parents=True)
    (destination / "index.html").write_text("<p>old</p>", encoding="utf-8")
    action = SyncStaticFiles(
        _descriptor(ResourceKind.DIRECTORY, str(destination)),
        host.toolkit,
        destination=destination,
        source=source,
        owner="www-data",
    )

    with pytest.raises(ActionError, match="no such user"):
        action.apply()

    assert (destination / "index.html").read_text(encoding="utf-8") == "<p>old</p>"
    assert not action.staging_path.exists()


def test_write_proxy_config_leaves_certbot_edits_alone(host: FakeHost) -> None:
    """An unchanged rendering does not overwrite the TLS block certbot added."""
    content = "server { listen 80; server_name demo.example.com; }\n"
    first = WriteProxyConfig(
        _descriptor(ResourceKind.PROXY_CONFIG, "demo"),
        host.toolkit,
        site="demo",
        content=content,
    )
    assert first.apply() is True
    site = host.nginx.site_path("demo")
    edited = content + "server { listen 443 ssl; # managed by Certbot\n}\n"
    site.write_text(edited, encoding="utf-8")
    calls = list(host.nginx_calls)
    committed = first.record_params()["committed_digest"]

    again = WriteProxyConfig(
        _descriptor(ResourceKind.PROXY_CONFIG, "demo"),
        host.toolkit,
        site="demo",
        content=content,
        committed_digest=committed,
    )

    assert again.apply() is False
    assert site.read_text(encoding="utf-8") == edited
    assert host.nginx_calls == calls


def test_write_proxy_config_rewrites_site_when_rendering_changed(host: FakeHost) -> None:
    content = "server { listen 80; server_name demo.example.com; }\n"
    first = WriteProxyConfig(
        _descriptor(ResourceKind.PROXY_CONFIG, "demo"),
        host.toolkit,
        site="demo",
        content=content,
    )
    first.apply()
    host.nginx.site_path("demo").write_text(content + "# managed by Certbot\n", encoding="utf-8")

    again = WriteProxyConfig(
        _descriptor(ResourceKind.PROXY_CONFIG, "demo"),
        host.toolkit,
        site="demo",
        content=content.replace("listen 80;", "listen 80; client_max_body_size 20m;"),
        committed_digest=first.digest,
    )

    assert again.apply() is True
    assert "Certbot" not in host.nginx.site_path("demo").read_text(encoding="utf-8")


def test_rebuilt_write_proxy_config_keeps_its_digest(host: FakeHost) -> None:
    record = ResourceRecord(
        descriptor=_descriptor(ResourceKind.PROXY_CONFIG, "demo"),
        action="write-proxy-config",
        stage="reverse-proxy",
        changed=True,
        params={"site": "demo", "committed_digest": "abc123"},
    )

    action = action_from_record(record, host.toolkit)

    assert isinstance(action, WriteProxyConfig)
    assert action.record_params() == {"site": "demo", "committed_digest": "abc123"}


def test_issue_certificate_skips_reinstall_when_site_already_uses_it(host: FakeHost) -> None:
    write_lineage(host.live_dir, "demo.example.com", names=["demo.example.com"])
    certificate = host.live_dir / "demo.example.com" / "fullchain.pem"
    site = host.nginx.site_path("demo")
    site.parent.mkdir(parents=True)
    site.write_text(f"server {{ ssl_certificate {certificate}; }}\n", encoding="utf-8")
    action = IssueCertificate(
        _descriptor(ResourceKind.CERTIFICATE, "demo.example.com"),
        host.toolkit,
        cert_name="demo.example.com",
        domains=["demo.example.com"],
        site="demo",
    )

    assert action.apply() is False
    assert action.installed is True
    assert host.certbot.calls == []


def test_issue_certificate_reinstalls_into_rewritten_site(host: FakeHost) -> None:
    write_lineage(host.live_dir, "demo.example.com", names=["demo.example.com"])
    site = host.nginx.site_path("demo")
    site.parent.mkdir(parents=True)
    site.write_text("server { listen 80; server_name demo.example.com; }\n", encoding="utf-8")
    action = IssueCertificate(
        _descriptor(ResourceKind.CERTIFICATE, "demo.example.com"),
        host.toolkit,
        cert_name="demo.example.com",
        domains=["demo.example.com"],
        site="demo",
    )

    assert action.apply() is False
    assert action.installed is True
    assert host.certbot.calls == [("reinstall", "demo.example.com")]
    assert "managed by Certbot" in site.read_text(encoding="utf-8")

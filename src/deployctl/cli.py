"""Typer-powered command line front-end for ``deployctl``.

The CLI collects deployment parameters (prompting for anything missing),
shows the plan, asks for confirmation and then hands the stages to the
pipeline executor. Every command runs inside a structured operation so the
outcome, including rollback details, lands in ``operations.jsonl``.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .actions import Confirm, Toolkit, decline
from .config import PASSWORD_ENV_VAR, AppConfig, ConfigError, load_config
from .errors import DeployError, PlanningError, RunInterrupted, VerificationTimeout
from .exit_codes import ExitCode
from .locking import LockManager, LockTimeoutError
from .logging import OperationScope, StructuredLogger
from .models import Deployment, FrontendDeployment, validate_name
from .pipeline import (
    PipelineExecutor,
    Plan,
    Planner,
    PlanOptions,
    RollbackStatus,
    RunReport,
    TeardownPipeline,
    TeardownReport,
)
from .pipeline.teardown import status_word
from .providers import (
    PROVIDER_ERRORS,
    ApplicationProvider,
    AptProvider,
    CertbotProvider,
    NginxProvider,
    PostgresProvider,
    SystemdProvider,
)
from .state import DeploymentRecord, ResourceRegistry, StateRegistry, StateRegistryError
from .templates import TemplateEngine
from .tls import TLSInspector
from .verification import VerificationProbe

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to deployctl's YAML config file.",
)
DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Render and print the plan without touching the host.",
)
YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Skip the final confirmation. Destructive questions are answered 'no'.",
)
EMAIL_OPTION = typer.Option(
    None,
    "--email",
    help="Contact address for certificate registration.",
)
SKIP_TLS_OPTION = typer.Option(
    False,
    "--skip-tls",
    help="Serve over HTTP only; do not request a certificate.",
)
REISSUE_OPTION = typer.Option(
    False,
    "--reissue-certificate",
    help="Request a fresh certificate even when the existing one is still valid.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Provision and tear down Django deployments on a single host.

        A deployment installs packages, creates the database, renders the
        gunicorn/systemd/nginx configuration, requests a certificate and
        verifies the result. Any failure rolls back every step taken so far.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    registry: StateRegistry
    resources: ResourceRegistry
    locks: LockManager
    logger: StructuredLogger
    templates: TemplateEngine
    toolkit: Toolkit
    probe: VerificationProbe


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    registry = StateRegistry(config.registry_dir)
    runtime = RuntimeContext(
        config=config,
        registry=registry,
        resources=ResourceRegistry(registry),
        locks=LockManager(config.runtime_dir, config.lock_timeout),
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
        toolkit=_build_toolkit(config),
        probe=VerificationProbe.from_config(config.verification),
    )
    ctx.obj = runtime
    return runtime


def _build_toolkit(config: AppConfig) -> Toolkit:
    return Toolkit(
        packages=AptProvider(
            apt_bin=config.packages.apt_bin,
            dpkg_query_bin=config.packages.dpkg_query_bin,
        ),
        postgres=PostgresProvider(
            psql_command=config.postgres.psql_command,
            admin_user=config.postgres.admin_user,
            host=config.postgres.host,
            port=config.postgres.port,
        ),
        systemd=SystemdProvider(
            systemd_dir=config.paths.systemd_dir,
            systemctl_bin=config.systemd.systemctl_bin,
            journalctl_bin=config.systemd.journalctl_bin,
            tmpfiles_bin=config.systemd.tmpfiles_bin,
        ),
        nginx=NginxProvider(
            sites_available=config.paths.sites_available,
            sites_enabled=config.paths.sites_enabled,
            nginx_bin=config.nginx.nginx_bin,
        ),
        certbot=CertbotProvider(
            certbot_bin=config.tls.certbot_bin,
            live_dir=config.tls.live_dir,
        ),
        application=ApplicationProvider(python_bin=config.application.python_bin),
        tls=TLSInspector(config.tls.live_dir, config.tls.renew_before_days),
    )


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the deployctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file, lock_timeout)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"deployctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file, lock_timeout)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


# ----------------------------------------------------------------------
# Shared helpers
# ----------------------------------------------------------------------
def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
    context: Mapping[str, object] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc), context=context)
    raise typer.Exit(code=int(rc))


def _dry_run_complete(
    op: OperationScope,
    summary: str,
    *,
    context: Mapping[str, object] | None = None,
) -> None:
    """Standardise dry-run completion messaging."""
    console.print(f"[yellow]Dry run[/yellow]: {summary}")
    op.success("Dry run complete.", changed=0, context=dict(context or {}))


@contextmanager
def _deployment_lock(runtime: RuntimeContext, op: OperationScope, name: str) -> Iterator[None]:
    try:
        with runtime.locks.deployment_lock(name) as handle:
            op.set_lock_wait_ms(handle.wait_ms)
            yield
    except LockTimeoutError as exc:
        _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)


def _load_record(
    runtime: RuntimeContext,
    op: OperationScope,
    name: str,
) -> DeploymentRecord | None:
    try:
        return runtime.resources.load(name)
    except StateRegistryError as exc:
        _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)


def _interactive_confirm(message: str) -> bool:
    return typer.confirm(message, default=False)


def _confirm_callback(*, assume_no: bool, assume_yes: bool = False) -> Confirm:
    if assume_yes:
        return lambda _message: True
    if assume_no:
        return decline
    return _interactive_confirm


def _split_values(values: Sequence[str] | None) -> tuple[str, ...]:
    result: list[str] = []
    for raw in values or ():
        for item in raw.split(","):
            item = item.strip().lower()
            if item and item not in result:
                result.append(item)
    return tuple(result)


def _exit_code_for(exc: BaseException) -> ExitCode:
    if isinstance(exc, (RunInterrupted, KeyboardInterrupt)):
        return ExitCode.INTERRUPTED
    if isinstance(exc, VerificationTimeout):
        return ExitCode.VERIFICATION
    if isinstance(exc, PlanningError):
        return ExitCode.VALIDATION
    if isinstance(exc, StateRegistryError):
        return ExitCode.ENVIRONMENT
    return ExitCode.PROVIDER


def _render_plan(plan: Plan) -> None:
    table = Table(title=f"Plan for '{plan.deployment}'", show_header=True, header_style="bold magenta")
    table.add_column("Stage", style="bold")
    table.add_column("Resource")
    table.add_column("Location")
    for stage, resource, locator in plan.rows():
        table.add_row(stage, resource, locator)
    console.print(table)


def _render_summary(summary: Mapping[str, object]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Item", style="bold")
    table.add_column("Value")
    for key, value in summary.items():
        if isinstance(value, (list, tuple)):
            rendered = "\n".join(str(item) for item in value)
        else:
            rendered = str(value)
        table.add_row(key, rendered)
    console.print(table)


def _render_failure(report: RunReport, error: BaseException) -> None:
    console.print(f"[red]Deployment '{report.deployment}' failed: {error}[/red]")
    if report.rolled_back:
        console.print("[yellow]Rolled back:[/yellow]")
        for entry in report.rolled_back:
            suffix = " (already absent)" if entry.status is RollbackStatus.ALREADY_ABSENT else ""
            console.print(f"  - {entry.descriptor.label()}{suffix}")
    if report.manual_cleanup:
        console.print("[red]Needs manual cleanup:[/red]")
        for entry in report.manual_cleanup:
            console.print(f"  - {entry.descriptor.label()} ({entry.descriptor.locator}): {entry.detail}")
    if not report.rollback:
        console.print("[yellow]Nothing had been changed; the host is unchanged.[/yellow]")


_RUN_FAILURES: tuple[type[BaseException], ...] = (
    DeployError,
    StateRegistryError,
    *PROVIDER_ERRORS,
    RunInterrupted,
    KeyboardInterrupt,
)


def _execute_plan(runtime: RuntimeContext, op: OperationScope, plan: Plan, *, noun: str) -> None:
    executor = PipelineExecutor(
        plan.deployment,
        plan.stages,
        runtime.resources,
        operation=op,
        metadata=plan.final_metadata,
        summary=plan.final_summary,
    )
    try:
        report = executor.run()
    except _RUN_FAILURES as exc:
        failed = executor.report
        _render_failure(failed, exc)
        rc = _exit_code_for(exc)
        op.error(
            f"{noun.capitalize()} failed and was rolled back.",
            errors=[str(exc)],
            warnings=failed.warnings,
            rc=int(rc),
            context=failed.to_dict(),
        )
        raise typer.Exit(code=int(rc)) from exc

    console.print(
        f"[green]{noun.capitalize()} '{plan.deployment}' committed "
        f"({report.changed} change(s)).[/green]"
    )
    for warning in report.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    _render_summary(report.summary)
    if report.warnings:
        op.warning(
            f"{noun.capitalize()} committed with warnings.",
            warnings=report.warnings,
            changed=report.changed,
            context=report.to_dict(),
        )
    else:
        op.success(f"{noun.capitalize()} committed.", changed=report.changed, context=report.to_dict())


def _confirm_or_cancel(op: OperationScope, question: str, *, yes: bool) -> None:
    if yes or typer.confirm(question, default=True):
        return
    console.print("[yellow]Cancelled; nothing was changed.[/yellow]")
    op.warning("Cancelled by operator.", changed=0)
    raise typer.Exit(code=ExitCode.CANCELLED)


# ----------------------------------------------------------------------
# deploy
# ----------------------------------------------------------------------
@app.command()
def deploy(
    ctx: typer.Context,
    name: str | None = typer.Option(None, "--name", "-n", help="Deployment (application) name."),
    domains: list[str] | None = typer.Option(
        None,
        "--domain",
        "-d",
        help="Domain served by the backend. Repeat or comma-separate for several.",
    ),
    project_path: Path | None = typer.Option(
        None,
        "--project-path",
        file_okay=False,
        help="Django project directory (contains manage.py and requirements).",
    ),
    wsgi_module: str | None = typer.Option(
        None,
        "--wsgi-module",
        help="Django project module holding wsgi.py (e.g. mysite.wsgi).",
    ),
    database_name: str | None = typer.Option(None, "--database-name", help="PostgreSQL database."),
    database_password: str | None = typer.Option(
        None,
        "--database-password",
        envvar=PASSWORD_ENV_VAR,
        help="Password set for the database user.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        dir_okay=False,
        exists=True,
        help="Raw environment file content appended to the generated .env.",
    ),
    frontend_dir: Path | None = typer.Option(
        None,
        "--frontend-dir",
        file_okay=False,
        help="Built frontend (dist/) to publish alongside the backend.",
    ),
    frontend_name: str | None = typer.Option(None, "--frontend-name", help="Frontend site name."),
    frontend_domains: list[str] | None = typer.Option(
        None,
        "--frontend-domain",
        help="Domain served by the frontend. Repeat or comma-separate for several.",
    ),
    backend_routes: list[str] | None = typer.Option(
        None,
        "--backend-route",
        help="Extra path prefix the frontend proxies to the backend.",
    ),
    spa: bool = typer.Option(True, "--spa/--no-spa", help="Route unknown paths to index.html."),
    email: str | None = EMAIL_OPTION,
    skip_tls: bool = SKIP_TLS_OPTION,
    recreate_database: bool = typer.Option(
        False,
        "--recreate-database",
        help="Drop and recreate the database if it already exists.",
    ),
    reissue_certificate: bool = REISSUE_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    yes: bool = YES_OPTION,
) -> None:
    """Provision a Django backend (and optional frontend) end to end."""
    runtime = _get_runtime(ctx)
    name = name or typer.prompt("Deployment name")
    domain_values = _split_values(domains) or _split_values(
        [typer.prompt("Domain name(s), comma separated")]
    )
    project_path = project_path or Path(typer.prompt("Django project directory"))
    project_path = project_path.expanduser().resolve()
    wsgi_module = wsgi_module or typer.prompt(
        "Django project module (for WSGI)", default=f"{project_path.name}.wsgi"
    )
    if not wsgi_module.endswith(".wsgi"):
        wsgi_module = f"{wsgi_module}.wsgi"
    database_name = database_name or typer.prompt(
        "Database name", default=name.replace("-", "_")
    )

    with runtime.logger.operation(
        "deploy",
        args={
            "domains": list(domain_values),
            "project_path": str(project_path),
            "database": database_name,
            "frontend_dir": str(frontend_dir) if frontend_dir else None,
            "skip_tls": skip_tls,
            "recreate_database": recreate_database,
            "reissue_certificate": reissue_certificate,
            "dry_run": dry_run,
        },
        target={"kind": "deployment", "name": name},
    ) as op:
        password = database_password or typer.prompt(
            "Database password", hide_input=True, confirmation_prompt=True
        )
        try:
            env_content = env_file.read_text(encoding="utf-8") if env_file else None
        except OSError as exc:
            _command_error(op, f"Cannot read {env_file}: {exc}", rc=ExitCode.VALIDATION)

        try:
            frontend = None
            if frontend_dir is not None:
                frontend_domain_values = _split_values(frontend_domains) or _split_values(
                    [typer.prompt("Frontend domain name(s), comma separated")]
                )
                frontend = FrontendDeployment(
                    name=frontend_name or f"{name}-frontend",
                    domains=frontend_domain_values,
                    source_dir=frontend_dir.expanduser().resolve(),
                    spa=spa,
                )
            deployment = Deployment(
                name=name,
                domains=domain_values,
                project_path=project_path,
                wsgi_module=wsgi_module,
                database_name=database_name,
                database_password=password,
                env_content=env_content,
                frontend=frontend,
            )
        except PlanningError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)

        runtime.toolkit.confirm = _confirm_callback(assume_no=yes)
        options = PlanOptions(
            recreate_database=recreate_database,
            reissue_certificate=reissue_certificate,
            skip_tls=skip_tls,
            email=email,
            extra_routes=_split_values(backend_routes),
        )
        with _deployment_lock(runtime, op, name):
            previous = _load_record(runtime, op, name)
            planner = Planner(
                runtime.config, runtime.toolkit, runtime.templates, runtime.probe, options=options
            )
            try:
                plan = planner.plan_backend(deployment, previous)
            except PlanningError as exc:
                _command_error(op, str(exc), rc=ExitCode.VALIDATION)

            _render_plan(plan)
            if dry_run:
                _dry_run_complete(
                    op,
                    f"{len(plan.rows())} step(s) planned for '{name}'.",
                    context={"plan": [list(row) for row in plan.rows()]},
                )
                return
            _confirm_or_cancel(op, f"Deploy '{name}' with these settings?", yes=yes)
            _execute_plan(runtime, op, plan, noun="deployment")


# ----------------------------------------------------------------------
# static-site
# ----------------------------------------------------------------------
@app.command("static-site")
def static_site(
    ctx: typer.Context,
    domain: str | None = typer.Option(None, "--domain", "-d", help="Primary domain of the site."),
    name: str | None = typer.Option(None, "--name", "-n", help="Nginx site name."),
    source_dir: Path | None = typer.Option(
        None,
        "--source-dir",
        file_okay=False,
        help="Built site directory (dist/) to publish.",
    ),
    www: bool = typer.Option(True, "--www/--no-www", help="Also serve www.<domain>."),
    spa: bool = typer.Option(False, "--spa/--no-spa", help="Route unknown paths to index.html."),
    email: str | None = EMAIL_OPTION,
    skip_tls: bool = SKIP_TLS_OPTION,
    reissue_certificate: bool = REISSUE_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    yes: bool = YES_OPTION,
) -> None:
    """Publish a standalone static site with no backend."""
    runtime = _get_runtime(ctx)
    domain = (domain or typer.prompt("Domain name")).strip().lower()
    name = name or typer.prompt("Site name", default=domain.split(".")[0])
    source_dir = source_dir or Path(typer.prompt("Built site directory (dist/)"))
    domain_values = (domain, f"www.{domain}") if www and not domain.startswith("www.") else (domain,)

    with runtime.logger.operation(
        "static-site",
        args={
            "domains": list(domain_values),
            "source_dir": str(source_dir),
            "skip_tls": skip_tls,
            "dry_run": dry_run,
        },
        target={"kind": "static-site", "name": name},
    ) as op:
        try:
            frontend = FrontendDeployment(
                name=name,
                domains=domain_values,
                source_dir=source_dir.expanduser().resolve(),
                spa=spa,
            )
        except PlanningError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)

        runtime.toolkit.confirm = _confirm_callback(assume_no=yes)
        options = PlanOptions(
            reissue_certificate=reissue_certificate, skip_tls=skip_tls, email=email
        )
        with _deployment_lock(runtime, op, name):
            previous = _load_record(runtime, op, name)
            planner = Planner(
                runtime.config, runtime.toolkit, runtime.templates, runtime.probe, options=options
            )
            try:
                plan = planner.plan_static_site(frontend, previous)
            except PlanningError as exc:
                _command_error(op, str(exc), rc=ExitCode.VALIDATION)

            _render_plan(plan)
            if dry_run:
                _dry_run_complete(
                    op,
                    f"{len(plan.rows())} step(s) planned for '{name}'.",
                    context={"plan": [list(row) for row in plan.rows()]},
                )
                return
            _confirm_or_cancel(op, f"Publish '{domain}' from {frontend.source_dir}?", yes=yes)
            _execute_plan(runtime, op, plan, noun="site")


# ----------------------------------------------------------------------
# teardown
# ----------------------------------------------------------------------
@app.command()
def teardown(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Deployment to tear down."),
    drop_databases: list[str] | None = typer.Option(
        None,
        "--drop-database",
        help="Additional database to drop (confirmed individually).",
    ),
    purge_packages: list[str] | None = typer.Option(
        None,
        "--purge-package",
        help="Additional apt package to purge (confirmed individually).",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip the overall confirmation. Destructive questions are answered 'no'.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Answer 'yes' to every destructive question (databases, packages, certificates).",
    ),
) -> None:
    """Reverse a committed deployment using its registry record."""
    runtime = _get_runtime(ctx)
    extra_databases = _split_values(drop_databases)
    extra_packages = _split_values(purge_packages)
    with runtime.logger.operation(
        "teardown",
        args={
            "drop_databases": list(extra_databases),
            "purge_packages": list(extra_packages),
            "force": force,
        },
        target={"kind": "deployment", "name": name},
    ) as op:
        try:
            validate_name(name)
        except PlanningError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)

        with _deployment_lock(runtime, op, name):
            record = _load_record(runtime, op, name)
            if record is None:
                console.print(
                    f"[yellow]No registry record for '{name}'; "
                    "only the databases and packages named on the command line are handled.[/yellow]"
                )
            else:
                _render_record(record)
            _confirm_or_cancel(op, f"Tear down '{name}'?", yes=yes or force)

            runtime.toolkit.confirm = _confirm_callback(assume_no=yes, assume_yes=force)
            pipeline = TeardownPipeline(runtime.resources, runtime.toolkit, operation=op)
            try:
                report = pipeline.run(
                    name, extra_databases=extra_databases, extra_packages=extra_packages
                )
            except StateRegistryError as exc:
                _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
            _render_teardown(report)

            if not report.succeeded:
                _command_error(
                    op,
                    f"Teardown of '{name}' left {len(report.failed)} resource(s) for manual cleanup.",
                    rc=ExitCode.PROVIDER,
                    errors=report.warnings,
                    context=report.to_dict(),
                )
            changed = len(report.removed)
            if report.record_found:
                console.print(f"[green]Teardown of '{name}' complete.[/green]")
                op.success("Teardown complete.", changed=changed, context=report.to_dict())
            else:
                op.warning(
                    "No registry record found.",
                    warnings=report.warnings,
                    changed=changed,
                    context=report.to_dict(),
                )


def _render_teardown(report: TeardownReport) -> None:
    if not report.entries:
        return
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Resource", style="bold")
    table.add_column("Result")
    table.add_column("Detail")
    colours = {
        RollbackStatus.ROLLED_BACK: "green",
        RollbackStatus.ALREADY_ABSENT: "green",
        RollbackStatus.SKIPPED: "yellow",
        RollbackStatus.FAILED: "red",
    }
    for entry in report.entries:
        colour = colours[entry.status]
        table.add_row(
            entry.descriptor.label(),
            f"[{colour}]{status_word(entry.status)}[/{colour}]",
            entry.detail or "",
        )
    console.print(table)


def _render_record(record: DeploymentRecord) -> None:
    table = Table(
        title=f"'{record.deployment_name}' committed {record.timestamp}",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Stage", style="bold")
    table.add_column("Resource")
    table.add_column("Location")
    table.add_column("Owned")
    for resource in record.resources:
        table.add_row(
            resource.stage,
            resource.descriptor.label(),
            resource.descriptor.locator,
            "yes" if resource.changed else "no",
        )
    console.print(table)


# ----------------------------------------------------------------------
# list / show
# ----------------------------------------------------------------------
@app.command("list")
def list_deployments(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List committed deployments on this host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "list",
        args={"json": json_output},
        target={"kind": "registry"},
    ) as op:
        try:
            records = runtime.resources.list()
        except StateRegistryError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)

        if json_output:
            console.print_json(data=[record.to_dict() for record in records])
            op.success("Rendered deployments as JSON.", changed=0)
            return
        if not records:
            console.print("No deployments recorded.")
            op.success("No deployments recorded.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Name", style="bold")
        table.add_column("Type")
        table.add_column("Domains")
        table.add_column("Resources", justify="right")
        table.add_column("Committed")
        for record in records:
            metadata = record.metadata
            domains = metadata.get("domains") or []
            table.add_row(
                record.deployment_name,
                str(metadata.get("type", "-")),
                ", ".join(str(domain) for domain in domains),
                str(len(record.resources)),
                record.timestamp,
            )
        console.print(table)
        op.success(f"Listed {len(records)} deployment(s).", changed=0)


@app.command()
def show(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Deployment to inspect."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the committed resources of a deployment."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "show",
        args={"json": json_output},
        target={"kind": "deployment", "name": name},
    ) as op:
        try:
            validate_name(name)
        except PlanningError as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        record = _load_record(runtime, op, name)
        if record is None:
            _command_error(op, f"Deployment '{name}' is not recorded.", rc=ExitCode.VALIDATION)

        if json_output:
            console.print_json(data=record.to_dict())
            op.success("Rendered deployment as JSON.", changed=0)
            return
        _render_record(record)
        urls = record.metadata.get("urls") or []
        for url in urls:
            console.print(f"URL: {url}")
        op.success("Rendered deployment.", changed=0)


# ----------------------------------------------------------------------
# config
# ----------------------------------------------------------------------
@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]

"""Turn a deployment description into the stages the executor runs.

Planning renders every template and validates every input before anything
on the host changes, so a missing parameter surfaces as
:class:`~deployctl.errors.PlanningError` with nothing to roll back.
"""
from __future__ import annotations

import secrets
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..actions import (
    Action,
    CreateDatabase,
    DisableDefaultSite,
    EnsureDirectory,
    EnsureHostService,
    InstallPackages,
    InstallServiceUnit,
    InstallTmpfiles,
    IssueCertificate,
    PrepareApplication,
    StartService,
    SyncStaticFiles,
    Toolkit,
    WriteFile,
    WriteProxyConfig,
)
from ..config import AppConfig
from ..errors import PlanningError
from ..layout import HostLayout
from ..models import Deployment, FrontendDeployment, ResourceDescriptor, ResourceKind
from ..state.resources import DeploymentRecord
from ..templates import TemplateEngine
from ..verification import DatabaseCheck, EndpointCheck, ServiceCheck, VerificationProbe
from . import stage as stages
from .stage import Stage, check_label, ordered

BACKEND_ROUTES: tuple[str, ...] = ("admin", "api", "docs", "swagger", "auth", "accounts")
CORS_HEADERS = (
    "Accept,Authorization,Cache-Control,Content-Type,DNT,If-Modified-Since,"
    "Keep-Alive,Origin,User-Agent,X-Requested-With"
)


@dataclass(frozen=True)
class PlanOptions:
    """Operator choices that change what a run may destroy or skip."""

    recreate_database: bool = False
    reissue_certificate: bool = False
    skip_tls: bool = False
    email: str | None = None
    extra_routes: tuple[str, ...] = ()


@dataclass
class Plan:
    """Ordered stages for one deployment plus what to report afterwards."""

    deployment: str
    stages: list[Stage]
    summary: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    urls: list[Any] = field(default_factory=list)

    def resolved_urls(self) -> list[str]:
        """Return public URLs, using https only where a certificate was installed."""
        return [_resolve(url) for url in self.urls]

    def final_summary(self) -> dict[str, Any]:
        """Return the operator summary with URLs resolved after the run."""
        return {**self.summary, "urls": self.resolved_urls()}

    def final_metadata(self) -> dict[str, Any]:
        """Return registry metadata with URLs resolved at commit time."""
        return {**self.metadata, "urls": self.resolved_urls()}

    def rows(self) -> list[tuple[str, str, str]]:
        """Return ``(stage, resource, locator)`` rows for a dry-run listing."""
        result: list[tuple[str, str, str]] = []
        for stage in self.stages:
            for action in stage.actions:
                result.append((stage.name, action.descriptor.label(), action.descriptor.locator))
            for check in stage.checks:
                result.append((stage.name, f"check:{check_label(check)}", ""))
        return result


class Planner:
    """Build stages for backend deployments and standalone static sites."""

    def __init__(
        self,
        config: AppConfig,
        toolkit: Toolkit,
        templates: TemplateEngine,
        probe: VerificationProbe,
        *,
        options: PlanOptions | None = None,
    ) -> None:
        """Bind the planner to configuration, providers and renderer."""
        self.config = config
        self.toolkit = toolkit
        self.templates = templates
        self.probe = probe
        self.options = options or PlanOptions()
        self.layout = HostLayout.from_config(config)

    @property
    def tls_active(self) -> bool:
        """Return True when certificates are part of the plan."""
        return self.config.tls.enabled and not self.options.skip_tls

    # ------------------------------------------------------------------
    # Backend
    # ------------------------------------------------------------------
    def plan_backend(
        self,
        deployment: Deployment,
        previous: DeploymentRecord | None = None,
    ) -> Plan:
        """Return the plan for *deployment* and its optional frontend."""
        project = deployment.project_path
        if not project.is_dir():
            raise PlanningError(f"Project directory {project} does not exist.")
        requirements = project / self.config.application.requirements_file
        if not requirements.is_file():
            raise PlanningError(f"Requirements file {requirements} does not exist.")

        plan_stages = [
            self._backend_dependencies(),
            self._database(deployment, previous),
        ]
        runtime, service_descriptor = self._runtime_config(deployment)
        plan_stages.append(runtime)
        plan_stages.append(self._reverse_proxy(deployment, previous))
        certificate = self._certificate(deployment.domains, deployment.name)
        if certificate is not None:
            plan_stages.append(Stage(stages.CERTIFICATE, [certificate]))
        url = self._url_for(deployment.primary_domain, certificate)
        plan_stages.append(
            Stage(
                stages.VERIFICATION,
                checks=[
                    ServiceCheck(
                        self.toolkit.systemd,
                        service_descriptor,
                        unit=self.layout.service_unit(deployment.name),
                        socket_path=self.layout.socket_path(deployment.name),
                        attempts=self.config.verification.attempts,
                        delay=1.0,
                        sleep=self.probe.sleep,
                    ),
                    EndpointCheck(self.probe, url),
                ],
            )
        )

        urls = [url]
        frontend_meta: dict[str, Any] | None = None
        if deployment.frontend is not None:
            frontend = deployment.frontend
            frontend_stages, frontend_url = self._frontend_stages(
                frontend,
                previous,
                backend=self._backend_proxy_context(deployment),
                standalone=False,
            )
            plan_stages.extend(frontend_stages)
            urls.append(frontend_url)
            frontend_meta = {
                "name": frontend.name,
                "domains": list(frontend.domains),
                "source_dir": str(frontend.source_dir),
                "spa": frontend.spa,
            }

        summary = {
            "service": self.layout.service_unit(deployment.name),
            "socket": str(self.layout.socket_path(deployment.name)),
            "site": str(self.layout.site_path(deployment.name)),
            "project": str(project),
            "database": deployment.database_name,
            "logs": [
                str(self.layout.app_access_log(deployment.name)),
                str(self.layout.app_error_log(deployment.name)),
                str(self.layout.nginx_access_log(deployment.name)),
                str(self.layout.nginx_error_log(deployment.name)),
            ],
            "helpers": [
                str(self.layout.update_script(project)),
                str(self.layout.monitor_script(project)),
            ],
        }
        metadata = {
            "type": "backend",
            "domains": list(deployment.domains),
            "project_path": str(project),
            "database": deployment.database_name,
            "tls": self.tls_active,
            "frontend": frontend_meta,
        }
        return Plan(
            deployment.name,
            ordered(plan_stages),
            summary=summary,
            metadata=metadata,
            urls=urls,
        )

    def _backend_dependencies(self) -> Stage:
        groups = [("toolchain", self.config.packages.toolchain), ("server", self.config.packages.server)]
        if self.tls_active:
            groups.append(("tls", self.config.packages.tls))
        actions: list[Action] = self._package_actions(groups)
        actions.append(self._host_service("postgresql"))
        actions.append(self._host_service("nginx"))
        return Stage(stages.DEPENDENCIES, actions)

    def _database(
        self,
        deployment: Deployment,
        previous: DeploymentRecord | None,
    ) -> Stage:
        postgres = self.config.postgres
        descriptor = _descriptor(
            ResourceKind.DATABASE,
            deployment.database_name,
            f"postgresql://{postgres.host}:{postgres.port}/{deployment.database_name}",
        )
        known = previous is not None and any(
            res.descriptor == descriptor for res in previous.resources
        )
        action = CreateDatabase(
            descriptor,
            self.toolkit,
            database=deployment.database_name,
            owner=postgres.admin_user,
            password=deployment.database_password,
            recreate=self.options.recreate_database,
            known=known,
        )
        check = DatabaseCheck(
            self.toolkit.postgres,
            descriptor,
            database=deployment.database_name,
            user=postgres.admin_user,
            password=deployment.database_password,
        )
        return Stage(stages.DATABASE, [action], [check])

    def _runtime_config(self, deployment: Deployment) -> tuple[Stage, ResourceDescriptor]:
        config = self.config
        layout = self.layout
        name = deployment.name
        project = deployment.project_path
        venv = layout.venv_path(project)
        user, group = config.service_user, config.service_group
        package = deployment.wsgi_module.removesuffix(".wsgi")
        unit = layout.service_unit(name)

        log_dir = EnsureDirectory(
            _path_descriptor(ResourceKind.DIRECTORY, config.paths.app_log_dir),
            self.toolkit,
            path=config.paths.app_log_dir,
            owner=user,
            group=group,
        )
        socket_dir = EnsureDirectory(
            _path_descriptor(ResourceKind.DIRECTORY, config.paths.socket_dir),
            self.toolkit,
            path=config.paths.socket_dir,
            owner=user,
            group=config.web_group,
        )
        tmpfiles_path = layout.tmpfiles_path(name)
        tmpfiles = InstallTmpfiles(
            _path_descriptor(ResourceKind.RENDERED_FILE, tmpfiles_path),
            self.toolkit,
            path=tmpfiles_path,
            content=self.templates.render_to_string(
                "tmpfiles/gunicorn.conf.j2",
                {
                    "socket_dir": str(config.paths.socket_dir),
                    "service_user": user,
                    "web_group": config.web_group,
                },
            ),
        )
        env_path = layout.env_file(project)
        env_file = WriteFile(
            _path_descriptor(ResourceKind.RENDERED_FILE, env_path),
            self.toolkit,
            path=env_path,
            content=self.templates.render_to_string(
                "env/dotenv.j2",
                {
                    "secret_key": _existing_secret_key(env_path) or secrets.token_urlsafe(50),
                    "env_content": (deployment.env_content or "").strip(),
                    "database_name": deployment.database_name,
                    "database_user": config.postgres.admin_user,
                    "database_password": deployment.database_password,
                    "database_host": config.postgres.host,
                    "database_port": config.postgres.port,
                    "allowed_hosts": [*deployment.domains, "localhost", "127.0.0.1"],
                },
            ),
            mode=0o640,
            owner=user,
            group=group,
        )
        gunicorn_path = layout.gunicorn_config(project)
        gunicorn = config.gunicorn
        gunicorn_conf = WriteFile(
            _path_descriptor(ResourceKind.RENDERED_FILE, gunicorn_path),
            self.toolkit,
            path=gunicorn_path,
            content=self.templates.render_to_string(
                "gunicorn/gunicorn.conf.py.j2",
                {
                    "app_name": name,
                    "bind": layout.bind_address(name),
                    "workers": gunicorn.workers,
                    "max_requests": gunicorn.max_requests,
                    "timeout": gunicorn.timeout,
                    "keepalive": gunicorn.keepalive,
                    "service_user": user,
                    "service_group": group,
                    "error_log": str(layout.app_error_log(name)),
                    "access_log": str(layout.app_access_log(name)),
                    "log_level": gunicorn.log_level,
                },
            ),
            owner=user,
            group=group,
        )
        application = config.application
        prepare = PrepareApplication(
            _path_descriptor(ResourceKind.DIRECTORY, venv),
            self.toolkit,
            project=project,
            venv=venv,
            requirements=project / application.requirements_file,
            extra_packages=application.extra_requirements,
            hooks=application.hooks,
            environment={"DJANGO_SETTINGS_MODULE": f"{package}.settings"},
        )
        service_descriptor = _descriptor(
            ResourceKind.SERVICE_UNIT, unit, str(layout.service_unit_path(name))
        )
        install_unit = InstallServiceUnit(
            service_descriptor,
            self.toolkit,
            unit=unit,
            content=self.templates.render_to_string(
                "systemd/gunicorn.service.j2",
                {
                    "app_name": name,
                    "service_user": user,
                    "service_group": group,
                    "project_path": str(project),
                    "venv_path": str(venv),
                    "settings_module": f"{package}.settings",
                    "gunicorn_config": str(gunicorn_path),
                    "wsgi_module": f"{package}.wsgi",
                },
            ),
        )
        start = StartService(
            service_descriptor,
            self.toolkit,
            unit=unit,
            triggers=[env_file, gunicorn_conf, prepare, install_unit],
        )
        frontend_ctx = None
        if deployment.frontend is not None:
            frontend_ctx = {
                "name": deployment.frontend.name,
                "domain": deployment.frontend.primary_domain,
            }
        update_path = layout.update_script(project)
        update_script = WriteFile(
            _path_descriptor(ResourceKind.RENDERED_FILE, update_path),
            self.toolkit,
            path=update_path,
            content=self.templates.render_to_string(
                "scripts/deploy_update.sh.j2",
                {
                    "app_name": name,
                    "project_path": str(project),
                    "venv_path": str(venv),
                    "requirements_file": application.requirements_file,
                    "hooks": list(application.hooks),
                    "service_unit": unit,
                    "frontend": frontend_ctx,
                },
            ),
            mode=0o755,
            owner=user,
            group=group,
        )
        monitor_path = layout.monitor_script(project)
        monitor_script = WriteFile(
            _path_descriptor(ResourceKind.RENDERED_FILE, monitor_path),
            self.toolkit,
            path=monitor_path,
            content=self.templates.render_to_string(
                "scripts/monitor_logs.sh.j2",
                {"app_name": name, "access_log": str(layout.app_access_log(name))},
            ),
            mode=0o755,
            owner=user,
            group=group,
        )
        actions: list[Action] = [
            log_dir,
            socket_dir,
            tmpfiles,
            env_file,
            gunicorn_conf,
            prepare,
            install_unit,
            start,
            update_script,
            monitor_script,
        ]
        return Stage(stages.RUNTIME_CONFIG, actions), service_descriptor

    def _reverse_proxy(
        self,
        deployment: Deployment,
        previous: DeploymentRecord | None,
    ) -> Stage:
        actions: list[Action] = []
        if self.config.nginx.disable_default_site:
            default = self.config.nginx.default_site
            actions.append(
                DisableDefaultSite(
                    _descriptor(
                        ResourceKind.PROXY_CONFIG,
                        default,
                        str(self.layout.paths.sites_enabled / default),
                    ),
                    self.toolkit,
                    site=default,
                )
            )
        name = deployment.name
        content = self.templates.render_to_string(
            "nginx/backend.conf.j2",
            {
                "app_name": name,
                "server_names": list(deployment.domains),
                "access_log": str(self.layout.nginx_access_log(name)),
                "error_log": str(self.layout.nginx_error_log(name)),
                **self._backend_proxy_context(deployment),
            },
        )
        actions.append(self._proxy_action(name, content, previous))
        return Stage(stages.REVERSE_PROXY, actions)

    def _backend_proxy_context(self, deployment: Deployment) -> dict[str, Any]:
        project = deployment.project_path
        return {
            "socket_path": str(self.layout.socket_path(deployment.name)),
            "static_root": str(project / "staticfiles"),
            "media_root": str(project / "media"),
            "routes": [*BACKEND_ROUTES, *self.options.extra_routes],
            "cors": True,
            "cors_headers": CORS_HEADERS,
        }

    # ------------------------------------------------------------------
    # Frontend
    # ------------------------------------------------------------------
    def plan_static_site(
        self,
        frontend: FrontendDeployment,
        previous: DeploymentRecord | None = None,
    ) -> Plan:
        """Return the plan for a standalone static site with no backend."""
        plan_stages, url = self._frontend_stages(
            frontend, previous, backend=None, standalone=True
        )
        web_root = self.layout.web_root(frontend.primary_domain)
        summary = {
            "site": str(self.layout.site_path(frontend.name)),
            "web_root": str(web_root),
            "logs": [
                str(self.layout.nginx_access_log(frontend.name)),
                str(self.layout.nginx_error_log(frontend.name)),
            ],
        }
        metadata = {
            "type": "static-site",
            "domains": list(frontend.domains),
            "source_dir": str(frontend.source_dir),
            "web_root": str(web_root),
            "tls": self.tls_active,
        }
        if previous is not None:
            metadata["previous_timestamp"] = previous.timestamp
        return Plan(
            frontend.name,
            ordered(plan_stages),
            summary=summary,
            metadata=metadata,
            urls=[url],
        )

    def _frontend_stages(
        self,
        frontend: FrontendDeployment,
        previous: DeploymentRecord | None,
        *,
        backend: dict[str, Any] | None,
        standalone: bool,
    ) -> tuple[list[Stage], Any]:
        source = frontend.source_dir
        if not source.is_dir():
            raise PlanningError(f"Frontend build directory {source} does not exist.")
        if not (source / "index.html").is_file():
            raise PlanningError(f"Frontend build directory {source} has no index.html.")

        groups = [("frontend", self.config.packages.frontend)]
        if standalone and self.tls_active:
            groups.append(("tls", self.config.packages.tls))
        dependencies: list[Action] = self._package_actions(groups)
        if standalone:
            dependencies.append(self._host_service("nginx"))

        web_root = self.layout.web_root(frontend.primary_domain)
        sync = SyncStaticFiles(
            _path_descriptor(ResourceKind.DIRECTORY, web_root),
            self.toolkit,
            destination=web_root,
            source=source,
            owner=self.config.web_group,
            group=self.config.web_group,
        )
        content = self.templates.render_to_string(
            "nginx/frontend.conf.j2",
            {
                "app_name": frontend.name,
                "server_names": list(frontend.domains),
                "access_log": str(self.layout.nginx_access_log(frontend.name)),
                "error_log": str(self.layout.nginx_error_log(frontend.name)),
                "web_root": str(web_root),
                "spa": frontend.spa,
                "backend": backend,
            },
        )
        proxy = self._proxy_action(frontend.name, content, previous)
        certificate = self._certificate(frontend.domains, frontend.name)
        url = self._url_for(frontend.primary_domain, certificate)
        result = [
            Stage(stages.FRONTEND_DEPENDENCIES, dependencies),
            Stage(stages.FRONTEND_PROXY, [sync, proxy]),
        ]
        if certificate is not None:
            result.append(Stage(stages.FRONTEND_CERTIFICATE, [certificate]))
        result.append(Stage(stages.FRONTEND_VERIFICATION, checks=[EndpointCheck(self.probe, url)]))
        return result, url

    # ------------------------------------------------------------------
    # Shared pieces
    # ------------------------------------------------------------------
    def _package_actions(self, groups: Iterable[tuple[str, tuple[str, ...]]]) -> list[Action]:
        return [
            InstallPackages(
                _descriptor(ResourceKind.PACKAGE, group, " ".join(packages)),
                self.toolkit,
                packages=packages,
            )
            for group, packages in groups
            if packages
        ]

    def _host_service(self, unit: str) -> Action:
        return EnsureHostService(
            _descriptor(ResourceKind.SERVICE_UNIT, unit, f"{unit}.service"),
            self.toolkit,
            unit=unit,
        )

    def _proxy_action(
        self,
        site: str,
        content: str,
        previous: DeploymentRecord | None,
    ) -> WriteProxyConfig:
        descriptor = _descriptor(
            ResourceKind.PROXY_CONFIG,
            self.layout.site_name(site),
            str(self.layout.site_path(site)),
        )
        committed = _committed_params(previous, descriptor, WriteProxyConfig.name)
        return WriteProxyConfig(
            descriptor,
            self.toolkit,
            site=self.layout.site_name(site),
            content=content,
            committed_digest=committed.get("committed_digest"),
        )

    def _certificate(self, domains: tuple[str, ...], site: str) -> IssueCertificate | None:
        if not self.tls_active:
            return None
        cert_name = domains[0]
        email = self.options.email or self.config.tls.email
        return IssueCertificate(
            _descriptor(
                ResourceKind.CERTIFICATE,
                cert_name,
                str(self.config.tls.live_dir / cert_name),
            ),
            self.toolkit,
            cert_name=cert_name,
            domains=domains,
            email=email,
            redirect=self.config.tls.redirect,
            required=self.config.tls.required,
            reissue=self.options.reissue_certificate,
            site=self.layout.site_name(site),
        )

    @staticmethod
    def _url_for(domain: str, certificate: IssueCertificate | None) -> Any:
        if certificate is None:
            return f"http://{domain}/"

        def resolve() -> str:
            scheme = "https" if certificate.installed else "http"
            return f"{scheme}://{domain}/"

        return resolve


def _descriptor(kind: ResourceKind, identifier: str, locator: str) -> ResourceDescriptor:
    return ResourceDescriptor(kind=kind, identifier=identifier, locator=locator)


def _path_descriptor(kind: ResourceKind, path: Path) -> ResourceDescriptor:
    return ResourceDescriptor(kind=kind, identifier=str(path), locator=str(path))


def _committed_params(
    previous: DeploymentRecord | None,
    descriptor: ResourceDescriptor,
    action: str,
) -> dict[str, Any]:
    """Return the recorded parameters of *descriptor* from the previous run."""
    if previous is None:
        return {}
    for resource in previous.resources:
        if resource.descriptor == descriptor and resource.action == action:
            return dict(resource.params)
    return {}


def _resolve(url: Any) -> str:
    return url() if callable(url) else str(url)


def _existing_secret_key(env_path: Path) -> str | None:
    """Return ``SECRET_KEY`` from an existing environment file so redeploys keep sessions."""
    try:
        text = env_path.read_text(encoding="utf-8")
    except (FileNotFoundError, PermissionError):
        return None
    except UnicodeDecodeError as exc:
        raise PlanningError(f"Environment file {env_path} is not UTF-8 text.") from exc
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() == "SECRET_KEY" and value.strip():
            return value.strip()
    return None


__all__ = ["BACKEND_ROUTES", "Plan", "PlanOptions", "Planner"]

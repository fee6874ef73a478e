"""Derive every host resource name from a deployment name.

The application name alone determines the service unit, nginx site, log
files and socket path. That property is what makes re-runs idempotent and
teardown deterministic, so nothing else in the package builds these paths.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import AppConfig, PathsConfig


@dataclass(frozen=True)
class HostLayout:
    """Naming scheme for resources owned by a deployment."""

    paths: PathsConfig
    venv_name: str = "venv"

    @classmethod
    def from_config(cls, config: AppConfig) -> HostLayout:
        """Build the layout from loaded configuration."""
        return cls(paths=config.paths, venv_name=config.application.venv_name)

    # Service manager --------------------------------------------------
    def service_unit(self, name: str) -> str:
        """Return the systemd unit name for *name*."""
        return f"gunicorn-{name}.service"

    def service_unit_path(self, name: str) -> Path:
        """Return the unit file path for *name*."""
        return self.paths.systemd_dir / self.service_unit(name)

    def tmpfiles_path(self, name: str) -> Path:
        """Return the tmpfiles.d entry keeping the socket directory across reboots."""
        return self.paths.tmpfiles_dir / f"gunicorn-{name}.conf"

    def socket_path(self, name: str) -> Path:
        """Return the unix socket the application server binds."""
        return self.paths.socket_dir / f"gunicorn-{name}.sock"

    def bind_address(self, name: str) -> str:
        """Return the gunicorn ``bind`` value."""
        return f"unix:{self.socket_path(name)}"

    # Logs ---------------------------------------------------------------
    def app_access_log(self, name: str) -> Path:
        """Return the gunicorn access log path."""
        return self.paths.app_log_dir / f"{name}-access.log"

    def app_error_log(self, name: str) -> Path:
        """Return the gunicorn error log path."""
        return self.paths.app_log_dir / f"{name}-error.log"

    def nginx_access_log(self, name: str) -> Path:
        """Return the nginx access log path for the site."""
        return self.paths.nginx_log_dir / f"{name}.access.log"

    def nginx_error_log(self, name: str) -> Path:
        """Return the nginx error log path for the site."""
        return self.paths.nginx_log_dir / f"{name}.error.log"

    # Reverse proxy ------------------------------------------------------
    def site_name(self, name: str) -> str:
        """Return the nginx site file name."""
        return name

    def site_path(self, name: str) -> Path:
        """Return the nginx sites-available path."""
        return self.paths.sites_available / self.site_name(name)

    # Project tree -------------------------------------------------------
    def venv_path(self, project_path: Path) -> Path:
        """Return the virtualenv inside the project."""
        return project_path / self.venv_name

    def env_file(self, project_path: Path) -> Path:
        """Return the rendered environment file path."""
        return project_path / ".env"

    def gunicorn_config(self, project_path: Path) -> Path:
        """Return the rendered application server configuration path."""
        return project_path / "gunicorn.conf.py"

    def update_script(self, project_path: Path) -> Path:
        """Return the generated redeploy helper path."""
        return project_path / "deploy_update.sh"

    def monitor_script(self, project_path: Path) -> Path:
        """Return the generated log monitor helper path."""
        return project_path / "monitor_logs.sh"

    # Frontend -----------------------------------------------------------
    def web_root(self, domain: str) -> Path:
        """Return the directory nginx serves for *domain*."""
        return self.paths.web_root / domain


__all__ = ["HostLayout"]

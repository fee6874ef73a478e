"""Nginx provider for managing vhost configurations."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..filesystem import atomic_write_text, read_text_if_exists


class NginxError(RuntimeError):
    """Raised when nginx operations fail."""


@dataclass(slots=True)
class SiteInstallResult:
    """Outcome of installing an nginx site configuration."""

    changed: bool
    previous: str | None = None
    previously_enabled: bool = False


@dataclass(slots=True)
class NginxProvider:
    """Write, enable and validate nginx site configurations."""

    sites_available: Path = Path("/etc/nginx/sites-available")
    sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    nginx_bin: str = "nginx"

    def site_path(self, site: str) -> Path:
        """Return the path to the nginx site configuration file."""
        return self.sites_available / site

    def enabled_path(self, site: str) -> Path:
        """Return the path of the symlink in sites-enabled for *site*."""
        return self.sites_enabled / site

    def read_site(self, site: str) -> str | None:
        """Return the current configuration text of *site*, if any."""
        existing = read_text_if_exists(self.site_path(site))
        return existing[0] if existing is not None else None

    def install_site(self, site: str, content: str) -> SiteInstallResult:
        """Write and enable *site*, validate with ``nginx -t`` and reload.

        Nothing is touched when the file already holds *content* and is
        enabled. A failed validation restores the previous file and link
        state before the error propagates so nginx keeps a working config.
        """
        previous = self.read_site(site)
        was_enabled = self.is_enabled(site)
        if previous == content and was_enabled:
            return SiteInstallResult(changed=False, previous=previous, previously_enabled=True)

        atomic_write_text(self.site_path(site), content, mode=0o644)
        self.enable(site)
        try:
            self.test_config()
        except NginxError:
            self.restore_site(site, previous, enabled=was_enabled)
            raise
        self.reload()
        return SiteInstallResult(changed=True, previous=previous, previously_enabled=was_enabled)

    def restore_site(self, site: str, content: str | None, *, enabled: bool) -> None:
        """Put *site* back to *content* (``None`` removes it) and link state."""
        if content is None:
            self.remove(site)
            return
        atomic_write_text(self.site_path(site), content, mode=0o644)
        if enabled:
            self.enable(site)
        else:
            self.disable(site)

    def enable(self, site: str) -> None:
        """Enable the site by creating a symlink in sites-enabled."""
        source = self.site_path(site)
        target = self.enabled_path(site)
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists() or target.is_symlink():
            try:
                if target.resolve() == source.resolve():
                    return
            except FileNotFoundError:
                # Broken symlink; replace it with a fresh one.
                pass
            target.unlink()
        target.symlink_to(source)

    def disable(self, site: str) -> bool:
        """Remove the sites-enabled entry; return ``False`` when absent."""
        target = self.enabled_path(site)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True

    def remove(self, site: str) -> bool:
        """Remove both the configuration and symlink; return ``False`` if neither existed."""
        disabled = self.disable(site)
        try:
            self.site_path(site).unlink()
        except FileNotFoundError:
            return disabled
        return True

    def site_exists(self, site: str) -> bool:
        """Return True when the site configuration exists."""
        return self.site_path(site).exists()

    def is_enabled(self, site: str) -> bool:
        """Return True when the site is enabled via a sites-enabled symlink."""
        target = self.enabled_path(site)
        if not target.is_symlink():
            return target.exists()
        try:
            return target.resolve() == self.site_path(site).resolve()
        except FileNotFoundError:
            return False

    def test_config(self) -> subprocess.CompletedProcess[str]:
        """Run ``nginx -t`` to validate the configuration."""
        return self._run_nginx(["-t"])

    def reload(self) -> subprocess.CompletedProcess[str]:
        """Reload nginx to apply configuration changes."""
        return self._run_nginx(["-s", "reload"])

    # ------------------------------------------------------------------
    def _run_nginx(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        command = [self.nginx_bin, *args]
        try:
            result = subprocess.run(  # noqa: S603, S607
                command,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise NginxError(f"{self.nginx_bin} not found: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise NginxError(
                f"{self.nginx_bin} {' '.join(args)} failed (exit {result.returncode}): {message}"
            )
        return result


__all__ = ["NginxError", "NginxProvider", "SiteInstallResult"]

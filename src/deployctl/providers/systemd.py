"""Systemd provider for application service units and tmpfiles entries."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..filesystem import atomic_write_text, read_text_if_exists
from .commands import describe_output, run_command


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Install and drive systemd units."""

    systemd_dir: Path = Path("/etc/systemd/system")
    systemctl_bin: str = "systemctl"
    journalctl_bin: str = "journalctl"
    tmpfiles_bin: str = "systemd-tmpfiles"

    def unit_path(self, unit: str) -> Path:
        """Return the full path for *unit*'s unit file."""
        return self.systemd_dir / unit

    def read_unit(self, unit: str) -> str | None:
        """Return the current unit file content, if any."""
        existing = read_text_if_exists(self.unit_path(unit))
        return existing[0] if existing is not None else None

    def install_unit(self, unit: str, content: str) -> bool:
        """Write the unit file; return ``False`` when it was already current."""
        path = self.unit_path(unit)
        if self.read_unit(unit) == content:
            return False
        atomic_write_text(path, content, mode=0o644)
        self.daemon_reload()
        return True

    def remove_unit(self, unit: str) -> bool:
        """Remove the unit file; return ``False`` when it did not exist."""
        path = self.unit_path(unit)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        self.daemon_reload()
        return True

    def enable(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Enable *unit*."""
        return self._systemctl("enable", unit)

    def disable(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Disable *unit*."""
        return self._systemctl("disable", unit)

    def start(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Start *unit*."""
        return self._systemctl("start", unit)

    def stop(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Stop *unit*."""
        return self._systemctl("stop", unit)

    def restart(self, unit: str) -> subprocess.CompletedProcess[str]:
        """Restart *unit*."""
        return self._systemctl("restart", unit)

    def is_active(self, unit: str) -> bool:
        """Return True when systemd reports *unit* as active."""
        return self._systemctl("is-active", unit, check=False).returncode == 0

    def is_enabled(self, unit: str) -> bool:
        """Return True when systemd reports *unit* as enabled."""
        return self._systemctl("is-enabled", unit, check=False).returncode == 0

    def unit_known(self, unit: str) -> bool:
        """Return True when systemd has any unit file for *unit*."""
        result = self._systemctl("list-unit-files", unit, check=False)
        return result.returncode == 0 and unit in (result.stdout or "")

    def logs(self, unit: str, *, lines: int = 20) -> str:
        """Return the last *lines* journal lines of *unit*, or a short error."""
        result = self._run_command(
            [self.journalctl_bin, "--unit", unit, "--no-pager", "--lines", str(lines)],
            check=False,
            error_prefix=self.journalctl_bin,
        )
        if result.returncode != 0:
            return f"(journal unavailable: {describe_output(result)})"
        return (result.stdout or "").strip()

    def tmpfiles_create(self, config: Path) -> subprocess.CompletedProcess[str]:
        """Apply a tmpfiles.d entry immediately."""
        return self._run_command(
            [self.tmpfiles_bin, "--create", str(config)],
            check=True,
            error_prefix=f"{self.tmpfiles_bin} --create",
        )

    def daemon_reload(self) -> None:
        """Reload unit files, tolerating hosts without a running systemd."""
        try:
            self._systemctl("daemon-reload")
        except SystemdError as exc:
            if "not found" in str(exc).lower():
                return
            raise

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        return self._run_command(args, check=check, error_prefix=f"{self.systemctl_bin} {command}")

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        return run_command(args, error_cls=SystemdError, check=check, error_prefix=error_prefix)


__all__ = ["SystemdError", "SystemdProvider"]

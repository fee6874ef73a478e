"""Apt provider used by the dependency stages."""
from __future__ import annotations

import subprocess
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .commands import run_command

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class PackageError(RuntimeError):
    """Raised when apt or dpkg operations fail."""


@dataclass(slots=True)
class AptProvider:
    """Query and change installed Debian packages."""

    apt_bin: str = "apt-get"
    dpkg_query_bin: str = "dpkg-query"
    _index_updated: bool = field(default=False, init=False, repr=False)

    def is_installed(self, package: str) -> bool:
        """Return True when dpkg reports *package* as installed."""
        result = self._run(
            [self.dpkg_query_bin, "-W", "-f=${Status}", package],
            check=False,
        )
        return result.returncode == 0 and "install ok installed" in (result.stdout or "")

    def missing(self, packages: Iterable[str]) -> list[str]:
        """Return the subset of *packages* that is not installed, in order."""
        return [package for package in packages if not self.is_installed(package)]

    def update(self) -> None:
        """Refresh the package index once per provider instance."""
        if self._index_updated:
            return
        self._run([self.apt_bin, "update", "-y"])
        self._index_updated = True

    def install(self, packages: Sequence[str]) -> None:
        """Install *packages* non-interactively."""
        if not packages:
            return
        self.update()
        self._run([self.apt_bin, "install", "-y", *packages])

    def purge(self, packages: Sequence[str]) -> None:
        """Purge *packages* and drop dependencies nothing else needs."""
        if not packages:
            return
        self._run([self.apt_bin, "purge", "-y", *packages])
        self._run([self.apt_bin, "autoremove", "-y"], check=False)

    # ------------------------------------------------------------------
    def _run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        return run_command(args, error_cls=PackageError, check=check, env=APT_ENV)


__all__ = ["AptProvider", "PackageError"]

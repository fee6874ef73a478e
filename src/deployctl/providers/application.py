"""Provider for the project's virtualenv and its build hooks."""
from __future__ import annotations

import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from .commands import run_command


class ApplicationError(RuntimeError):
    """Raised when creating the virtualenv or running a hook fails."""


@dataclass(slots=True)
class ApplicationProvider:
    """Create the virtualenv, install requirements and run project hooks."""

    python_bin: str = "python3"

    def create_venv(self, venv: Path) -> bool:
        """Create *venv*; return ``False`` when a usable one already exists."""
        if (venv / "bin" / "python").exists():
            return False
        self._run([self.python_bin, "-m", "venv", str(venv)])
        return True

    def pip_install(
        self,
        venv: Path,
        *,
        requirements: Path | None = None,
        packages: Sequence[str] = (),
    ) -> None:
        """Install a requirements file and extra packages into *venv*."""
        pip = str(venv / "bin" / "pip")
        if requirements is not None:
            if not requirements.exists():
                raise ApplicationError(f"Requirements file {requirements} does not exist.")
            self._run([pip, "install", "-r", str(requirements)])
        if packages:
            self._run([pip, "install", *packages])

    def run_hook(
        self,
        venv: Path,
        project: Path,
        hook: str,
        *,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``<venv>/bin/python <hook>`` inside *project*."""
        args = [str(venv / "bin" / "python"), *shlex.split(hook)]
        return self._run(args, cwd=project, env=env)

    # ------------------------------------------------------------------
    def _run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        return run_command(
            args,
            error_cls=ApplicationError,
            cwd=cwd,
            env=env,
            error_prefix=" ".join([Path(args[0]).name, *args[1:3]]),
        )


__all__ = ["ApplicationError", "ApplicationProvider"]

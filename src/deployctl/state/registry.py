"""Helpers for interacting with the deployctl state registry.

The registry directory (``/var/lib/deployctl/registry`` by default) stores one
YAML document per committed deployment under ``deployments/``. It lives outside
any project tree so that it survives project code changes. Every write goes
through a temporary file followed by ``os.replace`` so a crash mid-write never
leaves a half-written ledger behind.
"""
from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage deployctl state. Install with `pip install deployctl`."
    ) from exc


DEPLOYMENTS_DIR = "deployments"
_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class StateRegistryError(RuntimeError):
    """Raised when state registry operations fail."""


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML registry."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", self.root.expanduser())

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        (self.root / DEPLOYMENTS_DIR).mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def deployment_path(self, deployment: str) -> Path:
        """Return the registry file holding *deployment*'s record."""
        if not _SAFE_NAME.match(deployment):
            raise StateRegistryError(f"Invalid deployment name '{deployment}'.")
        return self.root / DEPLOYMENTS_DIR / f"{deployment}.yml"

    # Deployment helpers -----------------------------------------------
    def read_deployment(self, deployment: str) -> dict[str, object] | None:
        """Return the raw record for *deployment* if one was committed."""
        data = self._read_path(self.deployment_path(deployment), default=None)
        if data is None:
            return None
        if not isinstance(data, Mapping):
            raise StateRegistryError(
                f"Registry record for '{deployment}' must be a mapping."
            )
        return dict(data)

    def write_deployment(self, deployment: str, payload: Mapping[str, object]) -> None:
        """Persist the record for *deployment*."""
        self._write_path(self.deployment_path(deployment), payload)

    def remove_deployment(self, deployment: str) -> bool:
        """Delete the record for *deployment*; return ``False`` when absent."""
        path = self.deployment_path(deployment)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def list_deployments(self) -> list[str]:
        """Return the names of all committed deployments."""
        directory = self.root / DEPLOYMENTS_DIR
        if not directory.is_dir():
            return []
        return sorted(
            path.stem
            for path in directory.glob("*.yml")
            if path.is_file() and not path.name.startswith(".")
        )

    # ------------------------------------------------------------------
    def _read_path(self, path: Path, *, default: object | None) -> object | None:
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def _write_path(self, path: Path, payload: Mapping[str, object]) -> None:
        self.ensure_root()
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        except OSError as exc:
            raise StateRegistryError(f"Failed to write registry file {path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)


__all__ = ["StateRegistry", "StateRegistryError"]

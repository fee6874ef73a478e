"""Filesystem helpers shared by actions and the state registry."""
from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path


def atomic_write_text(path: Path, content: str, *, mode: int = 0o644) -> None:
    """Write *content* to *path* via a temporary file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


def read_text_if_exists(path: Path) -> tuple[str, int] | None:
    """Return ``(content, mode)`` for *path*, or ``None`` when it is missing.

    A file that is not UTF-8 text raises :class:`OSError` naming the path.
    """
    try:
        content = path.read_text(encoding="utf-8")
        mode = path.stat().st_mode & 0o7777
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as exc:
        raise OSError(f"{path} is not UTF-8 text: {exc}") from exc
    return content, mode


def apply_ownership(path: Path, owner: str | None, group: str | None) -> None:
    """Change ownership of *path* when an owner or group is requested."""
    if owner is None and group is None:
        return
    try:
        shutil.chown(path, user=owner, group=group)
    except LookupError as exc:
        raise OSError(f"Cannot set ownership {owner}:{group} on {path}: {exc}") from exc


def remove_path(path: Path) -> bool:
    """Remove a file, symlink or directory tree; return ``False`` if absent."""
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    return False


__all__ = ["apply_ownership", "atomic_write_text", "read_text_if_exists", "remove_path"]

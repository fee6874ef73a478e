"""Subprocess helper shared by the host providers."""
from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path


def run_command(
    args: Sequence[str],
    *,
    error_cls: type[RuntimeError],
    check: bool = True,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    input_text: str | None = None,
    error_prefix: str | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *args* and raise *error_cls* on a missing binary or non-zero exit."""
    merged_env = None
    if env:
        merged_env = {**os.environ, **env}
    try:
        result = subprocess.run(  # noqa: S603
            list(args),
            capture_output=True,
            text=True,
            check=False,
            env=merged_env,
            cwd=str(cwd) if cwd is not None else None,
            input=input_text,
        )
    except FileNotFoundError as exc:
        raise error_cls(f"{args[0]} not found: {exc}") from exc
    if check and result.returncode != 0:
        prefix = error_prefix or " ".join(args[:2])
        raise error_cls(f"{prefix} failed (exit {result.returncode}): {describe_output(result)}")
    return result


def describe_output(result: subprocess.CompletedProcess[str]) -> str:
    """Return the most useful line-trimmed output of a finished command."""
    stderr = (getattr(result, "stderr", "") or "").strip()
    stdout = (getattr(result, "stdout", "") or "").strip()
    return stderr or stdout or "no output"


__all__ = ["describe_output", "run_command"]

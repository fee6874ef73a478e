"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes enforced across the CLI."""

    OK = 0
    CANCELLED = 1
    VALIDATION = 2
    ENVIRONMENT = 3
    PROVIDER = 4
    VERIFICATION = 5
    INTERRUPTED = 130

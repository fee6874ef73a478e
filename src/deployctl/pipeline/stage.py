"""Stages: ordered groups of actions forming one provisioning phase."""
from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..actions import Action

DEPENDENCIES = "dependencies"
DATABASE = "database"
RUNTIME_CONFIG = "runtime-config"
REVERSE_PROXY = "reverse-proxy"
CERTIFICATE = "certificate"
VERIFICATION = "verification"
FRONTEND_DEPENDENCIES = "frontend-dependencies"
FRONTEND_PROXY = "frontend-proxy"
FRONTEND_CERTIFICATE = "frontend-certificate"
FRONTEND_VERIFICATION = "frontend-verification"

STAGE_ORDER: tuple[str, ...] = (
    DEPENDENCIES,
    DATABASE,
    RUNTIME_CONFIG,
    REVERSE_PROXY,
    CERTIFICATE,
    VERIFICATION,
    FRONTEND_DEPENDENCIES,
    FRONTEND_PROXY,
    FRONTEND_CERTIFICATE,
    FRONTEND_VERIFICATION,
)

Check = Callable[[], Any]


@dataclass
class Stage:
    """Actions applied strictly in order, then checks run against the result.

    A check is any callable that raises to fail the run; its ``name``
    attribute, when present, labels it in logs.
    """

    name: str
    actions: Sequence[Action] = field(default_factory=tuple)
    checks: Sequence[Check] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self.actions = tuple(self.actions)
        self.checks = tuple(self.checks)

    def __bool__(self) -> bool:
        return bool(self.actions or self.checks)


def check_label(check: Check) -> str:
    """Return a printable name for *check*."""
    return str(getattr(check, "name", None) or getattr(check, "__name__", type(check).__name__))


def ordered(stages: Sequence[Stage]) -> list[Stage]:
    """Return *stages* sorted into the fixed provisioning order.

    Unknown stage names are rejected and empty stages dropped.
    """
    positions = {name: index for index, name in enumerate(STAGE_ORDER)}
    for stage in stages:
        if stage.name not in positions:
            raise ValueError(f"Unknown stage '{stage.name}'")
    return sorted((stage for stage in stages if stage), key=lambda stage: positions[stage.name])


__all__ = [
    "CERTIFICATE",
    "DATABASE",
    "DEPENDENCIES",
    "FRONTEND_CERTIFICATE",
    "FRONTEND_DEPENDENCIES",
    "FRONTEND_PROXY",
    "FRONTEND_VERIFICATION",
    "REVERSE_PROXY",
    "RUNTIME_CONFIG",
    "STAGE_ORDER",
    "VERIFICATION",
    "Check",
    "Stage",
    "check_label",
    "ordered",
]

"""State registry helpers for deployctl."""
from __future__ import annotations

from .registry import StateRegistry, StateRegistryError
from .resources import DeploymentRecord, ResourceRecord, ResourceRegistry

__all__ = [
    "DeploymentRecord",
    "ResourceRecord",
    "ResourceRegistry",
    "StateRegistry",
    "StateRegistryError",
]

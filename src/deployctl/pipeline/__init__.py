"""Provisioning pipeline: stages, planner, executor and teardown."""
from __future__ import annotations

from .executor import PipelineExecutor, PipelineState, RollbackEntry, RollbackStatus, RunReport
from .planner import Plan, PlanOptions, Planner
from .stage import STAGE_ORDER, Stage, ordered
from .teardown import TeardownPipeline, TeardownReport

__all__ = [
    "STAGE_ORDER",
    "PipelineExecutor",
    "PipelineState",
    "Plan",
    "PlanOptions",
    "Planner",
    "RollbackEntry",
    "RollbackStatus",
    "RunReport",
    "Stage",
    "TeardownPipeline",
    "TeardownReport",
    "ordered",
]

"""
Project State Model
===================
Pipeline status of a project plus the health fields the heal loop owns.

The pipeline only moves forward: scanning → ... → sandboxing → sandbox_passed /
sandbox_failed → ... A terminal status (complete, degraded, failed) is never
reverted, and a status with a lower rank never overwrites a higher one.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class ProjectStatus(str, Enum):
    CREATED = "created"
    SCANNING = "scanning"
    SCAN_COMPLETE = "scan_complete"
    PLANNING = "planning"
    PLAN_READY = "plan_ready"
    GENERATING = "generating"
    GENERATION_COMPLETE = "generation_complete"
    SANDBOXING = "sandboxing"
    SANDBOX_RUNNING = "sandbox_running"
    SANDBOX_PASSED = "sandbox_passed"
    SANDBOX_FAILED = "sandbox_failed"
    NEEDS_MANUAL_FIX = "needs_manual_fix"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    VALIDATING = "validating"
    DEGRADED = "degraded"
    COMPLETE = "complete"
    FAILED = "failed"


_STATUS_RANK = {
    ProjectStatus.CREATED: 0,
    ProjectStatus.SCANNING: 1,
    ProjectStatus.SCAN_COMPLETE: 2,
    ProjectStatus.PLANNING: 3,
    ProjectStatus.PLAN_READY: 4,
    ProjectStatus.GENERATING: 5,
    ProjectStatus.GENERATION_COMPLETE: 6,
    ProjectStatus.SANDBOXING: 7,
    ProjectStatus.SANDBOX_RUNNING: 8,
    ProjectStatus.SANDBOX_PASSED: 9,
    ProjectStatus.SANDBOX_FAILED: 9,
    ProjectStatus.NEEDS_MANUAL_FIX: 9,
    ProjectStatus.DEPLOYING: 10,
    ProjectStatus.DEPLOYED: 11,
    ProjectStatus.VALIDATING: 12,
    ProjectStatus.DEGRADED: 13,
    ProjectStatus.COMPLETE: 13,
    ProjectStatus.FAILED: 99,
}

TERMINAL_STATUSES = frozenset({
    ProjectStatus.COMPLETE,
    ProjectStatus.DEGRADED,
    ProjectStatus.FAILED,
})


def can_transition(current: Optional[ProjectStatus], new: ProjectStatus) -> bool:
    """Return True if moving from ``current`` to ``new`` keeps the pipeline moving forward."""
    if current is None:
        return True
    if current in TERMINAL_STATUSES:
        return False
    return _STATUS_RANK[new] >= _STATUS_RANK[current]


class ProjectHealth(BaseModel):
    project_id: str
    status: ProjectStatus = ProjectStatus.CREATED
    sandbox_iterations: int = 0
    sandbox_health_score: int = 0
    failure_reason: str = ""

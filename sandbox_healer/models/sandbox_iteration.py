"""
Sandbox Iteration Model
=======================
Pydantic model representing one complete cycle of the heal loop.

Represents one loop cycle: Run → Classify → Fix.

Fields:
    project_id          — owning project
    iteration           — loop counter (1-based, contiguous per project)
    install_success     — stage outcome reported by the runner
    build_success       — stage outcome reported by the runner
    start_success       — stage outcome reported by the runner
    health_check_passed — stage outcome reported by the runner
    errors              — ClassifiedError list found in this iteration's logs
    fixes_applied       — descriptions of fixes applied after classification
    failed_fixes        — fix attempts that raised
    logs                — truncated runner log excerpt
    started_at / completed_at — runner timestamps
    health_score        — 0–100 score of this iteration's stage outcomes

Used by:
    - HealController to persist progress before every transition decision
    - Health scorer to compute the final project score
    - API to show per-iteration history
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from .classified_error import ClassifiedError


class SandboxIteration(BaseModel):
    project_id: str
    iteration: int
    install_success: bool = False
    build_success: bool = False
    start_success: bool = False
    health_check_passed: bool = False
    errors: List[ClassifiedError] = []
    fixes_applied: List[str] = []
    failed_fixes: List[str] = []
    logs: List[str] = []
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    health_score: int = 0

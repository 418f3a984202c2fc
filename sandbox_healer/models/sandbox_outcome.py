"""
Sandbox Outcome Model
Terminal result of one heal loop run for a project.
"""
from typing import List, Literal

from pydantic import BaseModel

from .classified_error import ClassifiedError
from .sandbox_iteration import SandboxIteration


class SandboxOutcome(BaseModel):
    project_id: str
    phase: Literal["healthy", "exhausted"]
    iterations: int
    final_health_score: int = 0
    last_errors: List[ClassifiedError] = []
    history: List[SandboxIteration] = []
    needs_user_input: List[ClassifiedError] = []

    @property
    def healthy(self) -> bool:
        return self.phase == "healthy"

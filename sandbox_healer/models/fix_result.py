"""
Fix Result Model
=================
Per-iteration summary of what the fix dispatcher did.

Fields:
    applied_fixes         — human-readable descriptions of fixes written to the project
    failed_fixes          — "<strategy>: <error>" for fix attempts that raised
    user_input_required   — errors whose strategy is USER_INPUT (never auto-applied)
    escalated_files       — files rewritten by the code repairer this iteration

Not persisted on its own; folded into the SandboxIteration record.
"""
from typing import List

from pydantic import BaseModel

from .classified_error import ClassifiedError


class FixResult(BaseModel):
    applied_fixes: List[str] = []
    failed_fixes: List[str] = []
    user_input_required: List[ClassifiedError] = []
    escalated_files: List[str] = []

    @property
    def deterministic_applied(self) -> bool:
        return bool(self.applied_fixes)

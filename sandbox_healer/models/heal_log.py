"""
Heal Log Model
One entry per repair written to a project (deterministic edit or AI rewrite).
"""
import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field


class HealLogEntry(BaseModel):
    project_id: str
    heal_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    iteration: int = 0
    type: Literal["deterministic", "ai_surgical"] = "deterministic"
    description: str = ""
    file: Optional[str] = None
    errors_fixed: int = 0
    success: bool = True
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

"""
Runner Result Model
Outcome of one sandbox execution: four stage booleans plus the flat log.
"""
from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunnerResult(BaseModel):
    install_success: bool = False
    build_success: bool = False
    start_success: bool = False
    health_check_passed: bool = False
    logs: List[str] = []
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime = Field(default_factory=_utcnow)

    @property
    def success(self) -> bool:
        return (
            self.install_success
            and self.build_success
            and self.start_success
            and self.health_check_passed
        )

    @classmethod
    def from_exit_code(cls, exit_code: int, logs: List[str], started_at: datetime) -> "RunnerResult":
        """
        Decode the sandbox exit-code convention into stage outcomes.

        0 = all passed, 1 = install failed, 2 = build failed,
        3 = start failed, 4 = health check failed. Any other code means
        the run died before a stage could report, so nothing passed.
        """
        if exit_code not in (0, 1, 2, 3, 4):
            return cls(logs=logs, started_at=started_at, completed_at=_utcnow())
        return cls(
            install_success=exit_code != 1,
            build_success=exit_code not in (1, 2),
            start_success=exit_code not in (1, 2, 3),
            health_check_passed=exit_code == 0,
            logs=logs,
            started_at=started_at,
            completed_at=_utcnow(),
        )

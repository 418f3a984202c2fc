"""
Heal State
==========
Explicit state value for the sandbox heal loop, advanced by pure step
functions. The HealController owns all I/O; nothing in this module touches
the runner, the store or the filesystem.

Phases:
    RUNNING   → runner is executing the current iteration
    ANALYZING → run failed, logs are being classified
    FIXING    → classified errors are being dispatched
    HEALTHY   → all four stages passed (terminal)
    EXHAUSTED → iteration budget spent without a healthy run (terminal)
    FATAL     → runner infrastructure fault (terminal)

Transitions:
    start()            → RUNNING, iteration 1
    on_run_complete()  → HEALTHY | ANALYZING
    on_classified()    → FIXING
    after_fixes()      → FIXING (escalate flag updated)
    advance()          → RUNNING, iteration + 1 | EXHAUSTED
    on_runner_fault()  → FATAL
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Tuple

from sandbox_healer.models.classified_error import ClassifiedError, ErrorCategory
from sandbox_healer.models.runner_result import RunnerResult
from sandbox_healer.parser.error_patterns import confidence_for, get_fix_strategy, get_severity


class LoopPhase(str, Enum):
    RUNNING = "running"
    ANALYZING = "analyzing"
    FIXING = "fixing"
    HEALTHY = "healthy"
    EXHAUSTED = "exhausted"
    FATAL = "fatal"

    @property
    def is_terminal(self) -> bool:
        return self in (LoopPhase.HEALTHY, LoopPhase.EXHAUSTED, LoopPhase.FATAL)


@dataclass(frozen=True)
class LoopState:
    phase: LoopPhase
    iteration: int
    max_iterations: int
    errors: Tuple[ClassifiedError, ...] = ()
    escalate: bool = False


class InvalidTransition(ValueError):
    """A step function was called from a phase that does not allow it."""


def _expect(state: LoopState, *phases: LoopPhase) -> None:
    if state.phase not in phases:
        allowed = ", ".join(p.value for p in phases)
        raise InvalidTransition(f"Cannot leave {state.phase.value} here (expected {allowed})")


UNCLASSIFIED_MESSAGE = "Sandbox failed but no known error pattern matched the logs"


def unknown_error(message: str = UNCLASSIFIED_MESSAGE) -> ClassifiedError:
    """Synthetic error used when a failed run produced nothing classifiable."""
    severity = get_severity(ErrorCategory.UNKNOWN)
    return ClassifiedError(
        category=ErrorCategory.UNKNOWN,
        confidence=confidence_for(severity),
        raw_message=message,
        severity=severity,
        fix_strategy=get_fix_strategy(ErrorCategory.UNKNOWN),
    )


# ---------------------------------------------------------------------------
# Step functions
# ---------------------------------------------------------------------------
def start(max_iterations: int) -> LoopState:
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")
    return LoopState(phase=LoopPhase.RUNNING, iteration=1, max_iterations=max_iterations)


def on_run_complete(state: LoopState, result: RunnerResult) -> LoopState:
    _expect(state, LoopPhase.RUNNING)
    if result.success:
        return replace(state, phase=LoopPhase.HEALTHY, errors=(), escalate=False)
    return replace(state, phase=LoopPhase.ANALYZING)


def on_classified(state: LoopState, errors) -> LoopState:
    """Zero classified errors become one synthetic UNKNOWN error, escalated."""
    _expect(state, LoopPhase.ANALYZING)
    errors = tuple(errors)
    if not errors:
        return replace(state, phase=LoopPhase.FIXING, errors=(unknown_error(),), escalate=True)
    return replace(state, phase=LoopPhase.FIXING, errors=errors, escalate=False)


def after_fixes(state: LoopState, deterministic_applied: bool) -> LoopState:
    _expect(state, LoopPhase.FIXING)
    return replace(state, escalate=state.escalate or not deterministic_applied)


def advance(state: LoopState) -> LoopState:
    _expect(state, LoopPhase.FIXING)
    next_iteration = state.iteration + 1
    if next_iteration > state.max_iterations:
        return replace(state, phase=LoopPhase.EXHAUSTED, iteration=next_iteration)
    return replace(
        state,
        phase=LoopPhase.RUNNING,
        iteration=next_iteration,
        errors=(),
        escalate=False,
    )


def on_runner_fault(state: LoopState) -> LoopState:
    return replace(state, phase=LoopPhase.FATAL)

"""
Heal Controller
===============
Drives the sandbox Run → Classify → Fix loop for one project.

The control decisions live in state/heal_state.py as pure step functions;
this class performs the I/O around each step:

    1. status → sandbox_running, phase_started event
    2. per iteration:
        a. sandbox_iteration event, runner call
        b. classify logs (failed runs only)
        c. persist the iteration record before any transition decision
        d. deterministic fixes, then AI escalation when none applied
           (or when nothing was classifiable)
        e. update the record with applied / failed fixes
    3. status → sandbox_passed | sandbox_failed with iteration count and
       last health score, phase_complete event

Fault Tolerance:
    - Store and event sink failures are logged and swallowed
    - Fix failures are recorded on the iteration, never raised
    - Exceptions from the runner call mark the project failed, emit
      phase_failed and re-raise
"""
import logging
from typing import Any, Dict, List, Optional

from sandbox_healer.agents.fix_dispatcher import FixDispatcher
from sandbox_healer.core.config import MAX_SANDBOX_ITERATIONS
from sandbox_healer.executor.sandbox_runner import Runner, create_log_excerpt
from sandbox_healer.models.classified_error import ClassifiedError
from sandbox_healer.models.project_state import ProjectStatus
from sandbox_healer.models.runner_result import RunnerResult
from sandbox_healer.models.sandbox_iteration import SandboxIteration
from sandbox_healer.models.sandbox_outcome import SandboxOutcome
from sandbox_healer.parser.log_classifier import classify_batch
from sandbox_healer.services.event_sink import EventSink, EventType, LoggingEventSink
from sandbox_healer.services.health_scorer import final_health_score, score_iteration
from sandbox_healer.services.project_files import ProjectFiles
from sandbox_healer.services.project_store import ProjectStore
from sandbox_healer.state import heal_state
from sandbox_healer.state.heal_state import LoopPhase, LoopState

logger = logging.getLogger(__name__)

PHASE_NAME = "sandbox"


class HealController:
    """
    Parameters
    ----------
    runner : Runner
        Executes one sandbox iteration.
    dispatcher : FixDispatcher
        Applies deterministic fixes and AI escalation.
    store : ProjectStore
        Status, iteration records and heal log.
    events : EventSink or None
        Progress notifications (logging sink by default).
    files : ProjectFiles or None
        Used to resolve partial file names in error messages.
    max_iterations : int
        Loop budget.
    """

    def __init__(
        self,
        runner: Runner,
        dispatcher: FixDispatcher,
        store: ProjectStore,
        events: Optional[EventSink] = None,
        files: Optional[ProjectFiles] = None,
        max_iterations: int = MAX_SANDBOX_ITERATIONS,
    ) -> None:
        self.runner = runner
        self.dispatcher = dispatcher
        self.store = store
        self.events = events or LoggingEventSink()
        self.files = files
        self.max_iterations = max_iterations

    async def run(self, project_id: str) -> SandboxOutcome:
        """Run the heal loop to a terminal phase. A runner fault marks the project failed and is re-raised."""
        logger.info("Sandbox heal loop starting for %s (max %d iterations)", project_id, self.max_iterations)

        history: List[SandboxIteration] = []
        needs_user_input: List[ClassifiedError] = []
        last_errors: List[ClassifiedError] = []

        self._set_status(project_id, ProjectStatus.SANDBOX_RUNNING)
        await self._notify(project_id, EventType.PHASE_STARTED, {
            "phase": PHASE_NAME,
            "message": "Starting sandbox environment...",
        })

        state = heal_state.start(self.max_iterations)
        while not state.phase.is_terminal:
            state = await self._run_iteration(project_id, state, history, needs_user_input)
            if history:
                last_errors = list(history[-1].errors)

        healthy = state.phase is LoopPhase.HEALTHY
        iterations = len(history)
        score = final_health_score(history)

        self._set_status(
            project_id,
            ProjectStatus.SANDBOX_PASSED if healthy else ProjectStatus.SANDBOX_FAILED,
            sandbox_iterations=iterations,
            sandbox_health_score=score,
        )
        await self._notify(
            project_id,
            EventType.SANDBOX_PASSED if healthy else EventType.SANDBOX_FAILED,
            {"iterations": iterations, "health_score": score},
        )
        await self._notify(project_id, EventType.PHASE_COMPLETE, {
            "phase": PHASE_NAME,
            "healthy": healthy,
            "iterations": iterations,
            "message": (
                f"Sandbox passed in {iterations} iteration(s)!"
                if healthy else f"Sandbox failed after {iterations} iterations."
            ),
        })

        logger.info(
            "Sandbox heal loop finished for %s: %s after %d iteration(s), score %d",
            project_id, state.phase.value, iterations, score,
        )
        return SandboxOutcome(
            project_id=project_id,
            phase="healthy" if healthy else "exhausted",
            iterations=iterations,
            final_health_score=score,
            last_errors=[] if healthy else last_errors,
            history=history,
            needs_user_input=needs_user_input,
        )

    # -------------------------------------------------------------------
    # One iteration
    # -------------------------------------------------------------------
    async def _run_iteration(
        self,
        project_id: str,
        state: LoopState,
        history: List[SandboxIteration],
        needs_user_input: List[ClassifiedError],
    ) -> LoopState:
        iteration = state.iteration
        logger.info("--- Sandbox iteration %d/%d for %s ---", iteration, state.max_iterations, project_id)
        await self._notify(project_id, EventType.SANDBOX_ITERATION, {
            "iteration": iteration,
            "max_iterations": state.max_iterations,
            "message": f"Sandbox iteration {iteration}/{state.max_iterations}",
        })

        try:
            result = await self.runner.run_iteration(project_id, iteration)
        except Exception as e:
            await self._runner_failed(project_id, state, e)
            raise
        state = heal_state.on_run_complete(state, result)

        errors: List[ClassifiedError] = []
        if state.phase is LoopPhase.ANALYZING:
            errors = classify_batch(result.logs, self._project_files(project_id))

        record = self._build_record(project_id, iteration, result, errors)
        history.append(record)
        self._persist(self.store.append_iteration, record)

        if state.phase is LoopPhase.HEALTHY:
            logger.info("Iteration %d: sandbox healthy", iteration)
            return state

        state = heal_state.on_classified(state, errors)
        fix_result = self.dispatcher.apply_fixes(project_id, state.errors, iteration)
        state = heal_state.after_fixes(state, fix_result.deterministic_applied)

        if state.escalate:
            logger.info("Iteration %d: no deterministic fix applied, escalating", iteration)
            fix_result.escalated_files = await self.dispatcher.escalate(project_id, state.errors, iteration)

        fresh = [e for e in fix_result.user_input_required if e not in needs_user_input]
        if fresh:
            needs_user_input.extend(fresh)
            await self._notify(project_id, EventType.ENV_REQUIRED, {
                "iteration": iteration,
                "errors": [{"category": e.category.value, "message": e.raw_message} for e in fresh],
            })

        fixes = fix_result.applied_fixes + [f"AI repair: {path}" for path in fix_result.escalated_files]
        record = record.model_copy(update={"fixes_applied": fixes, "failed_fixes": fix_result.failed_fixes})
        history[-1] = record
        self._persist(self.store.update_iteration, record)

        await self._notify(project_id, EventType.SANDBOX_FIX, {
            "iteration": iteration,
            "errors": len(state.errors),
            "fixes": len(fixes),
            "message": f"Applied {len(fixes)} fixes for {len(state.errors)} errors",
        })

        return heal_state.advance(state)

    def _build_record(
        self,
        project_id: str,
        iteration: int,
        result: RunnerResult,
        errors: List[ClassifiedError],
    ) -> SandboxIteration:
        record = SandboxIteration(
            project_id=project_id,
            iteration=iteration,
            install_success=result.install_success,
            build_success=result.build_success,
            start_success=result.start_success,
            health_check_passed=result.health_check_passed,
            errors=errors,
            logs=create_log_excerpt(result.logs),
            started_at=result.started_at,
            completed_at=result.completed_at,
        )
        return record.model_copy(update={"health_score": score_iteration(record)})

    async def _runner_failed(self, project_id: str, state: LoopState, error: Exception) -> None:
        state = heal_state.on_runner_fault(state)
        logger.error(
            "Sandbox heal loop failed for %s at iteration %d: %s",
            project_id, state.iteration, error, exc_info=True,
        )
        self._set_status(project_id, ProjectStatus.FAILED, failure_reason=f"Sandbox: {error}")
        await self._notify(project_id, EventType.PHASE_FAILED, {"phase": PHASE_NAME, "error": str(error)})

    # -------------------------------------------------------------------
    # Best-effort I/O
    # -------------------------------------------------------------------
    def _project_files(self, project_id: str) -> Optional[List[str]]:
        if self.files is None:
            return None
        try:
            return self.files.list_files(project_id)
        except Exception:
            logger.warning("Could not list files for %s", project_id, exc_info=True)
            return None

    def _set_status(self, project_id: str, status: ProjectStatus, **fields: Any) -> None:
        try:
            self.store.set_status(project_id, status, **fields)
        except Exception:
            logger.warning("Failed to set status %s for %s", status.value, project_id, exc_info=True)

    def _persist(self, write, record: SandboxIteration) -> None:
        try:
            write(record)
        except Exception:
            logger.warning(
                "Failed to persist iteration %d for %s", record.iteration, record.project_id, exc_info=True,
            )

    async def _notify(self, project_id: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        try:
            await self.events.notify(project_id, event_type, payload)
        except Exception:
            logger.warning("Failed to send %s event for %s", event_type.value, project_id, exc_info=True)

"""
Sandbox API
===========
HTTP surface for triggering and inspecting heal loop runs.

Routes:
    POST /sandbox/{project_id}/run         — run the heal loop to completion
    GET  /sandbox/{project_id}             — status, iteration count, score
    GET  /sandbox/{project_id}/iterations  — persisted iteration records
    POST /sandbox/classify                 — classify raw log lines

Safety:
    - Run endpoint disabled when ENABLE_SANDBOX_API=false (404)
    - max_iterations is capped at MAX_SANDBOX_ITERATIONS
    - Infrastructure faults return 500 with the fault message

Collaborators come from the get_* dependency functions below so a scheduler
or test can swap them via app.dependency_overrides.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from sandbox_healer.agents.code_repairer import CodeRepairer, LLMCodeRepairer
from sandbox_healer.agents.fix_dispatcher import FixDispatcher
from sandbox_healer.agents.heal_controller import HealController
from sandbox_healer.core.config import ENABLE_SANDBOX_API, EVENT_WEBHOOK_URL, MAX_SANDBOX_ITERATIONS
from sandbox_healer.executor.sandbox_runner import (
    DockerSandboxBackend,
    PollingRunner,
    Runner,
    SandboxInfrastructureError,
)
from sandbox_healer.models.classified_error import ClassifiedError
from sandbox_healer.models.sandbox_iteration import SandboxIteration
from sandbox_healer.parser.log_classifier import classify_batch
from sandbox_healer.services.event_sink import EventSink, FanOutEventSink, LoggingEventSink, WebhookEventSink
from sandbox_healer.services.project_files import ProjectFiles, WorkspaceFiles
from sandbox_healer.services.project_store import JsonFileProjectStore, ProjectStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sandbox", tags=["Sandbox"])

# ---------------------------------------------------------------------------
# Environment gate
# ---------------------------------------------------------------------------
_API_ENABLED = ENABLE_SANDBOX_API


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
_store: Optional[ProjectStore] = None


def get_store() -> ProjectStore:
    global _store
    if _store is None:
        _store = JsonFileProjectStore()
    return _store


def get_files() -> ProjectFiles:
    return WorkspaceFiles()


def get_events() -> EventSink:
    if EVENT_WEBHOOK_URL:
        return FanOutEventSink([LoggingEventSink(), WebhookEventSink(EVENT_WEBHOOK_URL)])
    return LoggingEventSink()


def get_runner() -> Runner:
    return PollingRunner(DockerSandboxBackend())


def get_repairer() -> Optional[CodeRepairer]:
    return LLMCodeRepairer()


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------
class RunRequest(BaseModel):
    max_iterations: Optional[int] = Field(default=None, ge=1)


class RunResponse(BaseModel):
    project_id: str
    healthy: bool
    phase: str
    iterations: int
    final_health_score: int
    last_errors: List[ClassifiedError]
    needs_user_input: List[ClassifiedError]


class StatusResponse(BaseModel):
    project_id: str
    status: str
    sandbox_iterations: int
    sandbox_health_score: int
    failure_reason: str = ""


class ClassifyRequest(BaseModel):
    lines: List[str]
    project_files: Optional[List[str]] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/classify", response_model=List[ClassifiedError])
async def classify_logs(request: ClassifyRequest):
    return classify_batch(request.lines, request.project_files)


@router.post("/{project_id}/run", response_model=RunResponse)
async def run_sandbox(
    project_id: str,
    request: Optional[RunRequest] = None,
    store: ProjectStore = Depends(get_store),
    files: ProjectFiles = Depends(get_files),
    events: EventSink = Depends(get_events),
    runner: Runner = Depends(get_runner),
    repairer: Optional[CodeRepairer] = Depends(get_repairer),
):
    """
    Run the heal loop for one project and wait for it to finish.

    Disabled unless ENABLE_SANDBOX_API=true.
    """
    if not _API_ENABLED:
        raise HTTPException(status_code=404, detail="Not found")

    requested = request.max_iterations if request else None
    max_iterations = min(requested or MAX_SANDBOX_ITERATIONS, MAX_SANDBOX_ITERATIONS)
    logger.info("Sandbox run requested for %s (max_iterations=%d)", project_id, max_iterations)

    controller = HealController(
        runner=runner,
        dispatcher=FixDispatcher(files, store, repairer=repairer),
        store=store,
        events=events,
        files=files,
        max_iterations=max_iterations,
    )

    try:
        outcome = await controller.run(project_id)
    except SandboxInfrastructureError as e:
        raise HTTPException(status_code=500, detail=f"Sandbox infrastructure error: {e}")
    except Exception as e:
        logger.error("Sandbox run for %s failed: %s", project_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail=f"Sandbox error: {e}")
    finally:
        close = getattr(repairer, "close", None)
        if close is not None:
            await close()

    return RunResponse(
        project_id=outcome.project_id,
        healthy=outcome.healthy,
        phase=outcome.phase,
        iterations=outcome.iterations,
        final_health_score=outcome.final_health_score,
        last_errors=outcome.last_errors,
        needs_user_input=outcome.needs_user_input,
    )


@router.get("/{project_id}", response_model=StatusResponse)
async def get_sandbox_status(project_id: str, store: ProjectStore = Depends(get_store)):
    project = store.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Unknown project: {project_id}")
    return StatusResponse(
        project_id=project.project_id,
        status=project.status.value,
        sandbox_iterations=project.sandbox_iterations,
        sandbox_health_score=project.sandbox_health_score,
        failure_reason=project.failure_reason,
    )


@router.get("/{project_id}/iterations", response_model=List[SandboxIteration])
async def list_sandbox_iterations(project_id: str, store: ProjectStore = Depends(get_store)):
    return store.list_iterations(project_id)

"""
Sandbox Runner
==============
Executes one sandbox iteration (install → build → start → health check)
and returns a RunnerResult with the four stage outcomes and the raw log.

BOUNDARY RULES (CRITICAL):
    - Runner ONLY observes execution.
    - Runner NEVER fixes code.
    - Runner NEVER classifies errors — that is the Log Classifier's job.
    - Runner NEVER calls LLM.

Layers:
    SandboxBackend → starts / describes / reads / stops one execution
                     (DockerSandboxBackend: one container per iteration)
    PollingRunner  → drives a backend: start, poll every N seconds until the
                     execution exits or the iteration timeout elapses

Exit code convention (set by the stage script):
    0 = all passed, 1 = install failed, 2 = build failed,
    3 = start failed, 4 = health check failed.

Failure semantics:
    - A timeout is an ordinary failed iteration (all stages false, single
      log line "Sandbox timed out"); the execution is stopped best effort.
    - Failing to start or describe an execution is an infrastructure fault
      and raises SandboxInfrastructureError.
"""
import asyncio
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Protocol

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from sandbox_healer.core.config import (
    CANONICAL_PORT,
    LOG_EXCERPT_HEAD_LINES,
    LOG_EXCERPT_TAIL_LINES,
    SANDBOX_BUILD_COMMAND,
    SANDBOX_DOCKER_IMAGE,
    SANDBOX_HEALTH_URL,
    SANDBOX_INSTALL_COMMAND,
    SANDBOX_ITERATION_TIMEOUT_SECONDS,
    SANDBOX_POLL_INTERVAL_SECONDS,
    SANDBOX_START_COMMAND,
    SANDBOX_STARTUP_WAIT_SECONDS,
    WORKSPACE_ROOT,
)
from sandbox_healer.core.constants import NO_LOGS_LINE, TIMED_OUT_LOG_LINE
from sandbox_healer.models.runner_result import RunnerResult

logger = logging.getLogger(__name__)


class SandboxInfrastructureError(RuntimeError):
    """The sandbox itself could not be run (not a failure of the project under test)."""


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ExecutionStatus:
    """Snapshot of a backend execution. exit_code is set once finished."""
    finished: bool
    exit_code: Optional[int] = None


class SandboxBackend(Protocol):
    def start(self, project_id: str, iteration: int) -> str: ...

    def describe(self, handle: str) -> ExecutionStatus: ...

    def fetch_logs(self, handle: str) -> List[str]: ...

    def stop(self, handle: str) -> None: ...


class Runner(Protocol):
    async def run_iteration(self, project_id: str, iteration: int) -> RunnerResult: ...


# ---------------------------------------------------------------------------
# Log Excerpt Helper
# ---------------------------------------------------------------------------
def create_log_excerpt(
    lines: List[str],
    head: int = LOG_EXCERPT_HEAD_LINES,
    tail: int = LOG_EXCERPT_TAIL_LINES,
) -> List[str]:
    """Keep the first ``head`` and last ``tail`` lines with a marker in between."""
    total = len(lines)
    if total <= head + tail:
        return list(lines)
    omitted = total - head - tail
    return lines[:head] + [f"... ({omitted} lines omitted) ..."] + lines[total - tail:]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Polling Runner
# ---------------------------------------------------------------------------
class PollingRunner:
    """
    Runner that starts a backend execution and polls it to completion.

    Parameters
    ----------
    backend : SandboxBackend
        Execution backend (Docker in production, fakes in tests).
    poll_interval : float
        Seconds between describe() calls.
    timeout : float
        Wall clock budget for one iteration.
    sleep / clock :
        Injected for tests; default to asyncio.sleep and time.monotonic.
    """

    def __init__(
        self,
        backend: SandboxBackend,
        poll_interval: float = SANDBOX_POLL_INTERVAL_SECONDS,
        timeout: float = SANDBOX_ITERATION_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    async def run_iteration(self, project_id: str, iteration: int) -> RunnerResult:
        started_at = _utcnow()

        try:
            handle = await asyncio.to_thread(self.backend.start, project_id, iteration)
        except Exception as e:
            raise SandboxInfrastructureError(
                f"Could not start sandbox for {project_id} iteration {iteration}: {e}"
            ) from e

        logger.info("Sandbox started | project=%s | iteration=%d | handle=%s", project_id, iteration, handle)

        try:
            status = await self._wait(handle)
            if status is None:
                logger.warning(
                    "Sandbox timed out after %.0fs | project=%s | iteration=%d",
                    self.timeout, project_id, iteration,
                )
                return RunnerResult(logs=[TIMED_OUT_LOG_LINE], started_at=started_at, completed_at=_utcnow())

            logs = await self._read_logs(handle)
            result = RunnerResult.from_exit_code(status.exit_code, logs, started_at)
            logger.info(
                "Sandbox finished | project=%s | iteration=%d | exit=%s | success=%s",
                project_id, iteration, status.exit_code, result.success,
            )
            return result
        finally:
            await self._stop(handle)

    async def _wait(self, handle: str) -> Optional[ExecutionStatus]:
        """Poll until finished; None on timeout."""
        deadline = self._clock() + self.timeout
        while True:
            try:
                status = await asyncio.to_thread(self.backend.describe, handle)
            except Exception as e:
                raise SandboxInfrastructureError(f"Could not describe sandbox {handle}: {e}") from e

            if status.finished:
                return status
            if self._clock() >= deadline:
                return None
            await self._sleep(self.poll_interval)

    async def _read_logs(self, handle: str) -> List[str]:
        try:
            logs = await asyncio.to_thread(self.backend.fetch_logs, handle)
        except Exception as e:
            logger.warning("Could not fetch sandbox logs for %s: %s", handle, e, exc_info=True)
            logs = []
        return logs or [NO_LOGS_LINE]

    async def _stop(self, handle: str) -> None:
        try:
            await asyncio.to_thread(self.backend.stop, handle)
        except Exception:
            logger.warning("Failed to stop sandbox %s", handle, exc_info=True)


# ---------------------------------------------------------------------------
# Docker Backend
# ---------------------------------------------------------------------------
# Docker resource limits
_MEMORY_LIMIT = "2g"
_CPU_COUNT = 2
_CONTAINER_WORKDIR = "/app"


def build_stage_script(
    install_command: str = SANDBOX_INSTALL_COMMAND,
    build_command: str = SANDBOX_BUILD_COMMAND,
    start_command: str = SANDBOX_START_COMMAND,
    health_url: str = SANDBOX_HEALTH_URL,
    startup_wait: int = SANDBOX_STARTUP_WAIT_SECONDS,
) -> str:
    """
    Shell script running the four stages and exiting with the stage code.

    The server is started in the background; the health check is a plain
    HTTP GET via node's fetch so the image needs nothing beyond Node.
    """
    health_js = (
        f"fetch('{health_url}')"
        ".then(r => { console.log('Health check status ' + r.status); process.exit(r.status < 500 ? 0 : 1); })"
        ".catch(e => { console.error('Health check error: ' + e.message); process.exit(1); })"
    )
    return "\n".join([
        f"cd {_CONTAINER_WORKDIR}",
        "echo '=== INSTALL PHASE ==='",
        f"{install_command} 2>&1 || {{ echo 'INSTALL FAILED'; exit 1; }}",
        "echo '=== BUILD PHASE ==='",
        f"{build_command} 2>&1 || {{ echo 'BUILD FAILED'; exit 2; }}",
        "echo '=== START PHASE ==='",
        f"{start_command} 2>&1 &",
        "SERVER_PID=$!",
        f"sleep {startup_wait}",
        "kill -0 $SERVER_PID 2>/dev/null || { echo 'START FAILED'; exit 3; }",
        "echo '=== HEALTH CHECK PHASE ==='",
        f"node -e \"{health_js}\" 2>&1 || {{ echo 'HEALTH CHECK FAILED'; kill $SERVER_PID; exit 4; }}",
        "echo 'HEALTH CHECK PASSED'",
        "kill $SERVER_PID",
        "exit 0",
    ])


class DockerSandboxBackend:
    """
    One detached container per iteration with the project workspace mounted
    at /app. Containers are removed by stop().
    """

    def __init__(
        self,
        workspace_root: str = WORKSPACE_ROOT,
        image: str = SANDBOX_DOCKER_IMAGE,
        script: Optional[str] = None,
        client: Optional["docker.DockerClient"] = None,
    ) -> None:
        self.workspace_root = os.path.abspath(workspace_root)
        self.image = image
        self.script = script or build_stage_script()
        self._client = client

    @property
    def client(self) -> "docker.DockerClient":
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def start(self, project_id: str, iteration: int) -> str:
        project_dir = os.path.join(self.workspace_root, project_id)
        if not os.path.isdir(project_dir):
            raise SandboxInfrastructureError(f"Workspace not found for {project_id}: {project_dir}")

        logger.info(
            "Starting container | image=%s | project=%s | iteration=%d",
            self.image, project_id, iteration,
        )
        try:
            container = self.client.containers.run(
                image=self.image,
                command=["sh", "-c", self.script],
                volumes={project_dir: {"bind": _CONTAINER_WORKDIR, "mode": "rw"}},
                environment={
                    "CI": "true",
                    "PORT": str(CANONICAL_PORT),
                    "PROJECT_ID": project_id,
                    "ITERATION": str(iteration),
                },
                working_dir=_CONTAINER_WORKDIR,
                mem_limit=_MEMORY_LIMIT,
                nano_cpus=_CPU_COUNT * 1_000_000_000,
                name=f"sandbox-{project_id}-{iteration}-{int(time.time())}",
                labels={"project": "sandbox-healer", "role": "sandbox"},
                detach=True,
            )
        except ImageNotFound as e:
            raise SandboxInfrastructureError(f"Docker image '{self.image}' not found") from e
        except (APIError, DockerException) as e:
            raise SandboxInfrastructureError(f"Docker API error: {e}") from e

        return container.id

    def describe(self, handle: str) -> ExecutionStatus:
        try:
            container = self.client.containers.get(handle)
            container.reload()
        except NotFound as e:
            raise SandboxInfrastructureError(f"Container {handle} disappeared") from e

        if container.status in ("exited", "dead"):
            exit_code = container.attrs.get("State", {}).get("ExitCode", -1)
            return ExecutionStatus(finished=True, exit_code=exit_code)
        return ExecutionStatus(finished=False)

    def fetch_logs(self, handle: str) -> List[str]:
        container = self.client.containers.get(handle)
        log_bytes = container.logs(stdout=True, stderr=True)
        return log_bytes.decode("utf-8", errors="replace").splitlines()

    def stop(self, handle: str) -> None:
        try:
            container = self.client.containers.get(handle)
        except NotFound:
            return
        container.remove(force=True)
        logger.info("Container %s destroyed", handle[:12])

"""
Shared fakes for the heal loop tests.

No Docker, network or LLM: the runner, project files and repairer are all
in-memory stand-ins implementing the same protocols.
"""
import pytest

from sandbox_healer.executor.sandbox_runner import SandboxInfrastructureError
from sandbox_healer.models.runner_result import RunnerResult
from sandbox_healer.services.event_sink import TimelineEventSink
from sandbox_healer.services.project_store import InMemoryProjectStore


def passed() -> RunnerResult:
    return RunnerResult(
        install_success=True,
        build_success=True,
        start_success=True,
        health_check_passed=True,
        logs=["HEALTH CHECK PASSED"],
    )


def failed(*lines: str) -> RunnerResult:
    return RunnerResult(install_success=True, logs=list(lines))


class FakeRunner:
    """Returns scripted results in order; the last one repeats."""

    def __init__(self, *results: RunnerResult, fault_at: int = None):
        self.results = list(results)
        self.fault_at = fault_at
        self.calls = []

    async def run_iteration(self, project_id, iteration):
        self.calls.append(iteration)
        if self.fault_at == iteration:
            raise SandboxInfrastructureError("container runtime unavailable")
        return self.results[min(len(self.calls), len(self.results)) - 1]


class MemoryFiles:
    """Single-project ProjectFiles held in a dict of path → content."""

    def __init__(self, files=None):
        self.files = dict(files or {})

    def read_text(self, project_id, path):
        return self.files[path]

    def write_text(self, project_id, path, content):
        self.files[path] = content

    def exists(self, project_id, path):
        return path in self.files

    def list_files(self, project_id):
        return sorted(self.files)


@pytest.fixture
def store():
    return InMemoryProjectStore()


@pytest.fixture
def timeline():
    return TimelineEventSink()

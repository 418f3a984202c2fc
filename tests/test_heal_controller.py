"""
Integration Tests — Heal Controller
===================================
Full Run → Classify → Fix loops with a scripted runner, in-memory files and
store, and a recording event sink. The code repairer is mocked.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from sandbox_healer.agents.fix_dispatcher import FixDispatcher
from sandbox_healer.agents.heal_controller import HealController
from sandbox_healer.executor.sandbox_runner import SandboxInfrastructureError
from sandbox_healer.models.classified_error import ErrorCategory
from sandbox_healer.models.project_state import ProjectStatus
from sandbox_healer.models.runner_result import RunnerResult
from sandbox_healer.services.event_sink import EventType

from conftest import FakeRunner, MemoryFiles, failed, passed

PID = "proj-1"
LODASH = "Error: Cannot find module 'lodash'"


def build(runner, store, timeline, files=None, repairer=None, max_iterations=10):
    files = files if files is not None else MemoryFiles({"package.json": json.dumps({"name": "app", "dependencies": {}})})
    controller = HealController(
        runner=runner,
        dispatcher=FixDispatcher(files, store, repairer=repairer),
        store=store,
        events=timeline,
        files=files,
        max_iterations=max_iterations,
    )
    return controller, files


def event_types(timeline):
    return [e["type"] for e in timeline.events_for(PID)]


# ===========================================================================
# Termination
# ===========================================================================
class TestTermination:

    def test_healthy_first_run(self, store, timeline):
        runner = FakeRunner(passed())
        controller, _ = build(runner, store, timeline)

        outcome = asyncio.run(controller.run(PID))

        assert outcome.healthy
        assert outcome.iterations == 1
        assert outcome.final_health_score == 100
        assert runner.calls == [1]
        assert event_types(timeline) == [
            "phase_started", "sandbox_iteration", "sandbox_passed", "phase_complete",
        ]

    def test_always_failing_stops_at_budget(self, store, timeline):
        runner = FakeRunner(failed(LODASH))
        controller, _ = build(runner, store, timeline, max_iterations=10)

        outcome = asyncio.run(controller.run(PID))

        assert outcome.phase == "exhausted"
        assert not outcome.healthy
        assert runner.calls == list(range(1, 11))
        assert outcome.iterations == 10
        assert [r.iteration for r in store.list_iterations(PID)] == list(range(1, 11))
        assert outcome.last_errors[0].category == ErrorCategory.MISSING_PACKAGE

        project = store.get_project(PID)
        assert project.status == ProjectStatus.SANDBOX_FAILED
        assert project.sandbox_iterations == 10
        assert project.sandbox_health_score == outcome.final_health_score == 25

    def test_healthy_on_third_iteration(self, store, timeline):
        runner = FakeRunner(failed(LODASH), failed(LODASH), passed())
        controller, _ = build(runner, store, timeline)

        outcome = asyncio.run(controller.run(PID))

        assert outcome.healthy
        assert runner.calls == [1, 2, 3]
        assert outcome.iterations == 3
        assert outcome.final_health_score == 100
        assert outcome.last_errors == []
        assert store.get_status(PID) == ProjectStatus.SANDBOX_PASSED
        assert len(timeline.events_for(PID, EventType.SANDBOX_FIX)) == 2

    def test_single_iteration_budget(self, store, timeline):
        runner = FakeRunner(failed(LODASH))
        controller, _ = build(runner, store, timeline, max_iterations=1)
        outcome = asyncio.run(controller.run(PID))
        assert outcome.phase == "exhausted"
        assert runner.calls == [1]


# ===========================================================================
# Repair scenarios
# ===========================================================================
class TestScenarios:

    def test_missing_package_installed(self, store, timeline):
        runner = FakeRunner(failed("=== BUILD PHASE ===", LODASH, "BUILD FAILED"), passed())
        controller, files = build(runner, store, timeline)

        outcome = asyncio.run(controller.run(PID))

        assert outcome.healthy
        assert json.loads(files.files["package.json"])["dependencies"]["lodash"] == "latest"

        first = store.list_iterations(PID)[0]
        assert first.errors[0].category == ErrorCategory.MISSING_PACKAGE
        assert first.fixes_applied == ["Added dependency: lodash"]
        assert first.health_score == 25

        heal_log = store.list_heal_log(PID)
        assert [e.type for e in heal_log] == ["deterministic"]

    def test_port_conflict_rewritten(self, store, timeline):
        files = MemoryFiles({".env": "PORT=8080\n"})
        runner = FakeRunner(failed("Error: listen EADDRINUSE: address already in use :::8080"), passed())
        controller, _ = build(runner, store, timeline, files=files)

        outcome = asyncio.run(controller.run(PID))

        assert outcome.healthy
        assert files.files[".env"] == "PORT=3000\n"
        assert store.list_iterations(PID)[0].fixes_applied == ["Set PORT=3000 in .env"]

    def test_no_classifiable_errors_escalates(self, store, timeline):
        repairer = AsyncMock()
        runner = FakeRunner(failed("No logs available"), passed())
        controller, _ = build(runner, store, timeline, repairer=repairer)

        outcome = asyncio.run(controller.run(PID))

        assert outcome.healthy
        assert store.list_iterations(PID)[0].errors == []
        repairer.repair.assert_not_awaited()
        heal_log = store.list_heal_log(PID)
        assert len(heal_log) == 1
        assert heal_log[0].type == "ai_surgical"
        assert heal_log[0].success is False

    def test_empty_failed_run_escalates_before_next_iteration(self, store, timeline):
        repairer = AsyncMock()
        heal_log_sizes = []

        class RecordingRunner(FakeRunner):
            async def run_iteration(self, project_id, iteration):
                heal_log_sizes.append(len(store.list_heal_log(project_id)))
                return await super().run_iteration(project_id, iteration)

        runner = RecordingRunner(RunnerResult(logs=[]), passed())
        controller, _ = build(runner, store, timeline, repairer=repairer)

        outcome = asyncio.run(controller.run(PID))

        assert outcome.healthy
        first = store.list_iterations(PID)[0]
        assert first.health_score == 0
        assert first.errors == []
        assert heal_log_sizes == [0, 1]
        entry = store.list_heal_log(PID)[0]
        assert entry.iteration == 1
        assert entry.type == "ai_surgical"
        assert entry.success is False

    def test_code_error_repaired_by_ai(self, store, timeline):
        files = MemoryFiles({"src/index.js": "const x = ;\n"})
        repairer = AsyncMock()
        repairer.repair.return_value = "const x = 1;\n"
        runner = FakeRunner(failed("SyntaxError: Unexpected token in index.js:1:11"), passed())
        controller, _ = build(runner, store, timeline, files=files, repairer=repairer)

        outcome = asyncio.run(controller.run(PID))

        assert outcome.healthy
        assert files.files["src/index.js"] == "const x = 1;\n"
        first = store.list_iterations(PID)[0]
        assert first.errors[0].affected_file == "src/index.js"
        assert first.fixes_applied == ["AI repair: src/index.js"]

    def test_deterministic_fix_skips_escalation(self, store, timeline):
        repairer = AsyncMock()
        runner = FakeRunner(failed(LODASH, "SyntaxError: Unexpected token in src/a.js:1:1"), passed())
        files = MemoryFiles({"src/a.js": "x", "package.json": "{}"})
        controller, _ = build(runner, store, timeline, files=files, repairer=repairer)

        asyncio.run(controller.run(PID))

        repairer.repair.assert_not_awaited()

    def test_secret_needs_user_input(self, store, timeline):
        runner = FakeRunner(failed("Error: STRIPE_API_KEY is required"), failed("Error: STRIPE_API_KEY is required"), passed())
        controller, files = build(runner, store, timeline)
        before = dict(files.files)

        outcome = asyncio.run(controller.run(PID))

        assert [e.category for e in outcome.needs_user_input] == [ErrorCategory.SECRET_MISSING]
        assert len(timeline.events_for(PID, EventType.ENV_REQUIRED)) == 1
        assert files.files == before

    def test_secret_named_env_var_gets_no_placeholder(self, store, timeline):
        line = "Error: environment variable STRIPE_SECRET_KEY is required"
        runner = FakeRunner(failed(line), passed())
        controller, files = build(runner, store, timeline)

        outcome = asyncio.run(controller.run(PID))

        assert ".env" not in files.files
        assert [e.category for e in outcome.needs_user_input] == [ErrorCategory.SECRET_MISSING]

    def test_failed_fix_recorded_on_iteration(self, store, timeline):
        files = MemoryFiles({"package.json": "{broken"})
        runner = FakeRunner(failed(LODASH), passed())
        controller, _ = build(runner, store, timeline, files=files)

        asyncio.run(controller.run(PID))

        first = store.list_iterations(PID)[0]
        assert first.fixes_applied == []
        assert len(first.failed_fixes) == 1
        assert files.files["package.json"] == "{broken"


# ===========================================================================
# Faults
# ===========================================================================
class TestFaults:

    def test_runner_fault_marks_project_failed(self, store, timeline):
        runner = FakeRunner(failed(LODASH), fault_at=2)
        controller, _ = build(runner, store, timeline)

        with pytest.raises(SandboxInfrastructureError):
            asyncio.run(controller.run(PID))

        project = store.get_project(PID)
        assert project.status == ProjectStatus.FAILED
        assert project.failure_reason.startswith("Sandbox: ")
        assert len(store.list_iterations(PID)) == 1
        failed_events = timeline.events_for(PID, EventType.PHASE_FAILED)
        assert len(failed_events) == 1
        assert "container runtime unavailable" in failed_events[0]["payload"]["error"]

    def test_bug_outside_runner_is_not_a_runner_fault(self, store, timeline):
        runner = FakeRunner(failed(LODASH), passed())
        controller, _ = build(runner, store, timeline)
        controller.dispatcher.apply_fixes = MagicMock(side_effect=KeyError("boom"))

        with pytest.raises(KeyError):
            asyncio.run(controller.run(PID))

        assert store.get_status(PID) == ProjectStatus.SANDBOX_RUNNING
        assert timeline.events_for(PID, EventType.PHASE_FAILED) == []

    def test_store_failures_do_not_abort(self, store, timeline):
        store.append_iteration = MagicMock(side_effect=RuntimeError("disk full"))
        store.update_iteration = MagicMock(side_effect=RuntimeError("disk full"))
        runner = FakeRunner(failed(LODASH), passed())
        controller, _ = build(runner, store, timeline)

        outcome = asyncio.run(controller.run(PID))

        assert outcome.healthy
        assert len(outcome.history) == 2

    def test_event_failures_do_not_abort(self, store):
        events = MagicMock()
        events.notify = AsyncMock(side_effect=RuntimeError("webhook down"))
        runner = FakeRunner(failed(LODASH), passed())
        controller, _ = build(runner, store, events)

        outcome = asyncio.run(controller.run(PID))

        assert outcome.healthy
        assert events.notify.await_count > 0

"""
Unit Tests — Project Store & Workspace Files
"""
import pytest

from sandbox_healer.models.heal_log import HealLogEntry
from sandbox_healer.models.project_state import ProjectStatus, can_transition
from sandbox_healer.models.sandbox_iteration import SandboxIteration
from sandbox_healer.services.project_files import WorkspaceFiles, normalize_path
from sandbox_healer.services.project_store import InMemoryProjectStore, JsonFileProjectStore


# ===========================================================================
# Status transitions
# ===========================================================================
class TestStatusTransitions:

    def test_first_status_always_allowed(self):
        assert can_transition(None, ProjectStatus.SANDBOX_RUNNING)

    def test_forward_and_same_rank_allowed(self):
        assert can_transition(ProjectStatus.SANDBOX_RUNNING, ProjectStatus.SANDBOX_PASSED)
        assert can_transition(ProjectStatus.SANDBOX_PASSED, ProjectStatus.SANDBOX_FAILED)

    def test_backward_rejected(self):
        assert not can_transition(ProjectStatus.DEPLOYED, ProjectStatus.SANDBOX_RUNNING)

    def test_terminal_is_final(self):
        assert not can_transition(ProjectStatus.FAILED, ProjectStatus.COMPLETE)
        assert not can_transition(ProjectStatus.COMPLETE, ProjectStatus.FAILED)

    def test_store_rejects_backward_move(self):
        store = InMemoryProjectStore()
        assert store.set_status("p", ProjectStatus.DEPLOYING)
        assert not store.set_status("p", ProjectStatus.SANDBOX_RUNNING)
        assert store.get_status("p") == ProjectStatus.DEPLOYING

    def test_store_sets_health_fields(self):
        store = InMemoryProjectStore()
        store.set_status("p", ProjectStatus.SANDBOX_PASSED, sandbox_iterations=3, sandbox_health_score=100)
        project = store.get_project("p")
        assert project.sandbox_iterations == 3
        assert project.sandbox_health_score == 100

    def test_unknown_project(self):
        store = InMemoryProjectStore()
        assert store.get_project("nope") is None
        assert store.get_status("nope") is None


# ===========================================================================
# Iterations and heal log
# ===========================================================================
def test_iterations_upserted_and_ordered():
    store = InMemoryProjectStore()
    store.append_iteration(SandboxIteration(project_id="p", iteration=2))
    store.append_iteration(SandboxIteration(project_id="p", iteration=1))
    store.update_iteration(SandboxIteration(project_id="p", iteration=1, fixes_applied=["Added dependency: zod"]))

    records = store.list_iterations("p")
    assert [r.iteration for r in records] == [1, 2]
    assert records[0].fixes_applied == ["Added dependency: zod"]


def test_json_store_persists_across_instances(tmp_path):
    store = JsonFileProjectStore(directory=str(tmp_path))
    store.set_status("p1", ProjectStatus.SANDBOX_FAILED, sandbox_iterations=10, sandbox_health_score=25)
    store.append_iteration(SandboxIteration(project_id="p1", iteration=1, install_success=True, health_score=25))
    store.append_heal_log(HealLogEntry(project_id="p1", iteration=1, description="Added dependency: lodash"))

    reloaded = JsonFileProjectStore(directory=str(tmp_path))
    assert reloaded.get_status("p1") == ProjectStatus.SANDBOX_FAILED
    assert reloaded.get_project("p1").sandbox_health_score == 25
    assert reloaded.list_iterations("p1")[0].install_success
    assert reloaded.list_heal_log("p1")[0].description == "Added dependency: lodash"
    assert (tmp_path / "p1.json").exists()


# ===========================================================================
# Workspace files
# ===========================================================================
class TestWorkspaceFiles:

    def test_normalize_path(self):
        assert normalize_path("./src/index.js") == "src/index.js"
        assert normalize_path("/app/src/index.js") == "src/index.js"
        assert normalize_path("'src\\app.tsx'") == "src/app.tsx"

    def test_write_and_read(self, tmp_path):
        files = WorkspaceFiles(root=str(tmp_path))
        files.write_text("p1", "src/index.js", "console.log(1)\n")
        assert files.exists("p1", "src/index.js")
        assert files.read_text("p1", "./src/index.js") == "console.log(1)\n"

    def test_path_escape_rejected(self, tmp_path):
        files = WorkspaceFiles(root=str(tmp_path))
        with pytest.raises(ValueError):
            files.write_text("p1", "../../etc/passwd", "x")
        assert not files.exists("p1", "../other/secret")

    def test_invalid_project_id(self, tmp_path):
        files = WorkspaceFiles(root=str(tmp_path))
        with pytest.raises(ValueError):
            files.read_text("../outside", "a.txt")

    def test_list_files_skips_dependencies(self, tmp_path):
        files = WorkspaceFiles(root=str(tmp_path))
        files.write_text("p1", "package.json", "{}")
        files.write_text("p1", "src/app.ts", "")
        files.write_text("p1", "node_modules/lodash/index.js", "")
        assert files.list_files("p1") == ["package.json", "src/app.ts"]
        assert files.list_files("missing") == []

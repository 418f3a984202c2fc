"""
Project Store
=============
Persistence for project status, sandbox iteration records and the heal log.

Two implementations:
    - InMemoryProjectStore  → scoped to the process (tests, API dev mode)
    - JsonFileProjectStore  → one JSON document per project under STORE_DIR

Status writes go through can_transition(): a status is never moved
backwards and a terminal status is never reverted. A rejected write is
logged and reported by returning False, it does not raise.

Iteration records are keyed by (project_id, iteration); append_iteration()
for an existing key replaces it, and update_iteration() is an upsert.
"""
import json
import logging
import os
import threading
from typing import Dict, List, Optional, Protocol

from sandbox_healer.core.config import STORE_DIR
from sandbox_healer.models.heal_log import HealLogEntry
from sandbox_healer.models.project_state import ProjectHealth, ProjectStatus, can_transition
from sandbox_healer.models.sandbox_iteration import SandboxIteration

logger = logging.getLogger(__name__)


class ProjectStore(Protocol):
    def get_status(self, project_id: str) -> Optional[ProjectStatus]: ...

    def set_status(
        self,
        project_id: str,
        status: ProjectStatus,
        *,
        sandbox_iterations: Optional[int] = None,
        sandbox_health_score: Optional[int] = None,
        failure_reason: Optional[str] = None,
    ) -> bool: ...

    def append_iteration(self, record: SandboxIteration) -> None: ...

    def update_iteration(self, record: SandboxIteration) -> None: ...

    def append_heal_log(self, entry: HealLogEntry) -> None: ...

    def list_iterations(self, project_id: str) -> List[SandboxIteration]: ...

    def list_heal_log(self, project_id: str) -> List[HealLogEntry]: ...

    def get_project(self, project_id: str) -> Optional[ProjectHealth]: ...


class InMemoryProjectStore:
    """Process-local ProjectStore. Safe to share between threads."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._projects: Dict[str, ProjectHealth] = {}
        self._iterations: Dict[str, Dict[int, SandboxIteration]] = {}
        self._heal_log: Dict[str, List[HealLogEntry]] = {}

    # --- persistence hooks (no-ops in memory) ---
    def _load(self, project_id: str) -> None:
        pass

    def _save(self, project_id: str) -> None:
        pass

    # --- status ---
    def get_status(self, project_id: str) -> Optional[ProjectStatus]:
        project = self.get_project(project_id)
        return project.status if project else None

    def get_project(self, project_id: str) -> Optional[ProjectHealth]:
        with self._lock:
            self._load(project_id)
            project = self._projects.get(project_id)
            return project.model_copy() if project else None

    def set_status(
        self,
        project_id: str,
        status: ProjectStatus,
        *,
        sandbox_iterations: Optional[int] = None,
        sandbox_health_score: Optional[int] = None,
        failure_reason: Optional[str] = None,
    ) -> bool:
        with self._lock:
            self._load(project_id)
            current = self._projects.get(project_id)
            if current is not None and not can_transition(current.status, status):
                logger.warning(
                    "Ignoring status change for %s: %s -> %s is not forward",
                    project_id, current.status.value, status.value,
                )
                return False

            project = current or ProjectHealth(project_id=project_id)
            updates: dict = {"status": status}
            if sandbox_iterations is not None:
                updates["sandbox_iterations"] = sandbox_iterations
            if sandbox_health_score is not None:
                updates["sandbox_health_score"] = sandbox_health_score
            if failure_reason is not None:
                updates["failure_reason"] = failure_reason
            self._projects[project_id] = project.model_copy(update=updates)
            self._save(project_id)

        logger.info("Project %s status → %s", project_id, status.value)
        return True

    # --- iterations ---
    def append_iteration(self, record: SandboxIteration) -> None:
        with self._lock:
            self._load(record.project_id)
            self._iterations.setdefault(record.project_id, {})[record.iteration] = record
            self._save(record.project_id)

    def update_iteration(self, record: SandboxIteration) -> None:
        self.append_iteration(record)

    def list_iterations(self, project_id: str) -> List[SandboxIteration]:
        with self._lock:
            self._load(project_id)
            records = self._iterations.get(project_id, {})
            return [records[i] for i in sorted(records)]

    # --- heal log ---
    def append_heal_log(self, entry: HealLogEntry) -> None:
        with self._lock:
            self._load(entry.project_id)
            self._heal_log.setdefault(entry.project_id, []).append(entry)
            self._save(entry.project_id)

    def list_heal_log(self, project_id: str) -> List[HealLogEntry]:
        with self._lock:
            self._load(project_id)
            return list(self._heal_log.get(project_id, []))


class JsonFileProjectStore(InMemoryProjectStore):
    """
    ProjectStore persisted as <directory>/<project_id>.json.

    Documents are loaded lazily on first access to a project and rewritten
    in full after every mutation.
    """

    def __init__(self, directory: str = STORE_DIR) -> None:
        super().__init__()
        self.directory = os.path.abspath(directory)
        self._loaded: set = set()
        os.makedirs(self.directory, exist_ok=True)

    def _path(self, project_id: str) -> str:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in project_id)
        return os.path.join(self.directory, f"{safe}.json")

    def _load(self, project_id: str) -> None:
        if project_id in self._loaded:
            return
        self._loaded.add(project_id)
        path = self._path(project_id)
        if not os.path.exists(path):
            return

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if data.get("project"):
            self._projects[project_id] = ProjectHealth.model_validate(data["project"])
        self._iterations[project_id] = {
            rec["iteration"]: SandboxIteration.model_validate(rec)
            for rec in data.get("iterations", [])
        }
        self._heal_log[project_id] = [
            HealLogEntry.model_validate(e) for e in data.get("heal_log", [])
        ]
        logger.debug("Loaded project %s from %s", project_id, path)

    def _save(self, project_id: str) -> None:
        project = self._projects.get(project_id)
        iterations = self._iterations.get(project_id, {})
        data = {
            "project": project.model_dump(mode="json") if project else None,
            "iterations": [iterations[i].model_dump(mode="json") for i in sorted(iterations)],
            "heal_log": [e.model_dump(mode="json") for e in self._heal_log.get(project_id, [])],
        }

        path = self._path(project_id)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, path)

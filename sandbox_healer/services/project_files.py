"""
Project Files
=============
Read/write access to a generated project's files on the host.

Philosophy:
    - One workspace directory per project: <WORKSPACE_ROOT>/<project_id>/
    - Every path is project-relative with forward slashes.
    - A path that resolves outside the project directory is rejected.
"""
import os
import logging
from typing import List, Protocol

from sandbox_healer.core.config import WORKSPACE_ROOT

logger = logging.getLogger(__name__)

# Directories never reported by list_files()
_IGNORED_DIRS = {"node_modules", ".git", ".next", "dist", "build", ".cache"}


class ProjectFiles(Protocol):
    def read_text(self, project_id: str, path: str) -> str: ...

    def write_text(self, project_id: str, path: str, content: str) -> None: ...

    def exists(self, project_id: str, path: str) -> bool: ...

    def list_files(self, project_id: str) -> List[str]: ...


def normalize_path(raw_path: str) -> str:
    """Strip quotes, leading './' and slashes; use forward slashes."""
    path = raw_path.strip().strip("'\"").replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    # Container paths are reported relative to the mount point.
    if path.startswith("/app/"):
        path = path[len("/app/"):]
    return path.lstrip("/")


class WorkspaceFiles:
    """ProjectFiles backed by a directory tree on the host filesystem."""

    def __init__(self, root: str = WORKSPACE_ROOT) -> None:
        self.root = os.path.abspath(root)

    def project_dir(self, project_id: str) -> str:
        return self._resolve(project_id, "")

    def _resolve(self, project_id: str, path: str) -> str:
        base = os.path.abspath(os.path.join(self.root, project_id))
        if os.path.dirname(base) != self.root:
            raise ValueError(f"Invalid project id: {project_id!r}")
        target = os.path.abspath(os.path.join(base, normalize_path(path)))
        if target != base and not target.startswith(base + os.sep):
            raise ValueError(f"Path escapes project directory: {path!r}")
        return target

    def read_text(self, project_id: str, path: str) -> str:
        with open(self._resolve(project_id, path), "r", encoding="utf-8") as f:
            return f.read()

    def write_text(self, project_id: str, path: str, content: str) -> None:
        target = self._resolve(project_id, path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            f.write(content)
        logger.debug("Wrote %s (%d chars) for project %s", path, len(content), project_id)

    def exists(self, project_id: str, path: str) -> bool:
        try:
            return os.path.isfile(self._resolve(project_id, path))
        except ValueError:
            return False

    def list_files(self, project_id: str) -> List[str]:
        base = self.project_dir(project_id)
        if not os.path.isdir(base):
            return []
        found: List[str] = []
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if d not in _IGNORED_DIRS)
            for name in sorted(filenames):
                rel = os.path.relpath(os.path.join(dirpath, name), base)
                found.append(rel.replace(os.sep, "/"))
        return found

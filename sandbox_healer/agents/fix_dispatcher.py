"""
Fix Dispatcher
==============
Turns classified errors into repairs on the project files.

Strategies:
    install_package   → add "<pkg>": "latest" to package.json dependencies
    fix_version       → overwrite an existing constraint with the peer version
    add_type_package  → add @types/<pkg> to devDependencies
    add_env_var       → append NAME=placeholder to .env
    fix_port          → rewrite PORT=<n> to the canonical port in known files
    fix_import / fix_config / ai_surgical → left for escalate()
    user_input        → never applied, reported in FixResult.user_input_required

Core Philosophy:
    - Deterministic fixes first, AI escalation on the resulting files
    - One failing fix never stops the others; failures land in failed_fixes
    - Every applied change writes a heal log entry
    - An extraction miss is a no-op, not a failure

The FixDispatcher does NOT:
    - Decide whether to loop again (that's the heal controller's job)
    - Validate AI output (the next sandbox iteration does)
"""
import copy
import json
import logging
import re
from typing import Callable, Dict, List, Optional, Sequence

from sandbox_healer.agents.code_repairer import CodeRepairer
from sandbox_healer.core.config import AI_ESCALATION_MAX_FILES, CANONICAL_PORT
from sandbox_healer.core.constants import (
    DEFAULT_MANIFEST,
    ENV_FILE,
    ENV_PLACEHOLDER,
    LATEST_VERSION,
    PACKAGE_MANIFEST,
    PORT_CONFIG_FILES,
)
from sandbox_healer.models.classified_error import ClassifiedError, FixStrategy
from sandbox_healer.models.fix_result import FixResult
from sandbox_healer.models.heal_log import HealLogEntry
from sandbox_healer.parser.error_patterns import get_fix_strategy
from sandbox_healer.services.project_files import ProjectFiles
from sandbox_healer.services.project_store import ProjectStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Extraction Patterns
# ---------------------------------------------------------------------------
_PACKAGE_PATTERNS = [
    re.compile(r"Cannot find (?:module|package) ['\"](@?[\w\-./]+)['\"]"),
    re.compile(r"Can't resolve ['\"](@?[\w\-./]+)['\"]"),
]

_PEER_VERSION_PATTERNS = [
    re.compile(r"requires (?:a )?(?:peer )?(?:dependency )?(?:of )?['\"]?(@?[\w\-./]+)@([^\s'\"]+)['\"]?"),
    re.compile(r"peer (@?[\w\-./]+)@\"?([^\s\"]+)\"? from"),
]

_TYPE_MODULE_PATTERN = re.compile(r"Could not find a declaration file for module ['\"](@?[\w\-/.]+)['\"]")

_ENV_NAME_PATTERNS = [
    re.compile(r"(?:environment variable|env var)s?[^'\"]*['\"]([A-Za-z_][A-Za-z0-9_]*)['\"]", re.I),
    re.compile(r"['\"]([A-Za-z_][A-Za-z0-9_]*)['\"][^'\"]*(?:environment variable|env var)", re.I),
    re.compile(r"(?i:environment variable|env var)s?:?\s+([A-Z_][A-Z0-9_]*)\b"),
    re.compile(r"process\.env\.([A-Za-z_][A-Za-z0-9_]*)"),
    re.compile(r"\b([A-Z][A-Z0-9_]{2,})\s+(?:is\s+)?(?:not set|missing|undefined|not defined)"),
]

_PORT_ASSIGNMENT = re.compile(r"PORT\s*=\s*\d+")

_SKIPPED_ESCALATION_DIRS = ("node_modules/", ".next/", "dist/")


def extract_package_name(message: str) -> Optional[str]:
    """
    Package name from a missing-module message.

    Relative and absolute paths are not packages. Deep imports are reduced
    to the package: "lodash/fp" → "lodash", "@scope/pkg/x" → "@scope/pkg".
    """
    for pattern in _PACKAGE_PATTERNS:
        match = pattern.search(message)
        if not match:
            continue
        spec = match.group(1)
        if spec.startswith((".", "/")):
            return None
        parts = spec.split("/")
        if spec.startswith("@"):
            return "/".join(parts[:2]) if len(parts) >= 2 else None
        return parts[0]
    return None


def extract_peer_version(message: str) -> Optional[tuple]:
    for pattern in _PEER_VERSION_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(1), match.group(2).strip("'\"")
    return None


def type_package_for(module: str) -> str:
    return "@types/" + module.lstrip("@").replace("/", "__")


def extract_env_var(message: str) -> Optional[str]:
    for pattern in _ENV_NAME_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None


def _env_defines(content: str, name: str) -> bool:
    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith("export "):
            stripped = stripped[len("export "):].lstrip()
        if stripped.startswith(f"{name}="):
            return True
    return False


# ---------------------------------------------------------------------------
# Fix Dispatcher
# ---------------------------------------------------------------------------
class FixDispatcher:
    """
    Applies fixes for one project at a time.

    Parameters
    ----------
    files : ProjectFiles
        Project file access.
    store : ProjectStore
        Receives heal log entries.
    repairer : CodeRepairer or None
        Whole-file AI repair; escalate() is a no-op without one.
    canonical_port : int
        Port written by the fix_port strategy.
    max_escalation_files : int
        Upper bound on files sent to the repairer per iteration.
    """

    def __init__(
        self,
        files: ProjectFiles,
        store: ProjectStore,
        repairer: Optional[CodeRepairer] = None,
        canonical_port: int = CANONICAL_PORT,
        max_escalation_files: int = AI_ESCALATION_MAX_FILES,
    ) -> None:
        self.files = files
        self.store = store
        self.repairer = repairer
        self.canonical_port = canonical_port
        self.max_escalation_files = max_escalation_files
        self._handlers: Dict[FixStrategy, Callable[[str, ClassifiedError], Optional[str]]] = {
            FixStrategy.INSTALL_PACKAGE: self._install_package,
            FixStrategy.FIX_VERSION: self._fix_version,
            FixStrategy.ADD_TYPE_PACKAGE: self._add_type_package,
            FixStrategy.ADD_ENV_VAR: self._add_env_var,
            FixStrategy.FIX_PORT: self._fix_port,
        }

    # -------------------------------------------------------------------
    # Deterministic fixes
    # -------------------------------------------------------------------
    def apply_fixes(self, project_id: str, errors: Sequence[ClassifiedError], iteration: int = 0) -> FixResult:
        """
        Apply deterministic fixes for ``errors`` in the given order.

        Returns
        -------
        FixResult
            applied_fixes / failed_fixes descriptions, plus the errors that
            need user input. Never raises.
        """
        result = FixResult()

        for error in errors:
            strategy = get_fix_strategy(error.category)

            if strategy is FixStrategy.USER_INPUT:
                if error not in result.user_input_required:
                    result.user_input_required.append(error)
                continue

            handler = self._handlers.get(strategy)
            if handler is None:
                continue

            try:
                description = handler(project_id, error)
            except Exception as e:
                logger.warning(
                    "Fix %s failed for %s: %s", strategy.value, project_id, e, exc_info=True,
                )
                result.failed_fixes.append(f"{strategy.value}: {e}")
                continue

            if description is None or description in result.applied_fixes:
                continue

            result.applied_fixes.append(description)
            logger.info("Applied fix for %s: %s", project_id, description)
            self._record(HealLogEntry(
                project_id=project_id,
                iteration=iteration,
                type="deterministic",
                description=description,
                errors_fixed=1,
            ))

        logger.info(
            "Dispatch for %s iteration %d: %d applied, %d failed, %d need user input",
            project_id, iteration, len(result.applied_fixes),
            len(result.failed_fixes), len(result.user_input_required),
        )
        return result

    def _install_package(self, project_id: str, error: ClassifiedError) -> Optional[str]:
        name = extract_package_name(error.raw_message)
        if not name:
            return None

        def add(manifest: dict) -> None:
            manifest.setdefault("dependencies", {})[name] = LATEST_VERSION

        self._modify_manifest(project_id, add)
        return f"Added dependency: {name}"

    def _fix_version(self, project_id: str, error: ClassifiedError) -> Optional[str]:
        extracted = extract_peer_version(error.raw_message)
        if not extracted:
            return None
        name, version = extracted
        touched: List[str] = []

        def update(manifest: dict) -> None:
            for section in ("dependencies", "devDependencies", "peerDependencies"):
                deps = manifest.get(section)
                if isinstance(deps, dict) and name in deps:
                    deps[name] = version
                    touched.append(section)

        self._modify_manifest(project_id, update)
        if not touched:
            return None
        return f"Updated {name} to {version}"

    def _add_type_package(self, project_id: str, error: ClassifiedError) -> Optional[str]:
        match = _TYPE_MODULE_PATTERN.search(error.raw_message)
        if not match:
            return None
        package = type_package_for(match.group(1))

        def add(manifest: dict) -> None:
            manifest.setdefault("devDependencies", {})[package] = LATEST_VERSION

        self._modify_manifest(project_id, add)
        return f"Added type definitions: {package}"

    def _add_env_var(self, project_id: str, error: ClassifiedError) -> Optional[str]:
        name = extract_env_var(error.raw_message)
        if not name:
            return None

        content = self.files.read_text(project_id, ENV_FILE) if self.files.exists(project_id, ENV_FILE) else ""
        if _env_defines(content, name):
            return None

        if content and not content.endswith("\n"):
            content += "\n"
        self.files.write_text(project_id, ENV_FILE, f"{content}{name}={ENV_PLACEHOLDER}\n")
        return f"Added env var placeholder: {name}"

    def _fix_port(self, project_id: str, error: ClassifiedError) -> Optional[str]:
        replacement = f"PORT={self.canonical_port}"
        changed: List[str] = []

        for path in PORT_CONFIG_FILES:
            if not self.files.exists(project_id, path):
                continue
            content = self.files.read_text(project_id, path)
            fixed = _PORT_ASSIGNMENT.sub(replacement, content)
            if fixed != content:
                self.files.write_text(project_id, path, fixed)
                changed.append(path)

        if not changed:
            return None
        return f"Set {replacement} in {', '.join(changed)}"

    def _modify_manifest(self, project_id: str, modifier: Callable[[dict], None]) -> None:
        """Load package.json (skeleton if absent), apply ``modifier``, write it back."""
        if self.files.exists(project_id, PACKAGE_MANIFEST):
            manifest = json.loads(self.files.read_text(project_id, PACKAGE_MANIFEST))
            if not isinstance(manifest, dict):
                raise ValueError(f"{PACKAGE_MANIFEST} is not a JSON object")
        else:
            logger.info("No %s for %s, starting from skeleton", PACKAGE_MANIFEST, project_id)
            manifest = copy.deepcopy(DEFAULT_MANIFEST)

        modifier(manifest)
        self.files.write_text(project_id, PACKAGE_MANIFEST, json.dumps(manifest, indent=2) + "\n")

    # -------------------------------------------------------------------
    # AI escalation
    # -------------------------------------------------------------------
    async def escalate(self, project_id: str, errors: Sequence[ClassifiedError], iteration: int) -> List[str]:
        """
        Send each affected file with its errors to the code repairer and
        write back the replacement. Returns the files rewritten.
        """
        if self.repairer is None:
            logger.info("No code repairer configured; skipping escalation for %s", project_id)
            return []

        by_file: Dict[str, List[ClassifiedError]] = {}
        unlocated: List[ClassifiedError] = []
        for error in errors:
            if get_fix_strategy(error.category) is FixStrategy.USER_INPUT:
                continue
            if not error.affected_file:
                unlocated.append(error)
                continue
            by_file.setdefault(error.affected_file, []).append(error)

        if unlocated:
            logger.info("%d error(s) for %s have no affected file; cannot escalate them", len(unlocated), project_id)
            self._record(HealLogEntry(
                project_id=project_id,
                iteration=iteration,
                type="ai_surgical",
                description=f"Skipped AI repair: {len(unlocated)} error(s) without an affected file",
                errors_fixed=0,
                success=False,
            ))

        sources = []
        for file_path, file_errors in by_file.items():
            content = self._escalation_source(project_id, file_path)
            if content is not None:
                sources.append((file_path, file_errors, content))

        if len(sources) > self.max_escalation_files:
            logger.info(
                "Escalation for %s capped at %d of %d file(s)",
                project_id, self.max_escalation_files, len(sources),
            )
            sources = sources[:self.max_escalation_files]

        rewritten: List[str] = []
        for file_path, file_errors, content in sources:
            try:
                repaired = await self.repairer.repair(file_path, content, file_errors)
            except Exception as e:
                logger.warning("Code repairer raised for %s: %s", file_path, e, exc_info=True)
                continue

            if not repaired or not repaired.strip():
                logger.info("Code repairer returned nothing for %s", file_path)
                continue
            if repaired == content:
                logger.info("Code repairer returned %s unchanged", file_path)
                continue

            try:
                self.files.write_text(project_id, file_path, repaired)
            except (OSError, ValueError) as e:
                logger.warning("Cannot write repaired %s for %s: %s", file_path, project_id, e)
                continue

            rewritten.append(file_path)
            self._record(HealLogEntry(
                project_id=project_id,
                iteration=iteration,
                type="ai_surgical",
                description=f"AI repair of {file_path}",
                file=file_path,
                errors_fixed=len(file_errors),
            ))
            logger.info("AI fix applied for %s: %s (%d error(s))", project_id, file_path, len(file_errors))

        return rewritten

    def _record(self, entry: HealLogEntry) -> None:
        try:
            self.store.append_heal_log(entry)
        except Exception:
            logger.warning("Failed to write heal log for %s", entry.project_id, exc_info=True)

    def _escalation_source(self, project_id: str, file_path: str) -> Optional[str]:
        """Current content of a file the repairer may rewrite; None to skip it."""
        if file_path.startswith(_SKIPPED_ESCALATION_DIRS) or "/node_modules/" in file_path:
            logger.info("Not escalating generated/vendored file %s", file_path)
            return None
        try:
            if not self.files.exists(project_id, file_path):
                logger.info("Affected file %s not found in %s, skipping", file_path, project_id)
                return None
            return self.files.read_text(project_id, file_path)
        except (OSError, ValueError) as e:
            logger.warning("Cannot read %s for %s: %s", file_path, project_id, e)
            return None

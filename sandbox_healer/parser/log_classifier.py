"""
Log Classifier
==============
Converts raw sandbox log lines into ranked ClassifiedError objects.

Pipeline:
    1. Drop noise lines (npm chatter, stack frames, shell echoes, blanks)
    2. Keep only lines carrying a generic error indicator
    3. Classify each line via the error pattern registry
    4. Extract affected file + line number (best effort)
    5. Deduplicate by (category, affected_file), first occurrence wins
    6. Sort by severity (highest first), category order as tie-break

Contract:
    - DETERMINISTIC: same lines → same errors, always.
    - No LLM allowed in this layer.
    - Tolerant: a line that cannot be classified is skipped, never raises.
"""
import re
import logging
from typing import Iterable, Optional, Sequence

from sandbox_healer.models.classified_error import ClassifiedError, ErrorCategory
from sandbox_healer.parser.error_patterns import (
    CONF_MIN_MATCH,
    classify_line,
    get_fix_strategy,
    get_severity,
)
from sandbox_healer.services.project_files import normalize_path

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Noise Filter
# ---------------------------------------------------------------------------
# Lines that look like errors but never are.
_NOISE_PATTERNS: list[re.Pattern] = [
    re.compile(r"^npm warn", re.I),
    re.compile(r"^npm notice", re.I),
    re.compile(r"^deprecated", re.I),
    re.compile(r"added \d+ packages", re.I),
    re.compile(r"up to date", re.I),
    re.compile(r"^\s+at\s"),
    re.compile(r"^\s*$"),
    re.compile(r"^>\s"),
]


def is_noise(line: str) -> bool:
    return any(p.search(line) for p in _NOISE_PATTERNS)


# ---------------------------------------------------------------------------
# Error Indicators
# ---------------------------------------------------------------------------
_ERROR_INDICATORS: list[re.Pattern] = [
    re.compile(
        r"error|ERR!|fail|FATAL|cannot|could not|not found|missing|invalid|"
        r"unexpected|refused|denied|EACCES|ENOENT|EADDRINUSE|ECONNREFUSED|"
        r"EPERM|ENOMEM",
        re.I,
    ),
    re.compile(r"TS\d+"),
]


def has_error_indicator(line: str) -> bool:
    return any(p.search(line) for p in _ERROR_INDICATORS)


# ---------------------------------------------------------------------------
# File / Line Extraction
# ---------------------------------------------------------------------------
_FILE_PATTERNS: list[re.Pattern] = [
    re.compile(r"\b(?:in|at|from)\s+(?:\./)?([a-zA-Z0-9_\-./]+\.[a-zA-Z]{1,4})"),
    re.compile(r"([a-zA-Z0-9_\-./]+\.(?:ts|tsx|js|jsx|py|java|rb|go|css|scss|html))(?::\d+)?"),
    re.compile(r"Module not found.*'\./([^']+)'"),
    re.compile(r"Cannot find module '\./([^']+)'"),
    re.compile(r"Error in (.+?)(?::\d+|$)"),
]

_LINE_PATTERNS: list[re.Pattern] = [
    re.compile(r"(?:line|Line)\s+(\d+)"),
    re.compile(r":(\d+):\d+"),
    re.compile(r":(\d+)\)"),
    re.compile(r"\((\d+),\s*\d+\)"),
]

_MAX_PATH_LENGTH = 200
_MAX_LINE_NUMBER = 100000


def _is_plausible_path(candidate: str) -> bool:
    return "." in candidate and " " not in candidate and len(candidate) < _MAX_PATH_LENGTH


def _match_project_file(candidate: str, project_files: Sequence[str]) -> Optional[str]:
    """Known file equal to the candidate, else the shortest one ending in ``/candidate``."""
    candidate = normalize_path(candidate)
    if candidate in project_files:
        return candidate
    suffix = "/" + candidate
    matches = [known for known in project_files if known.endswith(suffix)]
    return min(matches, key=len) if matches else None


def extract_affected_file(line: str, project_files: Optional[Sequence[str]] = None) -> Optional[str]:
    """
    Best-effort file path for an error line.

    Patterns are tried in order. For each candidate, a known project file
    matching it on whole path segments is preferred; otherwise the candidate
    itself is returned if it looks like a path. None when nothing plausible
    is found.
    """
    for pattern in _FILE_PATTERNS:
        match = pattern.search(line)
        if not match or not match.group(1):
            continue
        candidate = match.group(1)

        if project_files:
            known = _match_project_file(candidate, project_files)
            if known:
                return known

        if _is_plausible_path(candidate):
            return candidate

    return None


def extract_line_number(line: str) -> Optional[int]:
    for pattern in _LINE_PATTERNS:
        match = pattern.search(line)
        if not match:
            continue
        number = int(match.group(1))
        if 0 < number < _MAX_LINE_NUMBER:
            return number
    return None


# ---------------------------------------------------------------------------
# Single Line
# ---------------------------------------------------------------------------
def classify_log_line(line: str, project_files: Optional[Sequence[str]] = None) -> Optional[ClassifiedError]:
    """Classify one line; None when it is noise, carries no error indicator, or matches nothing."""
    if is_noise(line) or not has_error_indicator(line):
        return None

    category, confidence = classify_line(line)
    if category is ErrorCategory.UNKNOWN and confidence < CONF_MIN_MATCH:
        return None

    return ClassifiedError(
        category=category,
        confidence=confidence,
        raw_message=line.strip(),
        affected_file=extract_affected_file(line, project_files),
        line_number=extract_line_number(line),
        severity=get_severity(category),
        fix_strategy=get_fix_strategy(category),
    )


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------
def _deduplicate(errors: Iterable[ClassifiedError]) -> list[ClassifiedError]:
    """Keep the first error seen for each (category, affected_file)."""
    seen: set[tuple] = set()
    unique: list[ClassifiedError] = []
    for err in errors:
        if err.dedupe_key in seen:
            continue
        seen.add(err.dedupe_key)
        unique.append(err)
    return unique


def _sort_by_severity(errors: list[ClassifiedError]) -> list[ClassifiedError]:
    # sorted() is stable, so equal keys keep first-occurrence order.
    return sorted(errors, key=lambda e: (-e.severity, e.category.order))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def classify_batch(
    lines: Iterable[str],
    project_files: Optional[Sequence[str]] = None,
) -> list[ClassifiedError]:
    """
    Classify a batch of log lines into a deduplicated, ranked error list.

    Parameters
    ----------
    lines : Iterable[str]
        Raw runner log lines, in emission order.
    project_files : Sequence[str] | None
        Known project paths, used to resolve partial file names.

    Returns
    -------
    list[ClassifiedError]
        Sorted by descending severity. Empty when nothing matched. Never raises.
    """
    found: list[ClassifiedError] = []
    total = 0

    for line in lines:
        total += 1
        try:
            err = classify_log_line(line, project_files)
        except Exception as e:
            logger.debug("Skipping unclassifiable line %r: %s", line, e)
            continue
        if err is not None:
            found.append(err)

    errors = _sort_by_severity(_deduplicate(found))
    logger.info("Classified %d error(s) from %d log line(s)", len(errors), total)
    return errors

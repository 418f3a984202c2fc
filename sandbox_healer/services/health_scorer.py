"""
Health Scorer
=============
Deterministic 0–100 health scores.

    score_iteration()      → 25 points per passed sandbox stage
    final_health_score()   → score of the last recorded iteration
    score_deployment()     → post-deploy signals (health checks, latency,
                             log errors, endpoints, response quality)

No I/O here; callers collect the signals.
"""
import math
from dataclasses import dataclass
from typing import Sequence

from sandbox_healer.models.classified_error import ClassifiedError
from sandbox_healer.models.sandbox_iteration import SandboxIteration

_POINTS_PER_STAGE = 25

# Deployment score weights
_HEALTH_CHECK_POINTS = 40
_LATENCY_TIERS = ((500, 10), (1000, 7), (3000, 3))   # (below_ms, points)
_LOG_POINTS = 20
_CRITICAL_PENALTY = 5
_WARNING_PENALTY = 2
_CRITICAL_SEVERITY = 8
_WARNING_SEVERITY = 5
_ROOT_ENDPOINT_POINTS = 10
_OTHER_ENDPOINT_POINTS = 2.5
_OTHER_ENDPOINT_CAP = 10


@dataclass(frozen=True)
class HealthCheckResult:
    success: bool
    response_time_ms: float = 0.0
    status_code: int = 0


@dataclass(frozen=True)
class EndpointResult:
    path: str
    success: bool
    status_code: int = 0


@dataclass(frozen=True)
class ResponseQuality:
    has_html: bool = False
    has_title: bool = False
    content_length: int = 0
    load_time_ms: float = 0.0


def score_iteration(iteration: SandboxIteration) -> int:
    stages = (
        iteration.install_success,
        iteration.build_success,
        iteration.start_success,
        iteration.health_check_passed,
    )
    return _POINTS_PER_STAGE * sum(1 for passed in stages if passed)


def final_health_score(iterations: Sequence[SandboxIteration]) -> int:
    if not iterations:
        return 0
    return score_iteration(iterations[-1])


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_deployment(
    health_checks: Sequence[HealthCheckResult],
    log_errors: Sequence[ClassifiedError],
    endpoints: Sequence[EndpointResult],
    quality: ResponseQuality,
) -> int:
    """
    Score a deployed application from post-deploy signals.

    Health checks   40  (pass ratio)
    Latency         10 / 7 / 3 for mean passing response < 500 / 1000 / 3000 ms
    Log errors      20 minus 5 per critical (severity >= 8) and 2 per warning (5–7)
    Endpoints       10 for '/', 2.5 per other passing path (max 10)
    Quality         3 HTML, 2 <title>, 3 body > 100 bytes, 2 load < 2000 ms
    """
    score = 0.0

    passed = [c for c in health_checks if c.success]
    score += len(passed) / max(1, len(health_checks)) * _HEALTH_CHECK_POINTS

    if passed:
        mean_ms = sum(c.response_time_ms for c in passed) / len(passed)
        for below_ms, points in _LATENCY_TIERS:
            if mean_ms < below_ms:
                score += points
                break

    critical = sum(1 for e in log_errors if e.severity >= _CRITICAL_SEVERITY)
    warning = sum(1 for e in log_errors if _WARNING_SEVERITY <= e.severity < _CRITICAL_SEVERITY)
    score += max(0, _LOG_POINTS - critical * _CRITICAL_PENALTY - warning * _WARNING_PENALTY)

    if any(e.path == "/" and e.success for e in endpoints):
        score += _ROOT_ENDPOINT_POINTS
    others = sum(1 for e in endpoints if e.path != "/" and e.success)
    score += min(_OTHER_ENDPOINT_CAP, others * _OTHER_ENDPOINT_POINTS)

    if quality.has_html:
        score += 3
    if quality.has_title:
        score += 2
    if quality.content_length > 100:
        score += 3
    if quality.load_time_ms < 2000:
        score += 2

    return max(0, min(100, _round_half_up(score)))

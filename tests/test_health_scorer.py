"""
Unit Tests — Health Scorer
"""
from itertools import product

from sandbox_healer.models.classified_error import ClassifiedError, ErrorCategory
from sandbox_healer.models.sandbox_iteration import SandboxIteration
from sandbox_healer.services.health_scorer import (
    EndpointResult,
    HealthCheckResult,
    ResponseQuality,
    final_health_score,
    score_deployment,
    score_iteration,
)


def iteration(n=1, install=False, build=False, start=False, health=False):
    return SandboxIteration(
        project_id="p",
        iteration=n,
        install_success=install,
        build_success=build,
        start_success=start,
        health_check_passed=health,
    )


# ===========================================================================
# Iteration score
# ===========================================================================
def test_nothing_passed_scores_zero():
    assert score_iteration(iteration()) == 0


def test_everything_passed_scores_hundred():
    assert score_iteration(iteration(install=True, build=True, start=True, health=True)) == 100


def test_score_is_monotonic_in_stages():
    for stages in product([False, True], repeat=4):
        base = score_iteration(iteration(1, *stages))
        assert 0 <= base <= 100
        for i, passed in enumerate(stages):
            if passed:
                continue
            improved = list(stages)
            improved[i] = True
            assert score_iteration(iteration(1, *improved)) >= base


def test_final_score_uses_last_iteration():
    history = [
        iteration(1, install=True),
        iteration(2, install=True, build=True, start=True, health=True),
    ]
    assert final_health_score(history) == 100
    assert final_health_score(history[:1]) == 25


def test_final_score_without_history():
    assert final_health_score([]) == 0


# ===========================================================================
# Deployment score
# ===========================================================================
GOOD_QUALITY = ResponseQuality(has_html=True, has_title=True, content_length=2048, load_time_ms=300)
NO_QUALITY = ResponseQuality(has_html=False, has_title=False, content_length=0, load_time_ms=5000)


def test_perfect_deployment():
    checks = [HealthCheckResult(True, 200, 200)] * 3
    endpoints = [EndpointResult("/", True, 200)] + [EndpointResult(f"/p{i}", True, 200) for i in range(4)]
    assert score_deployment(checks, [], endpoints, GOOD_QUALITY) == 100


def test_no_latency_points_without_passing_checks():
    checks = [HealthCheckResult(False, 0, 503)]
    assert score_deployment(checks, [], [], NO_QUALITY) == 20


def test_log_error_penalties():
    errors = [
        ClassifiedError(category=ErrorCategory.MISSING_PACKAGE, severity=9),
        ClassifiedError(category=ErrorCategory.PORT_CONFLICT, severity=6),
        ClassifiedError(category=ErrorCategory.ESLINT_ERROR, severity=4),
    ]
    assert score_deployment([], errors, [], NO_QUALITY) == 13


def test_rounds_half_up():
    checks = [HealthCheckResult(True, 100, 200), HealthCheckResult(False, 0, 500)]
    endpoints = [EndpointResult("/about", True, 200)]
    # 20 + 10 + 20 + 2.5
    assert score_deployment(checks, [], endpoints, NO_QUALITY) == 53


def test_penalties_never_go_negative():
    errors = [ClassifiedError(category=ErrorCategory.DB_CONNECTION, severity=9)] * 10
    assert score_deployment([], errors, [], NO_QUALITY) == 0

"""
Unit Tests — Error Pattern Registry
===================================
Totality of the category tables, confidence formula and single-line
classification with its tie-break rules.
"""
import pytest

from sandbox_healer.models.classified_error import ErrorCategory, FixStrategy
from sandbox_healer.parser.error_patterns import (
    ERROR_PATTERNS,
    classify_line,
    confidence_for,
    get_fix_strategy,
    get_pattern,
    get_severity,
    requires_db_provisioning,
    requires_user_input,
)


# ===========================================================================
# Registry totality
# ===========================================================================
class TestRegistry:

    def test_one_entry_per_category(self):
        categories = [p.category for p in ERROR_PATTERNS]
        assert len(categories) == len(set(categories))
        assert set(categories) == set(ErrorCategory)

    @pytest.mark.parametrize("category", list(ErrorCategory))
    def test_fix_strategy_is_total(self, category):
        assert isinstance(get_fix_strategy(category), FixStrategy)

    @pytest.mark.parametrize("category", list(ErrorCategory))
    def test_severity_in_range(self, category):
        assert 1 <= get_severity(category) <= 10

    def test_registry_order_matches_enum(self):
        assert [p.category for p in ERROR_PATTERNS] == list(ErrorCategory)

    def test_unknown_has_no_patterns(self):
        assert get_pattern(ErrorCategory.UNKNOWN).patterns == ()
        assert get_severity(ErrorCategory.UNKNOWN) == 5

    def test_user_input_categories(self):
        assert requires_user_input(ErrorCategory.SECRET_MISSING)
        assert requires_user_input(ErrorCategory.DB_CONNECTION)
        assert not requires_user_input(ErrorCategory.ENV_MISSING)
        assert not requires_user_input(ErrorCategory.MISSING_PACKAGE)

    def test_db_provisioning_only_for_db(self):
        assert requires_db_provisioning(ErrorCategory.DB_CONNECTION)
        assert not requires_db_provisioning(ErrorCategory.SECRET_MISSING)


# ===========================================================================
# Confidence
# ===========================================================================
class TestConfidence:

    def test_formula(self):
        assert confidence_for(5) == 0.9
        assert confidence_for(9) == 0.98

    def test_capped_at_one(self):
        assert confidence_for(10) == 1.0


# ===========================================================================
# classify_line
# ===========================================================================
class TestClassifyLine:

    def test_missing_package(self):
        category, confidence = classify_line("Error: Cannot find module 'lodash'")
        assert category == ErrorCategory.MISSING_PACKAGE
        assert confidence == 0.98

    def test_port_conflict(self):
        category, _ = classify_line("Error: listen EADDRINUSE: address already in use :::3000")
        assert category == ErrorCategory.PORT_CONFLICT

    def test_unmatched_line(self):
        assert classify_line("Compiled successfully") == (ErrorCategory.UNKNOWN, 0.0)

    def test_higher_severity_wins(self):
        # Matches PORT_NOT_EXPOSED (6) and DB_CONNECTION (9)
        category, _ = classify_line("connect ECONNREFUSED 127.0.0.1:5432")
        assert category == ErrorCategory.DB_CONNECTION

    def test_tie_goes_to_first_declared(self):
        # TYPESCRIPT_ERROR and IMPORT_ERROR are both severity 7
        category, _ = classify_line("Type error: 'Button' is not exported from './ui'")
        assert category == ErrorCategory.TYPESCRIPT_ERROR

    def test_typescript_code_is_case_sensitive(self):
        assert classify_line("error TS2304: Cannot find name 'foo'")[0] == ErrorCategory.TYPESCRIPT_ERROR
        assert classify_line("stats2304: ok")[0] == ErrorCategory.UNKNOWN

    def test_secret_missing(self):
        category, _ = classify_line("Error: STRIPE_API_KEY is required")
        assert category == ErrorCategory.SECRET_MISSING

    def test_secret_wins_over_env_on_overlap(self):
        category, _ = classify_line("Error: environment variable STRIPE_SECRET_KEY is required")
        assert category == ErrorCategory.SECRET_MISSING

    @pytest.mark.parametrize("line", [
        "Error: OPENAI_API_KEY is not set",
        "Error: GITHUB_TOKEN is not defined",
        "Missing required variable: JWT_SECRET",
    ])
    def test_secret_identifiers(self, line):
        assert classify_line(line)[0] == ErrorCategory.SECRET_MISSING

    def test_env_missing(self):
        category, _ = classify_line("Error: environment variable DATABASE_URL is not set")
        assert category == ErrorCategory.ENV_MISSING

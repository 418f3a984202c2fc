"""
Unit Tests — Log Classifier
===========================
Noise filtering, file/line extraction, deduplication, severity ordering
and end-to-end batch classification with sample sandbox logs.

No runner or Docker required.
"""
from sandbox_healer.models.classified_error import ErrorCategory, FixStrategy
from sandbox_healer.parser.log_classifier import (
    classify_batch,
    classify_log_line,
    extract_affected_file,
    extract_line_number,
    has_error_indicator,
    is_noise,
)


SAMPLE_NEXT_BUILD_LOG = """\
=== INSTALL PHASE ===
npm warn deprecated inflight@1.0.6: This module is not supported
added 312 packages in 14s
=== BUILD PHASE ===
> app@1.0.0 build
> next build
Failed to compile.
./src/app/page.tsx
Type error: Property 'title' does not exist on type 'Props'.
    at Object.<anonymous> (/app/node_modules/next/dist/build/index.js:12:3)
Error: Cannot find module 'lodash'
Error: Cannot find module 'lodash/fp'
BUILD FAILED
""".splitlines()


# ===========================================================================
# Filters
# ===========================================================================
class TestFilters:

    def test_noise_lines(self):
        assert is_noise("npm WARN deprecated glob@7.2.3")
        assert is_noise("added 120 packages in 3s")
        assert is_noise("    at Module._compile (node:internal/modules/cjs/loader:1105:14)")
        assert is_noise("   ")
        assert is_noise("> next build")

    def test_real_error_is_not_noise(self):
        assert not is_noise("Error: Cannot find module 'lodash'")

    def test_error_indicator(self):
        assert has_error_indicator("npm ERR! code ERESOLVE")
        assert has_error_indicator("src/a.ts(3,5): TS2322")
        assert not has_error_indicator("ready - started server on 0.0.0.0:3000")


# ===========================================================================
# Extraction
# ===========================================================================
class TestExtraction:

    def test_file_from_location(self):
        assert extract_affected_file("SyntaxError: Unexpected token in src/index.js:10:5") == "src/index.js"

    def test_file_resolved_against_project_files(self):
        line = "SyntaxError: Unexpected token in index.tsx:3:1"
        assert extract_affected_file(line, ["README.md", "src/index.tsx"]) == "src/index.tsx"

    def test_project_file_matched_on_path_segments(self):
        line = "SyntaxError: Unexpected token in app.js:3:1"
        assert extract_affected_file(line, ["src/webapp.js", "app.js"]) == "app.js"
        assert extract_affected_file(line, ["src/webapp.js", "src/app.js"]) == "src/app.js"
        assert extract_affected_file(line, ["src/webapp.js"]) == "app.js"

    def test_shortest_suffix_match_wins(self):
        line = "SyntaxError: Unexpected token in index.js:1:1"
        assert extract_affected_file(line, ["packages/ui/src/index.js", "src/index.js"]) == "src/index.js"

    def test_no_file(self):
        assert extract_affected_file("Error: Cannot find module 'lodash'") is None

    def test_line_number_from_colon_pair(self):
        assert extract_line_number("src/app.ts:42:7 - error") == 42

    def test_line_number_from_parens(self):
        assert extract_line_number("src/app.ts(12,5): error TS2322") == 12

    def test_line_number_out_of_range(self):
        assert extract_line_number("line 0 of input") is None
        assert extract_line_number("no numbers here") is None


# ===========================================================================
# Single line
# ===========================================================================
class TestClassifyLogLine:

    def test_noise_returns_none(self):
        assert classify_log_line("npm notice New minor version of npm available") is None

    def test_unmatched_indicator_returns_none(self):
        assert classify_log_line("Something failed badly") is None

    def test_fields_populated(self):
        err = classify_log_line("SyntaxError: Unexpected token '}' in src/index.js:10:5")
        assert err.category == ErrorCategory.SYNTAX_ERROR
        assert err.severity == 8
        assert err.confidence == 0.96
        assert err.fix_strategy == FixStrategy.AI_SURGICAL
        assert err.affected_file == "src/index.js"
        assert err.line_number == 10
        assert err.raw_message.startswith("SyntaxError")


# ===========================================================================
# Batch
# ===========================================================================
class TestClassifyBatch:

    def test_empty_batch(self):
        assert classify_batch([]) == []

    def test_noise_only_batch(self):
        lines = [
            "npm warn deprecated foo@1.0.0",
            "added 120 packages in 3s",
            "    at Object.<anonymous> (/app/index.js:1:1)",
            "",
            "> next build",
        ]
        assert classify_batch(lines) == []

    def test_single_category_line(self):
        errors = classify_batch(["Error: listen EADDRINUSE: address already in use :::3000"])
        assert len(errors) == 1
        assert errors[0].category == ErrorCategory.PORT_CONFLICT
        assert errors[0].fix_strategy == FixStrategy.FIX_PORT

    def test_deduplicates_same_category_and_file(self):
        errors = classify_batch([
            "Error: Cannot find module 'lodash'",
            "Error: Cannot find module 'axios'",
        ])
        assert len(errors) == 1
        assert "lodash" in errors[0].raw_message

    def test_same_category_different_files_kept(self):
        errors = classify_batch([
            "SyntaxError: Unexpected token in src/a.js:1:1",
            "SyntaxError: Unexpected token in src/b.js:2:1",
        ])
        assert [e.affected_file for e in errors] == ["src/a.js", "src/b.js"]

    def test_sorted_by_severity(self):
        errors = classify_batch([
            "Error: postcss plugin failed in src/app.css",
            "SyntaxError: Unexpected token in src/index.js:3:1",
            "Error: Cannot find module 'lodash'",
        ])
        assert [e.severity for e in errors] == [9, 8, 5]

    def test_equal_severity_uses_category_order(self):
        errors = classify_batch([
            "SyntaxError: Unexpected token in src/index.js:3:1",
            "npm ERR! ERESOLVE unable to resolve dependency tree",
        ])
        assert [e.category for e in errors] == [ErrorCategory.VERSION_CONFLICT, ErrorCategory.SYNTAX_ERROR]

    def test_bad_line_is_skipped(self):
        errors = classify_batch([None, "Error: Cannot find module 'lodash'"])
        assert len(errors) == 1

    def test_deterministic(self):
        assert classify_batch(SAMPLE_NEXT_BUILD_LOG) == classify_batch(SAMPLE_NEXT_BUILD_LOG)

    def test_sample_build_log(self):
        errors = classify_batch(SAMPLE_NEXT_BUILD_LOG, ["src/app/page.tsx", "package.json"])
        categories = [e.category for e in errors]
        assert categories[0] == ErrorCategory.MISSING_PACKAGE
        assert ErrorCategory.TYPESCRIPT_ERROR in categories
        assert categories.count(ErrorCategory.MISSING_PACKAGE) == 1

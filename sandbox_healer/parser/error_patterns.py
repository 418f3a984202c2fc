"""
Error Patterns
==============
Registry mapping every ErrorCategory to its regexes, severity and fix strategy.

Classification Strategy:
    1. Every category is evaluated against the line (patterns are OR'd)
    2. Confidence = 0.8 + severity * 0.02, capped at 1.0
    3. Highest confidence wins; ties go to the category declared first
    4. NEVER dynamic inference or LLM

The registry is checked at import time: exactly one entry per category,
so get_fix_strategy() and get_severity() are total.
"""
import re
from dataclasses import dataclass
from typing import Tuple

from sandbox_healer.models.classified_error import ErrorCategory, FixStrategy


# ---------------------------------------------------------------------------
# Pattern Entry
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ErrorPattern:
    """Immutable registry entry for one error category."""
    category: ErrorCategory
    patterns: Tuple[re.Pattern, ...]
    severity: int
    fix_strategy: FixStrategy


def _compile(*sources: str, flags: int = re.I) -> Tuple[re.Pattern, ...]:
    return tuple(re.compile(src, flags) for src in sources)


# ---------------------------------------------------------------------------
# Confidence Constants
# ---------------------------------------------------------------------------
CONF_BASE = 0.8
CONF_PER_SEVERITY = 0.02
CONF_MIN_MATCH = 0.3
UNMATCHED_SEVERITY = 5


def confidence_for(severity: int) -> float:
    return min(1.0, round(CONF_BASE + severity * CONF_PER_SEVERITY, 4))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
ERROR_PATTERNS: Tuple[ErrorPattern, ...] = (
    ErrorPattern(
        ErrorCategory.MISSING_PACKAGE,
        _compile(
            r"Cannot find (?:module|package) '([^']+)'",
            r"Module not found:?\s*(?:Error:?\s*)?(?:Can't resolve|Cannot resolve)\s+'([^']+)'",
            r"ModuleNotFoundError: No module named '([^']+)'",
            r"npm ERR! missing:?\s+(\S+)",
            r"Package '([^']+)' is not installed",
            r"Could not resolve '([^']+)'",
            r"No such file or directory.*node_modules/([^/]+)",
        ),
        severity=9,
        fix_strategy=FixStrategy.INSTALL_PACKAGE,
    ),
    ErrorPattern(
        ErrorCategory.VERSION_CONFLICT,
        _compile(
            r"ERESOLVE unable to resolve dependency tree",
            r"npm ERR! ERESOLVE",
            r"peer dep missing",
            r"peer dependency .* not installed",
            r"conflicting peer dependency",
            r"Could not resolve dependency",
            r"requires a peer of",
            r"version .* doesn't satisfy",
            r"incompatible peer dependency",
        ),
        severity=8,
        fix_strategy=FixStrategy.FIX_VERSION,
    ),
    ErrorPattern(
        ErrorCategory.NATIVE_MODULE,
        _compile(
            r"node-pre-gyp|node-gyp",
            r"Error:.*sharp.*install",
            r"Cannot find module.*\.node",
            r"prebuild-install|node-addon-api",
            r"gyp ERR!",
            r"node_modules/.*binding\.gyp",
            r"Module did not self-register",
            r"Error:.*bcrypt",
            r"Error:.*node-sass",
            r"Error:.*fsevents",
        ),
        severity=8,
        fix_strategy=FixStrategy.AI_SURGICAL,
    ),
    ErrorPattern(
        ErrorCategory.TYPESCRIPT_ERROR,
        (
            re.compile(r"TS\d+:\s"),
            re.compile(r"error TS\d+"),
        ) + _compile(
            r"Type '.*' is not assignable to type",
            r"Property '.*' does not exist on type",
            r"Cannot find name '.*'",
            r"Argument of type '.*' is not assignable",
            r"Could not find a declaration file for module",
            r"Type error:",
            r"Expected \d+ arguments?, but got \d+",
            r"has no exported member",
        ),
        severity=7,
        fix_strategy=FixStrategy.ADD_TYPE_PACKAGE,
    ),
    ErrorPattern(
        ErrorCategory.SYNTAX_ERROR,
        _compile(
            r"SyntaxError:",
            r"Unexpected token",
            r"Unexpected end of input",
            r"Missing semicolon",
            r"Unterminated string",
            r"Invalid or unexpected token",
            r"Identifier .* has already been declared",
            r"Parsing error:",
        ),
        severity=8,
        fix_strategy=FixStrategy.AI_SURGICAL,
    ),
    ErrorPattern(
        ErrorCategory.IMPORT_ERROR,
        _compile(
            r"does not provide an export named",
            r"is not exported from",
            r"Cannot use import statement outside a module",
            r"require\(\) of ES Module",
            r"ERR_REQUIRE_ESM",
            r"ERR_MODULE_NOT_FOUND",
        ),
        severity=7,
        fix_strategy=FixStrategy.FIX_IMPORT,
    ),
    ErrorPattern(
        ErrorCategory.EXPORT_ERROR,
        _compile(
            r"export .* was not found in",
            r"does not contain a default export",
            r"has no default export",
            r"attempted import error",
        ),
        severity=7,
        fix_strategy=FixStrategy.AI_SURGICAL,
    ),
    ErrorPattern(
        ErrorCategory.JSX_ERROR,
        _compile(
            r"JSX element .* has no corresponding closing tag",
            r"Expected corresponding JSX closing tag",
            r"React is not defined",
            r"Invalid JSX",
            r"Adjacent JSX elements must be wrapped",
            r"JSX element implicitly has type 'any'",
        ),
        severity=7,
        fix_strategy=FixStrategy.AI_SURGICAL,
    ),
    ErrorPattern(
        ErrorCategory.REACT_HOOK_ERROR,
        _compile(
            r"React Hook .* is called conditionally",
            r"React Hook .* cannot be called at the top level",
            r"Invalid hook call",
            r"Hooks can only be called inside",
            r"Rules of Hooks",
            r"rendered more hooks than during the previous render",
        ),
        severity=7,
        fix_strategy=FixStrategy.AI_SURGICAL,
    ),
    ErrorPattern(
        ErrorCategory.CSS_ERROR,
        _compile(
            r"Unknown CSS property",
            r"Invalid CSS",
            r"postcss",
            r"tailwind.*error",
            r"CssSyntaxError",
            r"Cannot apply unknown utility class",
        ),
        severity=5,
        fix_strategy=FixStrategy.AI_SURGICAL,
    ),
    ErrorPattern(
        ErrorCategory.ESLINT_ERROR,
        _compile(
            r"eslint.*error",
            r"Rule '.*' definition not found",
            r"ESLint couldn't determine",
        ),
        severity=4,
        fix_strategy=FixStrategy.AI_SURGICAL,
    ),
    ErrorPattern(
        ErrorCategory.WEBPACK_ERROR,
        _compile(
            r"webpack.*error",
            r"Module build failed",
            r"Module parse failed",
            r"You may need an appropriate loader",
            r"webpack\.config",
        ),
        severity=6,
        fix_strategy=FixStrategy.AI_SURGICAL,
    ),
    ErrorPattern(
        ErrorCategory.VITE_ERROR,
        _compile(
            r"\[vite\].*error",
            r"vite.*failed",
            r"Pre-transform error",
            r"Rollup failed to resolve",
        ),
        severity=6,
        fix_strategy=FixStrategy.AI_SURGICAL,
    ),
    ErrorPattern(
        ErrorCategory.NEXT_CONFIG_ERROR,
        _compile(
            r"Invalid next\.config",
            r"next\.config\.(?:js|ts|mjs).*error",
            r"Unrecognized key.*in next\.config",
            r"experimental\.appDir.*removed",
        ),
        severity=7,
        fix_strategy=FixStrategy.FIX_CONFIG,
    ),
    ErrorPattern(
        ErrorCategory.PORT_CONFLICT,
        _compile(
            r"EADDRINUSE",
            r"address already in use",
            r"port .* is already in use",
        ),
        severity=6,
        fix_strategy=FixStrategy.FIX_PORT,
    ),
    ErrorPattern(
        ErrorCategory.PORT_NOT_EXPOSED,
        _compile(
            r"ECONNREFUSED",
            r"Connection refused",
            r"Could not connect to.*localhost",
        ),
        severity=6,
        fix_strategy=FixStrategy.FIX_PORT,
    ),
    ErrorPattern(
        ErrorCategory.ENV_MISSING,
        _compile(
            r"missing.*environment variable",
            r"environment variable.*(?:is )?(?:missing|not set|not defined|required)",
            r"env.*not set",
            r"required.*env.*missing",
            r"undefined.*process\.env",
            r"Configuration error:.*missing",
        ),
        severity=8,
        fix_strategy=FixStrategy.ADD_ENV_VAR,
    ),
    ErrorPattern(
        ErrorCategory.SECRET_MISSING,
        _compile(
            r"Error:.*API_KEY.*required",
            r"Error:.*SECRET.*not defined",
            r"(?:api key|secret|access token).*(?:is )?(?:missing|required|not provided)",
            r"\b\w*(?:SECRET|_API_KEY|_TOKEN)\w*\b.*(?:missing|required|not set|not defined|not provided|undefined)",
            r"(?:missing|required|not set|not defined|undefined)\b.*\b\w*(?:SECRET|_API_KEY|_TOKEN)\w*\b",
        ),
        severity=8,
        fix_strategy=FixStrategy.USER_INPUT,
    ),
    ErrorPattern(
        ErrorCategory.DB_CONNECTION,
        _compile(
            r"ECONNREFUSED.*(?:5432|3306|27017)",
            r"MongoServerError",
            r"SequelizeConnectionRefusedError",
            r"PrismaClientInitializationError",
            r"connection.*refused.*database",
            r"could not connect to server",
            r"FATAL:.*database.*does not exist",
            r"Access denied for user",
        ),
        severity=9,
        fix_strategy=FixStrategy.USER_INPUT,
    ),
    ErrorPattern(
        ErrorCategory.ASYNC_ERROR,
        _compile(
            r"UnhandledPromiseRejection",
            r"Unhandled promise rejection",
            r"async.*error",
            r"await.*is not a function",
            r"Cannot read properties of undefined",
        ),
        severity=6,
        fix_strategy=FixStrategy.AI_SURGICAL,
    ),
    ErrorPattern(
        ErrorCategory.BUILD_COMMAND_MISSING,
        _compile(
            r"Missing script: \"?build\"?",
            r"npm ERR! Missing script",
            r"No build script found",
            r"error Command \"build\" not found",
        ),
        severity=8,
        fix_strategy=FixStrategy.FIX_CONFIG,
    ),
    ErrorPattern(
        ErrorCategory.PERMISSION_ERROR,
        _compile(
            r"EACCES",
            r"Permission denied",
            r"EPERM.*operation not permitted",
        ),
        severity=6,
        fix_strategy=FixStrategy.FIX_CONFIG,
    ),
    ErrorPattern(
        ErrorCategory.MEMORY_ERROR,
        _compile(
            r"JavaScript heap out of memory",
            r"FATAL ERROR:.*heap",
            r"allocation failed",
            r"ENOMEM",
        ),
        severity=7,
        fix_strategy=FixStrategy.FIX_CONFIG,
    ),
    # Never matched by a regex; carries the defaults for unmatched lines.
    ErrorPattern(
        ErrorCategory.UNKNOWN,
        (),
        severity=UNMATCHED_SEVERITY,
        fix_strategy=FixStrategy.AI_SURGICAL,
    ),
)


_BY_CATEGORY: dict[ErrorCategory, ErrorPattern] = {p.category: p for p in ERROR_PATTERNS}


def _check_registry() -> None:
    seen = [p.category for p in ERROR_PATTERNS]
    duplicates = {c for c in seen if seen.count(c) > 1}
    missing = set(ErrorCategory) - set(seen)
    if duplicates or missing:
        raise RuntimeError(
            f"Error pattern registry is not total: "
            f"duplicates={sorted(c.value for c in duplicates)} "
            f"missing={sorted(c.value for c in missing)}"
        )
    for p in ERROR_PATTERNS:
        if not 1 <= p.severity <= 10:
            raise RuntimeError(f"Severity out of range for {p.category.value}: {p.severity}")


_check_registry()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def get_pattern(category: ErrorCategory) -> ErrorPattern:
    return _BY_CATEGORY[category]


def get_fix_strategy(category: ErrorCategory) -> FixStrategy:
    """Return the fix strategy registered for a category (total)."""
    return _BY_CATEGORY[category].fix_strategy


def get_severity(category: ErrorCategory) -> int:
    """Return the severity registered for a category (total)."""
    return _BY_CATEGORY[category].severity


def requires_user_input(category: ErrorCategory) -> bool:
    """True for categories that only a human can resolve (secrets, databases)."""
    return get_fix_strategy(category) is FixStrategy.USER_INPUT


def requires_db_provisioning(category: ErrorCategory) -> bool:
    return category is ErrorCategory.DB_CONNECTION


def classify_line(line: str) -> Tuple[ErrorCategory, float]:
    """
    Classify a single log line into (category, confidence).

    Every registry entry is evaluated. The highest confidence wins. On a tie
    a user-input category beats any other (secrets never get an invented
    value); otherwise the entry declared first keeps the win. An unmatched
    line is (UNKNOWN, 0.0).
    """
    best_category = ErrorCategory.UNKNOWN
    best_confidence = 0.0

    for entry in ERROR_PATTERNS:
        if not any(pattern.search(line) for pattern in entry.patterns):
            continue
        confidence = confidence_for(entry.severity)
        if confidence > best_confidence or (
            confidence == best_confidence
            and entry.fix_strategy is FixStrategy.USER_INPUT
            and not requires_user_input(best_category)
        ):
            best_category, best_confidence = entry.category, confidence

    return best_category, best_confidence

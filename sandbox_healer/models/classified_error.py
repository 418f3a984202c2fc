"""
Classified Error Model
======================
The contract between the log classifier and everything downstream
(fix dispatcher, iteration records, API responses).

Enums:
    ErrorCategory — closed set of failure tags, one registry entry each
    FixStrategy   — repair approach assigned to a category

Fields (ClassifiedError):
    category        — ErrorCategory of the matched registry entry
    confidence      — 0.0–1.0, derived from severity (0.8 + severity * 0.02)
    raw_message     — the offending log line, trimmed
    affected_file   — best-effort path extracted from the message (nullable)
    line_number     — best-effort line number (nullable)
    severity        — 1–10, copied from the registry entry (5 when unmatched)
    fix_strategy    — FixStrategy copied from the registry entry

Instances are frozen: created fresh on every classification pass, consumed
once by the dispatcher and once for persistence.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorCategory(str, Enum):
    MISSING_PACKAGE = "MISSING_PACKAGE"
    VERSION_CONFLICT = "VERSION_CONFLICT"
    NATIVE_MODULE = "NATIVE_MODULE"
    TYPESCRIPT_ERROR = "TYPESCRIPT_ERROR"
    SYNTAX_ERROR = "SYNTAX_ERROR"
    IMPORT_ERROR = "IMPORT_ERROR"
    EXPORT_ERROR = "EXPORT_ERROR"
    JSX_ERROR = "JSX_ERROR"
    REACT_HOOK_ERROR = "REACT_HOOK_ERROR"
    CSS_ERROR = "CSS_ERROR"
    ESLINT_ERROR = "ESLINT_ERROR"
    WEBPACK_ERROR = "WEBPACK_ERROR"
    VITE_ERROR = "VITE_ERROR"
    NEXT_CONFIG_ERROR = "NEXT_CONFIG_ERROR"
    PORT_CONFLICT = "PORT_CONFLICT"
    PORT_NOT_EXPOSED = "PORT_NOT_EXPOSED"
    ENV_MISSING = "ENV_MISSING"
    SECRET_MISSING = "SECRET_MISSING"
    DB_CONNECTION = "DB_CONNECTION"
    ASYNC_ERROR = "ASYNC_ERROR"
    BUILD_COMMAND_MISSING = "BUILD_COMMAND_MISSING"
    PERMISSION_ERROR = "PERMISSION_ERROR"
    MEMORY_ERROR = "MEMORY_ERROR"
    UNKNOWN = "UNKNOWN"

    @property
    def order(self) -> int:
        """Declaration index, used as the deterministic tie-break."""
        return _CATEGORY_ORDER[self]


_CATEGORY_ORDER = {category: index for index, category in enumerate(ErrorCategory)}


class FixStrategy(str, Enum):
    # Deterministic (scripted edits)
    INSTALL_PACKAGE = "install_package"
    FIX_VERSION = "fix_version"
    ADD_TYPE_PACKAGE = "add_type_package"
    ADD_ENV_VAR = "add_env_var"
    FIX_PORT = "fix_port"
    # Escalated to the code repairer
    FIX_IMPORT = "fix_import"
    FIX_CONFIG = "fix_config"
    AI_SURGICAL = "ai_surgical"
    # Cannot be automated
    USER_INPUT = "user_input"

    @property
    def kind(self) -> str:
        """Coarse family: deterministic, ai_surgical or user_input."""
        if self in _DETERMINISTIC:
            return "deterministic"
        if self is FixStrategy.USER_INPUT:
            return "user_input"
        return "ai_surgical"


_DETERMINISTIC = frozenset({
    FixStrategy.INSTALL_PACKAGE,
    FixStrategy.FIX_VERSION,
    FixStrategy.ADD_TYPE_PACKAGE,
    FixStrategy.ADD_ENV_VAR,
    FixStrategy.FIX_PORT,
})


class ClassifiedError(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: ErrorCategory
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    raw_message: str = ""
    affected_file: Optional[str] = None
    line_number: Optional[int] = None
    severity: int = Field(default=5, ge=1, le=10)
    fix_strategy: FixStrategy = FixStrategy.AI_SURGICAL

    @property
    def dedupe_key(self) -> tuple[ErrorCategory, str]:
        return self.category, self.affected_file or "unknown"

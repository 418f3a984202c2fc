"""
LLM Prompts
===========
System and user prompts for whole-file code repair.

Prompt Design Rules:
    - One request per file, listing every error reported for that file
    - "Return ONLY the complete corrected file" — no explanations, no JSON
    - Minimal change: fix the listed errors, leave unrelated code alone
    - Preserve comments and formatting
"""
from typing import Sequence

from sandbox_healer.models.classified_error import ClassifiedError


# ---------------------------------------------------------------------------
# System Prompt
# ---------------------------------------------------------------------------
SYSTEM_PROMPT = (
    "You are a code repair engine for generated web applications. "
    "Fix the reported errors and return the complete corrected file.\n"
    "\n"
    "HARD RULES:\n"
    "1. Fix ONLY the listed errors.\n"
    "2. Do NOT refactor, rename, or reorganise unrelated code.\n"
    "3. Preserve ALL comments and formatting.\n"
    "4. Keep every existing export so other files still compile.\n"
    "5. Do NOT add explanations or markdown formatting.\n"
    "\n"
    "Respond with the full file content and nothing else."
)


# Per-category hints appended to the error list when relevant
CATEGORY_HINTS: dict[str, str] = {
    "IMPORT_ERROR": "Check import paths and ESM/CommonJS syntax; prefer ESM imports.",
    "EXPORT_ERROR": "Make the imported names match what the module actually exports.",
    "JSX_ERROR": "Ensure every JSX element is closed and siblings are wrapped in a fragment.",
    "REACT_HOOK_ERROR": "Hooks must be called unconditionally at the top level of a component.",
    "NEXT_CONFIG_ERROR": "Remove keys that the installed Next.js version does not recognise.",
    "BUILD_COMMAND_MISSING": "package.json needs a \"build\" script; add one that matches the framework.",
    "MEMORY_ERROR": "Reduce build memory, e.g. set NODE_OPTIONS=--max-old-space-size in scripts.",
}


def _format_error(error: ClassifiedError) -> str:
    line = error.line_number if error.line_number is not None else "?"
    return f"- Line {line}: [{error.category.value}] {error.raw_message}"


# ---------------------------------------------------------------------------
# User Prompt Builder
# ---------------------------------------------------------------------------
def build_repair_prompt(file_path: str, content: str, errors: Sequence[ClassifiedError]) -> str:
    """
    Build the user prompt asking for a corrected copy of ``file_path``.

    Parameters
    ----------
    file_path : str
        Project-relative path of the file being repaired.
    content : str
        Current file content.
    errors : Sequence[ClassifiedError]
        Every error attributed to this file in the current iteration.

    Returns
    -------
    str
        Formatted user prompt string.
    """
    parts: list[str] = [
        "Fix these errors in the file. Return ONLY the complete corrected file content.",
        f"FILE: {file_path}",
        "ERRORS:\n" + "\n".join(_format_error(e) for e in errors),
    ]

    hints = []
    for category in dict.fromkeys(e.category.value for e in errors):
        if category in CATEGORY_HINTS:
            hints.append(f"- {CATEGORY_HINTS[category]}")
    if hints:
        parts.append("HINTS:\n" + "\n".join(hints))

    parts.append(f"CURRENT CONTENT:\n{content}")
    parts.append("Return the complete fixed file. No explanations, no markdown.")
    return "\n\n".join(parts)

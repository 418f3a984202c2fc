"""
Code Repairer
=============
Produces a complete replacement for one file given the errors reported in it.

Core Philosophy:
    - One request per file, all of that file's errors at once
    - Whole-file output, written back by the fix dispatcher
    - Returns "" when no usable repair was produced; never raises for
      provider failures

Safety Rules:
    - Files containing merge conflict markers are never sent
    - A reply that shrinks the file below MIN_LENGTH_RATIO of its
      original size is treated as truncated and discarded

The CodeRepairer does NOT:
    - Read or write project files (that's the dispatcher's job)
    - Decide which errors to escalate (that's the dispatcher's job)
"""
import logging
import re
from typing import Optional, Protocol, Sequence

from sandbox_healer.llm.client import LLMClient
from sandbox_healer.llm.prompts import SYSTEM_PROMPT, build_repair_prompt
from sandbox_healer.llm.router import LLMRouter
from sandbox_healer.models.classified_error import ClassifiedError

logger = logging.getLogger(__name__)

_CONFLICT_MARKER_RE = re.compile(r"^(<{7}|>{7})\s", re.MULTILINE)

MIN_LENGTH_RATIO = 0.2


class CodeRepairer(Protocol):
    async def repair(self, file_path: str, content: str, errors: Sequence[ClassifiedError]) -> str: ...


class LLMCodeRepairer:
    """
    CodeRepairer backed by the LLM client with provider fallback.

    Parameters
    ----------
    router : LLMRouter or None
        Provider router (auto-created if not provided).
    client : LLMClient or None
        HTTP client (auto-created if not provided).
    """

    def __init__(self, router: Optional[LLMRouter] = None, client: Optional[LLMClient] = None) -> None:
        self.router = router or LLMRouter()
        self.client = client or LLMClient()

    async def repair(self, file_path: str, content: str, errors: Sequence[ClassifiedError]) -> str:
        if _CONFLICT_MARKER_RE.search(content):
            logger.warning("Merge conflict markers in %s, not sending for repair", file_path)
            return ""

        prompt = build_repair_prompt(file_path, content, errors)
        response = await self.client.call_with_fallback(prompt, SYSTEM_PROMPT, self.router)

        if not response.success:
            logger.warning("Code repair failed for %s: %s", file_path, response.error)
            return ""

        if content and len(response.content) < len(content) * MIN_LENGTH_RATIO:
            logger.warning(
                "Discarding repair for %s: reply is %d chars, original %d (looks truncated)",
                file_path, len(response.content), len(content),
            )
            return ""

        logger.info(
            "Repaired %s via %s (%d error(s), %d → %d chars)",
            file_path, response.provider_name, len(errors), len(content), len(response.content),
        )
        return response.content

    async def close(self) -> None:
        await self.client.close()

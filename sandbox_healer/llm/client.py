"""
LLM Client
==========
Async HTTP client for the code repair providers.

Gemini is called through its REST ``generateContent`` endpoint; Groq and
OpenRouter through the OpenAI-compatible ``/chat/completions`` endpoint.

The model is expected to answer with the complete corrected file. A fenced
answer is unwrapped; an empty answer counts as a failed attempt.

Each provider gets ``max_retries`` attempts, except that an HTTP 429 ends
its attempts immediately. ``call_with_fallback`` then tries one more
healthy provider picked by the router.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from sandbox_healer.llm.router import LLMRouter, ProviderConfig

logger = logging.getLogger(__name__)

_TEMPERATURE = 0.1
_MAX_OUTPUT_TOKENS = 8192


@dataclass
class LLMResponse:
    content: str
    provider_name: str
    success: bool = True
    error: str = ""

    @classmethod
    def failure(cls, provider_name: str, error: str) -> "LLMResponse":
        return cls(content="", provider_name=provider_name, success=False, error=error)


# ---------------------------------------------------------------------------
# Response Parsing
# ---------------------------------------------------------------------------
_FENCED = re.compile(r"^```[\w.+-]*[ \t]*\n(.*?)\n?```$", re.DOTALL)


def strip_code_fences(raw: str) -> str:
    """Return the body of a fenced block, or the trimmed text if not fenced."""
    text = (raw or "").strip()
    fenced = _FENCED.match(text)
    return fenced.group(1).strip() if fenced else text


def parse_llm_response(raw: str, provider_name: str) -> LLMResponse:
    body = strip_code_fences(raw)
    if body:
        return LLMResponse(content=body, provider_name=provider_name)
    return LLMResponse.failure(provider_name, "Empty response from LLM")


def _first_text(items, *path) -> str:
    """Walk ``items[0]`` down ``path``; missing keys yield ''."""
    if not items:
        return ""
    node = items[0]
    for key in path:
        if isinstance(node, list):
            node = node[0] if node else {}
        node = node.get(key) if isinstance(node, dict) else None
        if node is None:
            return ""
    return node if isinstance(node, str) else ""


# ---------------------------------------------------------------------------
# LLM Client
# ---------------------------------------------------------------------------
class LLMClient:
    """
    Usage:
        client = LLMClient()
        response = await client.call_with_fallback(prompt, system_prompt, router)
        await client.close()
    """

    def __init__(self) -> None:
        self._http: Optional[httpx.AsyncClient] = None

    async def _post_json(self, url: str, payload: dict, provider: ProviderConfig, headers=None) -> dict:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(60.0))
        resp = await self._http.post(url, json=payload, headers=headers, timeout=provider.timeout_seconds)
        resp.raise_for_status()
        return resp.json()

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None

    async def _call_gemini(self, user_prompt: str, system_prompt: str, provider: ProviderConfig) -> str:
        data = await self._post_json(
            f"{provider.base_url}/models/{provider.model}:generateContent?key={provider.api_key}",
            {
                "system_instruction": {"parts": [{"text": system_prompt}]},
                "contents": [{"parts": [{"text": user_prompt}]}],
                "generationConfig": {"temperature": _TEMPERATURE, "maxOutputTokens": _MAX_OUTPUT_TOKENS},
            },
            provider,
        )
        return _first_text(data.get("candidates"), "content", "parts", "text")

    async def _call_openai_compatible(self, user_prompt: str, system_prompt: str, provider: ProviderConfig) -> str:
        data = await self._post_json(
            f"{provider.base_url}/chat/completions",
            {
                "model": provider.model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                "temperature": _TEMPERATURE,
                "max_tokens": _MAX_OUTPUT_TOKENS,
            },
            provider,
            headers={"Authorization": f"Bearer {provider.api_key}"},
        )
        return _first_text(data.get("choices"), "message", "content")

    async def call(self, user_prompt: str, system_prompt: str, provider: ProviderConfig) -> LLMResponse:
        """Call one provider, retrying up to ``provider.max_retries`` times."""
        send = self._call_gemini if provider.name == "gemini" else self._call_openai_compatible

        for attempt in range(1, provider.max_retries + 1):
            try:
                response = parse_llm_response(await send(user_prompt, system_prompt, provider), provider.name)
            except httpx.HTTPStatusError as e:
                code = e.response.status_code
                logger.warning("%s attempt %d failed with HTTP %d", provider.name, attempt, code)
                if code == 429:
                    break
                continue
            except httpx.TimeoutException:
                logger.warning("%s attempt %d timed out", provider.name, attempt)
                continue
            except httpx.HTTPError as e:
                logger.warning("%s attempt %d failed: %s", provider.name, attempt, e)
                continue

            if response.success:
                return response
            logger.warning("%s attempt %d returned an empty body", provider.name, attempt)

        return LLMResponse.failure(provider.name, f"All {provider.max_retries} retries exhausted for {provider.name}")

    async def _try(self, user_prompt: str, system_prompt: str, provider: ProviderConfig, router: LLMRouter) -> LLMResponse:
        response = await self.call(user_prompt, system_prompt, provider)
        if response.success:
            router.report_success(provider.name)
        else:
            router.report_failure(provider.name)
        return response

    async def call_with_fallback(self, user_prompt: str, system_prompt: str, router: LLMRouter) -> LLMResponse:
        primary = router.get_provider()
        if primary is None:
            return LLMResponse.failure("", "No LLM provider configured")

        response = await self._try(user_prompt, system_prompt, primary, router)
        if response.success:
            return response

        fallback = router.get_fallback_provider(primary.name)
        if fallback is not None:
            response = await self._try(user_prompt, system_prompt, fallback, router)
            if response.success:
                return response

        return LLMResponse.failure(primary.name, "All providers failed")

"""
LLM Router
==========
Picks the provider used for whole-file code repair and keeps a small
cooldown ledger per provider.

Selection order is the configured order (Groq, Gemini, OpenRouter by
default). A provider with no API key is dropped at construction time.

Cooldown:
    - every failed call bumps the provider's failure streak; a success resets it
    - a streak of PROVIDER_COOLDOWN_THRESHOLD benches the provider for the
      next PROVIDER_COOLDOWN_SKIP_COUNT selections
    - when the bench expires the streak is left one short of the threshold,
      so a single further failure benches it again
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sandbox_healer.core.config import (
    GEMINI_API_KEY, GROQ_API_KEY, OPENROUTER_API_KEY,
    PROVIDER_COOLDOWN_THRESHOLD, PROVIDER_COOLDOWN_SKIP_COUNT,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------
@dataclass
class ProviderConfig:
    """Endpoint, credentials and retry budget of one provider."""
    name: str
    api_key: str
    base_url: str
    model: str
    max_retries: int = 2
    timeout_seconds: int = 60


def default_providers() -> List[ProviderConfig]:
    """Providers built from the environment, in preference order."""
    return [
        ProviderConfig("groq", GROQ_API_KEY or "",
                       "https://api.groq.com/openai/v1", "llama-3.3-70b-versatile"),
        ProviderConfig("gemini", GEMINI_API_KEY or "",
                       "https://generativelanguage.googleapis.com/v1beta", "gemini-2.0-flash"),
        ProviderConfig("openrouter", OPENROUTER_API_KEY or "",
                       "https://openrouter.ai/api/v1", "qwen/qwen-2.5-coder-32b-instruct",
                       max_retries=1),
    ]


# ---------------------------------------------------------------------------
# Cooldown ledger
# ---------------------------------------------------------------------------
@dataclass
class ProviderHealth:
    name: str
    consecutive_failures: int = 0
    benched_for: int = 0
    max_failures: int = PROVIDER_COOLDOWN_THRESHOLD

    @property
    def is_healthy(self) -> bool:
        return self.benched_for == 0

    def failed(self) -> None:
        self.consecutive_failures += 1
        if self.is_healthy and self.consecutive_failures >= self.max_failures:
            self.benched_for = PROVIDER_COOLDOWN_SKIP_COUNT
            logger.warning("Provider %s benched after %d failures (%d selections)",
                           self.name, self.consecutive_failures, self.benched_for)

    def succeeded(self) -> None:
        self.consecutive_failures = 0

    def selection_passed(self) -> None:
        if self.is_healthy:
            return
        self.benched_for -= 1
        if self.is_healthy:
            self.consecutive_failures = self.max_failures - 1
            logger.info("Provider %s back from cooldown", self.name)


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------
class LLMRouter:
    """
    Usage:
        router = LLMRouter()
        provider = router.get_provider()
        ...
        router.report_success(provider.name)   # or report_failure(...)
    """

    def __init__(self, providers: Optional[List[ProviderConfig]] = None) -> None:
        if providers is None:
            providers = default_providers()
        self._providers = [p for p in providers if p.api_key]
        self._ledger: Dict[str, ProviderHealth] = {
            p.name: ProviderHealth(name=p.name) for p in self._providers
        }
        if not self._providers:
            logger.warning("No LLM provider API key configured; code repair is disabled")

    @property
    def available(self) -> bool:
        return bool(self._providers)

    def _first_healthy(self, skip=()) -> Optional[ProviderConfig]:
        return next(
            (p for p in self._providers if p.name not in skip and self._ledger[p.name].is_healthy),
            None,
        )

    def get_provider(self) -> Optional[ProviderConfig]:
        """First healthy provider, or the first configured one when all are benched."""
        for health in self._ledger.values():
            health.selection_passed()
        chosen = self._first_healthy()
        if chosen is None and self._providers:
            chosen = self._providers[0]
            logger.warning("Every provider is cooling down; using %s anyway", chosen.name)
        return chosen

    def get_fallback_provider(self, *exclude_names: str) -> Optional[ProviderConfig]:
        chosen = self._first_healthy(exclude_names)
        if chosen is not None:
            logger.info("Falling back to %s after %s", chosen.name, ", ".join(exclude_names))
        return chosen

    def report_success(self, provider_name: str) -> None:
        if provider_name in self._ledger:
            self._ledger[provider_name].succeeded()

    def report_failure(self, provider_name: str) -> None:
        if provider_name in self._ledger:
            self._ledger[provider_name].failed()

    def get_health(self, provider_name: str) -> Optional[ProviderHealth]:
        return self._ledger.get(provider_name)

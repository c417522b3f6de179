"""Advisory collaborator and its throttled cache."""

from .advisory_cache import AdvisoryCache
from .llm_advisor import (
    AdvisoryProvider,
    NullAdvisor,
    OpenAICompatibleAdvisor,
    build_prompt,
    create_provider,
    parse_advisory,
)

__all__ = [
    "AdvisoryCache",
    "AdvisoryProvider",
    "NullAdvisor",
    "OpenAICompatibleAdvisor",
    "build_prompt",
    "create_provider",
    "parse_advisory",
]

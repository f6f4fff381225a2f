"""Tiered model access: tier table, providers, structured calls and routing.

The router is the only entry point the pipeline uses; the client and the
providers are exposed for tests and for callers that wire their own stack.
"""

from .client import StructuredCallClient
from .providers import (
    CompletionProvider,
    CompletionRequest,
    CompletionResponse,
    GoogleGenAIProvider,
    MockProvider,
)
from .router import (
    EscalationRouter,
    EscalationThresholds,
    ScoringInput,
    ScoringOutcome,
)
from .tiers import DEFAULT_TIER_SPECS, ModelTierTable, TierSpec

__all__ = [  # noqa: RUF022
    "StructuredCallClient",
    "CompletionProvider",
    "CompletionRequest",
    "CompletionResponse",
    "GoogleGenAIProvider",
    "MockProvider",
    "EscalationRouter",
    "EscalationThresholds",
    "ScoringInput",
    "ScoringOutcome",
    "DEFAULT_TIER_SPECS",
    "ModelTierTable",
    "TierSpec",
]

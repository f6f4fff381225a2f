"""Model tier table: abstract tiers to concrete models, availability and cost.

The table is built once at process start (see ``config.build_tier_table``) and
is read-only afterwards, so concurrent runs can share it without locking.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
import logging
from types import MappingProxyType

from screenplay_coverage.core.types import TIER_ORDER, Tier
from screenplay_coverage.exceptions import ConfigurationError

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TierSpec:
    """Concrete characteristics of one tier."""

    model_id: str
    available: bool = True
    fallback: Tier | None = None
    max_tokens: int = 128_000
    cost_per_1k_tokens: float = 0.0


DEFAULT_MODEL_IDS: Mapping[Tier, str] = MappingProxyType(
    {
        Tier.NANO: "gemini-2.0-flash-lite",
        Tier.MINI: "gemini-2.0-flash",
        Tier.BASE: "gemini-2.5-flash",
        Tier.THINKING: "gemini-2.5-pro",
    }
)

DEFAULT_TIER_SPECS: Mapping[Tier, TierSpec] = MappingProxyType(
    {
        # nano is not provisioned; requests land on mini
        Tier.NANO: TierSpec(
            model_id=DEFAULT_MODEL_IDS[Tier.NANO],
            available=False,
            fallback=Tier.MINI,
            max_tokens=4096,
            cost_per_1k_tokens=0.0001,
        ),
        Tier.MINI: TierSpec(
            model_id=DEFAULT_MODEL_IDS[Tier.MINI],
            max_tokens=128_000,
            cost_per_1k_tokens=0.00015,
        ),
        Tier.BASE: TierSpec(
            model_id=DEFAULT_MODEL_IDS[Tier.BASE],
            max_tokens=128_000,
            cost_per_1k_tokens=0.0025,
        ),
        Tier.THINKING: TierSpec(
            model_id=DEFAULT_MODEL_IDS[Tier.THINKING],
            fallback=Tier.BASE,
            max_tokens=128_000,
            cost_per_1k_tokens=0.025,
        ),
    }
)


class ModelTierTable:
    """Immutable tier table with validated fallback chains.

    Every tier must either be available or fall back, possibly through other
    tiers, to an available one. Cycles and dead ends raise
    ``ConfigurationError`` at construction, so ``resolve`` never fails later.
    """

    __slots__ = ("_resolved", "_specs")

    def __init__(self, specs: Mapping[Tier, TierSpec]):
        missing = [t for t in TIER_ORDER if t not in specs]
        if missing:
            raise ConfigurationError(
                f"Tier table is missing tiers: {', '.join(missing)}"
            )
        self._specs: Mapping[Tier, TierSpec] = MappingProxyType(dict(specs))
        self._resolved: Mapping[Tier, Tier] = MappingProxyType(
            {tier: self._walk(tier) for tier in TIER_ORDER}
        )
        for tier, target in self._resolved.items():
            if tier is not target:
                log.info("Tier %s unavailable, using fallback %s", tier, target)

    @classmethod
    def default(cls, model_ids: Mapping[Tier, str] | None = None) -> ModelTierTable:
        """Build the default table, optionally overriding model ids per tier."""
        overrides = model_ids or {}
        return cls(
            {
                tier: replace(spec, model_id=overrides.get(tier, spec.model_id))
                for tier, spec in DEFAULT_TIER_SPECS.items()
            }
        )

    def _walk(self, tier: Tier) -> Tier:
        seen: list[Tier] = []
        current = tier
        while True:
            if current in seen:
                chain = " -> ".join([*seen, current])
                raise ConfigurationError(f"Fallback cycle in tier table: {chain}")
            seen.append(current)
            spec = self._specs[current]
            if spec.available:
                return current
            if spec.fallback is None:
                raise ConfigurationError(
                    f"Tier {tier} is unavailable and its fallback chain "
                    f"ends at unavailable tier {current}"
                )
            current = spec.fallback

    # --- Lookups ---

    def resolve(self, tier: Tier) -> Tier:
        """Return the available tier a request for `tier` actually runs on."""
        return self._resolved[Tier(tier)]

    def spec(self, tier: Tier) -> TierSpec:
        """Return the `TierSpec` a request for `tier` runs on."""
        return self._specs[self.resolve(tier)]

    def declared(self, tier: Tier) -> TierSpec:
        """Return the `TierSpec` exactly as declared, without fallback."""
        return self._specs[Tier(tier)]

    def model_id(self, tier: Tier) -> str:
        return self.spec(tier).model_id

    def clamp_output_tokens(self, tier: Tier, requested: int) -> int:
        return min(requested, self.spec(tier).max_tokens)

    def next_tier(self, tier: Tier) -> Tier | None:
        """Return the next strictly more capable available tier, if any.

        Tiers whose fallback lands at or below the current tier are skipped,
        so escalating never re-runs the same model.
        """
        current = self.resolve(tier)
        for candidate in TIER_ORDER:
            if candidate.rank <= current.rank:
                continue
            resolved = self.resolve(candidate)
            if resolved.rank > current.rank:
                return resolved
        return None

    def ladder(self, start: Tier) -> tuple[Tier, ...]:
        """Return the escalation path from `start` to the top available tier."""
        steps = [self.resolve(start)]
        while (nxt := self.next_tier(steps[-1])) is not None:
            steps.append(nxt)
        return tuple(steps)

    def estimate_cost(self, tier: Tier, tokens: int) -> float:
        return tokens / 1000 * self.spec(tier).cost_per_1k_tokens

    def cost_table(self) -> dict[Tier, float]:
        """Cost per 1K tokens keyed by tier, as recorded in telemetry."""
        return {tier: self.spec(tier).cost_per_1k_tokens for tier in TIER_ORDER}

    def __repr__(self) -> str:
        body = ", ".join(
            f"{tier}->{self._resolved[tier]}:{self._specs[self._resolved[tier]].model_id}"
            for tier in TIER_ORDER
        )
        return f"ModelTierTable({body})"

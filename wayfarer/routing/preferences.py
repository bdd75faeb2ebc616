"""
Wayfarer - Tier Preferences

Static provider preference order per complexity tier:

    high   -> cerebras, gemini, groq   (largest context, strongest model)
    medium -> gemini, groq, cerebras
    low    -> groq, gemini, cerebras   (fastest, cheapest)

Candidates are sorted by (preference rank, rolling average latency,
provider name). Providers missing from a tier's list share a rank after
every listed provider, so latency and then name decide among them.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..core.models import ComplexityTier, Provider


DEFAULT_PREFERENCES: Dict[ComplexityTier, List[Provider]] = {
    ComplexityTier.HIGH: [Provider.CEREBRAS, Provider.GEMINI, Provider.GROQ],
    ComplexityTier.MEDIUM: [Provider.GEMINI, Provider.GROQ, Provider.CEREBRAS],
    ComplexityTier.LOW: [Provider.GROQ, Provider.GEMINI, Provider.CEREBRAS],
}


def parse_preference(value: str) -> List[Provider]:
    """Parse a comma-separated provider list, e.g. ``"groq, gemini"``."""
    providers: List[Provider] = []
    for name in value.split(","):
        if not name.strip():
            continue
        provider = Provider.parse(name)
        if provider not in providers:
            providers.append(provider)
    return providers


@dataclass
class TierPreferences:
    """Preference table used by the registry to order candidates."""
    table: Dict[ComplexityTier, List[Provider]] = field(
        default_factory=lambda: {t: list(p) for t, p in DEFAULT_PREFERENCES.items()}
    )

    @classmethod
    def from_overrides(
        cls,
        overrides: Optional[Dict[ComplexityTier, Sequence[Provider]]] = None
    ) -> "TierPreferences":
        prefs = cls()
        for tier, providers in (overrides or {}).items():
            prefs.table[tier] = list(providers)
        return prefs

    def rank(self, tier: ComplexityTier, provider: Provider) -> int:
        order = self.table.get(tier, [])
        if provider in order:
            return order.index(provider)
        return len(order)

    def order(
        self,
        tier: ComplexityTier,
        providers: Iterable[Provider],
        avg_latency_ms: Callable[[Provider], int]
    ) -> List[Provider]:
        """Sort providers for a tier. Deterministic for equal inputs."""
        return sorted(
            providers,
            key=lambda p: (self.rank(tier, p), avg_latency_ms(p), p.value)
        )

    def to_dict(self) -> Dict[str, List[str]]:
        return {tier.value: [p.value for p in providers] for tier, providers in self.table.items()}

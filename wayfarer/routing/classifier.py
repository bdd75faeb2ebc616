"""
Wayfarer - Complexity Classifier

Assigns a complexity tier to an inbound request. The tier decides
which provider preference order the routing engine uses.

Policy:
- text longer than ``high_threshold_chars``   -> HIGH
- text longer than ``medium_threshold_chars`` -> MEDIUM
- otherwise                                   -> LOW
- structured output or multi-step reasoning requests are promoted
  to at least MEDIUM regardless of length

A request without any text is LOW. The classifier is a pure function
of the request: no I/O, no hidden state.
"""

import math
from dataclasses import dataclass

from ..core.models import CompletionRequest, ComplexityTier

# ~4 characters per token for English text
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class ClassifierConfig:
    """Thresholds for complexity classification."""
    high_threshold_chars: int = 3000
    medium_threshold_chars: int = 500

    def __post_init__(self):
        if self.medium_threshold_chars < 0:
            raise ValueError("medium_threshold_chars must be >= 0")
        if self.high_threshold_chars < self.medium_threshold_chars:
            raise ValueError("high_threshold_chars must be >= medium_threshold_chars")


def estimate_tokens(text: str) -> int:
    """Rough token estimate for a piece of text."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class ComplexityClassifier:
    """Deterministic request -> tier classifier."""

    def __init__(self, config: ClassifierConfig = ClassifierConfig()):
        self.config = config

    def classify(self, request: CompletionRequest) -> ComplexityTier:
        """Assign a complexity tier to a request."""
        length = len(request.text)

        if length > self.config.high_threshold_chars:
            tier = ComplexityTier.HIGH
        elif length > self.config.medium_threshold_chars:
            tier = ComplexityTier.MEDIUM
        else:
            tier = ComplexityTier.LOW

        if request.response_format.is_structured or request.multi_step:
            tier = tier.at_least(ComplexityTier.MEDIUM)

        return tier

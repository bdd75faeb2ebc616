"""
Wayfarer - Core Data Models

Unified request/response and routing-trace models shared by the
classifier, registry, engine, executor and recorder.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# Enums
# ============================================================

class Provider(str, Enum):
    """Supported upstream LLM providers."""
    CEREBRAS = "cerebras"
    GEMINI = "gemini"
    GROQ = "groq"

    @classmethod
    def parse(cls, value: str) -> "Provider":
        """Parse a provider name, case-insensitively."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown provider: {value!r}") from None


class ComplexityTier(str, Enum):
    """Coarse request complexity used to pick a provider order."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]

    def at_least(self, other: "ComplexityTier") -> "ComplexityTier":
        """Return the higher of two tiers."""
        return self if self.rank >= other.rank else other


_TIER_RANKS = {
    ComplexityTier.LOW: 0,
    ComplexityTier.MEDIUM: 1,
    ComplexityTier.HIGH: 2,
}


class ResponseFormat(str, Enum):
    """Requested response format."""
    TEXT = "text"
    JSON = "json"
    STRUCTURED = "structured"

    @property
    def is_structured(self) -> bool:
        return self is not ResponseFormat.TEXT


class ErrorKind(str, Enum):
    """
    Classified kinds of per-attempt provider failures.

    TRANSIENT: timeout, 5xx, network failure
    QUOTA: key quota or rate limit exhausted
    AUTH: key rejected by the provider
    MALFORMED_RESPONSE: provider replied but content failed validation
    """
    TRANSIENT = "transient"
    QUOTA = "quota"
    AUTH = "auth"
    MALFORMED_RESPONSE = "malformed_response"


class KeySlotRole(str, Enum):
    """Position of an API key within a provider's rotation."""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    TERTIARY = "tertiary"


KEY_SLOT_ORDER = (KeySlotRole.PRIMARY, KeySlotRole.SECONDARY, KeySlotRole.TERTIARY)


class AttemptOutcome(str, Enum):
    """Outcome of a single provider attempt."""
    SUCCESS = "success"
    FAILURE = "failure"


class RoutingState(str, Enum):
    """
    Lifecycle of a routed request.

    CLASSIFIED -> CANDIDATES_BUILT -> ATTEMPTING* -> SUCCEEDED | EXHAUSTED
    | DEADLINE_EXCEEDED, or the NO_PROVIDER_AVAILABLE shortcut.
    """
    CLASSIFIED = "classified"
    CANDIDATES_BUILT = "candidates_built"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    NO_PROVIDER_AVAILABLE = "no_provider_available"


# ============================================================
# Requests
# ============================================================

@dataclass
class ChatMessage:
    """A single chat message."""
    role: str
    content: str = ""


@dataclass
class CompletionRequest:
    """
    Uniform request passed to every provider adapter.

    Example:
        request = CompletionRequest(
            prompt="Plan three days in Lisbon",
            response_format=ResponseFormat.STRUCTURED,
            max_tokens=2000,
        )
    """
    prompt: Optional[str] = None
    messages: List[ChatMessage] = field(default_factory=list)
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    response_format: ResponseFormat = ResponseFormat.TEXT
    multi_step: bool = False
    stream: bool = False
    include_web_search: bool = False
    similarity_threshold: Optional[float] = None
    request_id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:24]}")

    @property
    def text(self) -> str:
        """All user-visible text of the request, concatenated."""
        parts = []
        if self.prompt:
            parts.append(self.prompt)
        for message in self.messages:
            if message.content:
                parts.append(message.content)
        return "\n".join(parts)

    def to_messages(self) -> List[Dict[str, str]]:
        """Render the request as an OpenAI-style message list."""
        rendered: List[Dict[str, str]] = []
        if self.system_prompt:
            rendered.append({"role": "system", "content": self.system_prompt})
        for message in self.messages:
            rendered.append({"role": message.role, "content": message.content})
        if self.prompt:
            rendered.append({"role": "user", "content": self.prompt})
        return rendered


# ============================================================
# Responses
# ============================================================

@dataclass
class TokenUsage:
    """Token usage for a completion."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        if self.total_tokens == 0:
            self.total_tokens = self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class CompletionResponse:
    """Uniform response returned by every provider adapter."""
    text: str
    provider: Provider
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    latency_ms: int = 0
    finish_reason: str = "stop"
    structured: Optional[Any] = None
    id: str = field(default_factory=lambda: f"cmpl-{uuid.uuid4().hex[:24]}")
    created: int = field(default_factory=lambda: int(time.time()))

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "created": self.created,
            "model": self.model,
            "text": self.text,
            "finish_reason": self.finish_reason,
            "usage": self.usage.to_dict(),
            "latency_ms": self.latency_ms,
        }
        if self.structured is not None:
            result["structured"] = self.structured
        return result


# ============================================================
# Routing trace
# ============================================================

@dataclass
class AttemptRecord:
    """One provider attempt within a routed request."""
    provider: Provider
    outcome: AttemptOutcome
    key_role: Optional[KeySlotRole] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    detail: Optional[str] = None
    latency_ms: int = 0
    usage: Optional[TokenUsage] = None
    hedged: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS

    @property
    def reason(self) -> str:
        """Short failure reason, e.g. ``quota@groq`` or ``transient-timeout@gemini``."""
        if self.succeeded:
            return f"success@{self.provider.value}"
        kind = self.error_kind.value if self.error_kind else "unknown"
        if self.detail:
            kind = f"{kind}-{self.detail}"
        return f"{kind}@{self.provider.value}"

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "provider": self.provider.value,
            "outcome": self.outcome.value,
            "latency_ms": self.latency_ms,
        }
        if self.key_role:
            result["key_slot"] = self.key_role.value
        if self.error_kind:
            result["error_kind"] = self.error_kind.value
        if self.error:
            result["error"] = self.error
        if self.detail:
            result["detail"] = self.detail
        if self.usage:
            result["usage"] = self.usage.to_dict()
        if self.hedged:
            result["hedged"] = True
        return result


@dataclass
class RoutingDecision:
    """
    Request-scoped record of a routing decision.

    Created by the routing engine, completed by the fallback executor
    and handed to the observability recorder. Never persisted.
    """
    request_id: str
    tier: ComplexityTier
    candidates: List[Provider] = field(default_factory=list)
    state: RoutingState = RoutingState.CLASSIFIED
    provider_used: Optional[Provider] = None
    attempts: List[AttemptRecord] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    estimated_tokens: int = 0
    cost_usd: float = 0.0
    started_at: float = field(default_factory=time.monotonic)
    total_latency_ms: int = 0

    @property
    def fallback_chain(self) -> List[Provider]:
        """Providers actually attempted, in attempt order."""
        return [attempt.provider for attempt in self.attempts]

    @property
    def failure_reasons(self) -> List[str]:
        return [a.reason for a in self.attempts if not a.succeeded]

    @property
    def outcomes(self) -> List[Dict[str, Any]]:
        """Per-attempt entries, or a single terminal entry when nothing was attempted."""
        if self.attempts:
            return [a.to_dict() for a in self.attempts]
        return [{"state": self.state.value}]

    def add_attempt(self, attempt: AttemptRecord):
        self.attempts.append(attempt)
        if attempt.usage:
            self.usage = self.usage + attempt.usage

    def finish(self, state: RoutingState, provider_used: Optional[Provider] = None):
        """Move the decision into a terminal state."""
        self.state = state
        self.provider_used = provider_used
        self.total_latency_ms = int((time.monotonic() - self.started_at) * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "tier": self.tier.value,
            "state": self.state.value,
            "candidates": [p.value for p in self.candidates],
            "provider_used": self.provider_used.value if self.provider_used else None,
            "fallback_chain": [p.value for p in self.fallback_chain],
            "attempts": [a.to_dict() for a in self.attempts],
            "outcomes": self.outcomes,
            "total_latency_ms": self.total_latency_ms,
            "usage": self.usage.to_dict(),
            "estimated_tokens": self.estimated_tokens,
            "cost_usd": round(self.cost_usd, 8),
        }


@dataclass
class RoutedCompletion:
    """A completion together with the routing trace that produced it."""
    response: CompletionResponse
    decision: RoutingDecision

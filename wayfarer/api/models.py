"""
Wayfarer - API Request/Response Models

Pydantic models for the HTTP surface. The routing core never sees
these; they are converted to CompletionRequest at the edge.
"""

import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.models import CompletionRequest, ResponseFormat, RoutedCompletion

MAX_QUERY_CHARS = 50_000


# ============================================================
# Request Models
# ============================================================

class RouteOptions(BaseModel):
    """Optional knobs for one routed request."""
    max_tokens: int = Field(default=2000, ge=1, le=4000)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    response_format: ResponseFormat = ResponseFormat.TEXT
    system_prompt: Optional[str] = Field(default=None, max_length=10_000)
    multi_step: bool = False
    include_web_search: bool = False
    similarity_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    stream: bool = Field(
        default=False,
        description="Accepted for compatibility; responses are always returned whole"
    )


class RouteRequest(BaseModel):
    """Body of ``POST /api/llm/route``."""
    query: str = Field(..., min_length=1, max_length=MAX_QUERY_CHARS)
    options: RouteOptions = Field(default_factory=RouteOptions)
    request_id: Optional[str] = Field(default=None, max_length=128)

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query must not be blank")
        return v

    def to_completion_request(self, fallback_request_id: Optional[str] = None) -> CompletionRequest:
        request = CompletionRequest(
            prompt=self.query,
            system_prompt=self.options.system_prompt,
            max_tokens=self.options.max_tokens,
            temperature=self.options.temperature,
            response_format=self.options.response_format,
            multi_step=self.options.multi_step,
            stream=self.options.stream,
            include_web_search=self.options.include_web_search,
            similarity_threshold=self.options.similarity_threshold,
        )
        request_id = self.request_id or fallback_request_id
        if request_id:
            request.request_id = request_id
        return request


# ============================================================
# Response Models
# ============================================================

class UsageInfo(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class RouteMetadata(BaseModel):
    """Routing summary returned with a successful response."""
    provider: str
    model: str
    tier: str
    fallbacks_used: int = 0
    usage: UsageInfo
    cost_usd: float = 0.0


class RouteResponse(BaseModel):
    """Envelope for a routed completion."""
    success: bool = True
    request_id: str
    response: str
    structured: Optional[Any] = None
    metadata: RouteMetadata
    processing_time_ms: int
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))

    @classmethod
    def from_routed(cls, routed: RoutedCompletion, processing_time_ms: int) -> "RouteResponse":
        response, decision = routed.response, routed.decision
        return cls(
            request_id=decision.request_id,
            response=response.text,
            structured=response.structured,
            metadata=RouteMetadata(
                provider=response.provider.value,
                model=response.model,
                tier=decision.tier.value,
                fallbacks_used=max(0, len(decision.attempts) - 1),
                usage=UsageInfo(**decision.usage.to_dict()),
                cost_usd=round(decision.cost_usd, 8),
            ),
            processing_time_ms=processing_time_ms,
        )


class ProviderHealthInfo(BaseModel):
    """Public view of one provider's health. No key material."""
    is_available: bool
    is_enabled: bool
    is_healthy: bool
    circuit_state: str
    has_active_key: bool
    capacity_reset_in_seconds: Optional[float] = None
    success_rate: float = 1.0
    p95_latency_ms: int = 0

    @classmethod
    def from_status(cls, status: Dict[str, Any]) -> "ProviderHealthInfo":
        return cls(
            is_available=status["is_available"],
            is_enabled=status["is_enabled"],
            is_healthy=status["is_healthy"],
            circuit_state=status["circuit"]["state"],
            has_active_key=status["active_key_slot"] is not None,
            capacity_reset_in_seconds=status["capacity_reset_in_seconds"],
            success_rate=status["success_rate"],
            p95_latency_ms=status["latency_ms"]["p95"],
        )


class RoutingSummary(BaseModel):
    """Totals over every routed request since startup."""
    total_requests: int = 0
    successful_requests: int = 0
    success_rate: float = 0.0
    avg_response_time_ms: float = 0.0
    fallback_rate: float = 0.0


class HealthResponse(BaseModel):
    """
    Body of ``GET /api/llm/health``.

    ``details`` carries the full per-provider registry view and is only
    set with ``?detailed=true``.
    """
    success: bool = True
    status: str
    available_providers: List[str]
    providers: Dict[str, ProviderHealthInfo]
    routing: RoutingSummary = Field(default_factory=RoutingSummary)
    details: Optional[Dict[str, Dict[str, Any]]] = None
    processing_time_ms: int
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))

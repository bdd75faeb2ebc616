"""
Wayfarer - Provider Adapter Base

Abstract base class for upstream LLM provider adapters.
Each provider (Cerebras, Gemini, Groq) implements this interface.
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..core.errors import ClassifiedProviderError, MalformedResponseError, classify_http_error
from ..core.models import CompletionRequest, CompletionResponse, Provider


@dataclass
class AdapterConfig:
    """Configuration for a provider adapter. Keys are passed per call."""
    model: str = ""
    base_url: Optional[str] = None
    timeout: float = 30.0
    max_concurrent: int = 10
    enabled: bool = True


class BaseAdapter(ABC):
    """
    Abstract base class for provider adapters.

    Each provider adapter must implement:
    - _send: Make the upstream call and return the decoded body
    - _parse: Convert the body into a CompletionResponse
    - probe: Lightweight capability check used by health checks

    The base class is responsible for:
    1. Tracking in-flight calls against ``max_concurrent``
    2. Mapping every failure to a classified provider error
    3. Validating structured output as JSON
    """

    provider: Provider
    DEFAULT_BASE_URL: str = ""
    DEFAULT_MODEL: str = ""

    def __init__(self, config: AdapterConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.model = config.model or self.DEFAULT_MODEL
        self.base_url = config.base_url or self.DEFAULT_BASE_URL
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=config.timeout
        )
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def is_available(self) -> bool:
        """Whether this adapter is configured and switched on."""
        return self.config.enabled

    def has_capacity(self) -> bool:
        """Whether another concurrent call may be started."""
        return self._in_flight < self.config.max_concurrent

    async def generate(self, request: CompletionRequest, api_key: str) -> CompletionResponse:
        """
        Generate a completion.

        Args:
            request: Uniform completion request
            api_key: Key material of the slot chosen by the registry

        Returns:
            Uniform completion response

        Raises:
            ClassifiedProviderError: TransientError, QuotaError, AuthError
                or MalformedResponseError
        """
        self._in_flight += 1
        start = time.monotonic()
        try:
            data = await self._send(request, api_key)
            response = self._parse(data, request)
        except ClassifiedProviderError:
            raise
        except Exception as e:
            raise classify_http_error(self.provider.value, e, request.request_id) from e
        finally:
            self._in_flight -= 1

        response.latency_ms = int((time.monotonic() - start) * 1000)
        if request.response_format.is_structured:
            response.structured = self._validate_structured(response.text, request)
        return response

    @abstractmethod
    async def _send(self, request: CompletionRequest, api_key: str) -> Dict[str, Any]:
        """POST the request upstream and return the decoded JSON body."""
        pass

    @abstractmethod
    def _parse(self, data: Dict[str, Any], request: CompletionRequest) -> CompletionResponse:
        """Convert a provider response body to a CompletionResponse."""
        pass

    @abstractmethod
    async def probe(self, api_key: str) -> bool:
        """
        Lightweight capability probe (no completion tokens spent).

        Returns True when the provider answers; raises a classified
        provider error otherwise.
        """
        pass

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    # ============================================================
    # Helper methods for subclasses
    # ============================================================

    def _validate_structured(self, text: str, request: CompletionRequest) -> Any:
        """Parse structured output; anything that is not JSON is malformed."""
        try:
            return parse_json_payload(text)
        except ValueError:
            raise MalformedResponseError(
                self.provider.value,
                f"{self.provider.value} returned invalid JSON for a structured request",
                code="invalid_json",
                request_id=request.request_id
            ) from None

    async def _get_json(self, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self.client.get(url, **kwargs)
            response.raise_for_status()
            return response.json()
        except ClassifiedProviderError:
            raise
        except Exception as e:
            raise classify_http_error(self.provider.value, e) from e

    async def _post_json(self, url: str, payload: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        response = await self.client.post(url, json=payload, **kwargs)
        response.raise_for_status()
        return response.json()


def parse_json_payload(text: str) -> Any:
    """
    Decode a JSON payload, tolerating a surrounding markdown code fence.

    Raises ValueError when no JSON document can be decoded.
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    if not cleaned.strip():
        raise ValueError("empty JSON payload")
    return json.loads(cleaned)

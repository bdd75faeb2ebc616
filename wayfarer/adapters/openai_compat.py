"""
Wayfarer - OpenAI-Compatible Adapter

Shared adapter for providers exposing the OpenAI chat completions API
(Cerebras, Groq). Subclasses only set the provider and base URL.
"""

from typing import Any, Dict

from .base import BaseAdapter
from ..core.errors import MalformedResponseError
from ..core.models import CompletionRequest, CompletionResponse, TokenUsage


class OpenAICompatibleAdapter(BaseAdapter):
    """
    Adapter for ``POST /chat/completions`` style APIs.

    Supports:
    - Chat completions with system prompt and message history
    - JSON mode for structured requests (``response_format``)
    """

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, request: CompletionRequest) -> Dict[str, Any]:
        """Build the chat completions payload."""
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": request.to_messages(),
        }

        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.response_format.is_structured:
            payload["response_format"] = {"type": "json_object"}

        return payload

    async def _send(self, request: CompletionRequest, api_key: str) -> Dict[str, Any]:
        return await self._post_json(
            "/chat/completions",
            self._build_payload(request),
            headers=self._headers(api_key)
        )

    def _parse(self, data: Dict[str, Any], request: CompletionRequest) -> CompletionResponse:
        choices = data["choices"]
        if not choices:
            raise MalformedResponseError(
                self.provider.value,
                f"{self.provider.value} returned no choices",
                request_id=request.request_id
            )

        choice = choices[0]
        text = choice["message"].get("content") or ""
        usage_data = data.get("usage") or {}

        return CompletionResponse(
            text=text,
            provider=self.provider,
            model=data.get("model", self.model),
            usage=TokenUsage(
                prompt_tokens=usage_data.get("prompt_tokens", 0),
                completion_tokens=usage_data.get("completion_tokens", 0),
                total_tokens=usage_data.get("total_tokens", 0),
            ),
            finish_reason=choice.get("finish_reason") or "stop",
        )

    async def probe(self, api_key: str) -> bool:
        """List models; costs no completion tokens."""
        await self._get_json("/models", headers=self._headers(api_key))
        return True

"""
Wayfarer - Google Gemini Provider Adapter

Adapter for Google's Gemini ``generateContent`` API (Gemini 1.5 Flash).
"""

from typing import Any, Dict, List

from .base import BaseAdapter
from ..core.errors import MalformedResponseError
from ..core.models import CompletionRequest, CompletionResponse, Provider, TokenUsage


class GeminiAdapter(BaseAdapter):
    """
    Adapter for the Gemini API.

    The key travels as a query parameter, the system prompt as
    ``systemInstruction`` and structured requests ask for
    ``application/json`` output.
    """

    provider = Provider.GEMINI
    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    DEFAULT_MODEL = "gemini-1.5-flash"

    # Gemini finish reasons -> unified values
    FINISH_REASONS = {
        "STOP": "stop",
        "MAX_TOKENS": "length",
        "SAFETY": "content_filter",
        "RECITATION": "content_filter",
    }

    def _build_payload(self, request: CompletionRequest) -> Dict[str, Any]:
        """Build Gemini-specific payload."""
        payload: Dict[str, Any] = {
            "contents": self._convert_messages(request),
        }

        generation_config: Dict[str, Any] = {}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        if request.max_tokens is not None:
            generation_config["maxOutputTokens"] = request.max_tokens
        if request.response_format.is_structured:
            generation_config["responseMimeType"] = "application/json"
        if generation_config:
            payload["generationConfig"] = generation_config

        if request.system_prompt:
            payload["systemInstruction"] = {
                "parts": [{"text": request.system_prompt}]
            }

        return payload

    def _convert_messages(self, request: CompletionRequest) -> List[Dict[str, Any]]:
        """Gemini only knows "user" and "model" roles."""
        contents = []
        for message in request.messages:
            if message.role == "system":
                continue
            role = "model" if message.role == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": message.content}]})
        if request.prompt:
            contents.append({"role": "user", "parts": [{"text": request.prompt}]})
        return contents

    async def _send(self, request: CompletionRequest, api_key: str) -> Dict[str, Any]:
        return await self._post_json(
            f"/models/{self.model}:generateContent",
            self._build_payload(request),
            params={"key": api_key}
        )

    def _parse(self, data: Dict[str, Any], request: CompletionRequest) -> CompletionResponse:
        candidates = data.get("candidates") or []
        if not candidates:
            # Prompt blocked or empty reply
            raise MalformedResponseError(
                self.provider.value,
                f"{self.provider.value} returned no candidates",
                request_id=request.request_id,
                details={"block_reason": data.get("promptFeedback", {}).get("blockReason")}
            )

        candidate = candidates[0]
        parts = candidate["content"]["parts"]
        text = "".join(part.get("text", "") for part in parts)

        usage_data = data.get("usageMetadata") or {}
        return CompletionResponse(
            text=text,
            provider=self.provider,
            model=self.model,
            usage=TokenUsage(
                prompt_tokens=usage_data.get("promptTokenCount", 0),
                completion_tokens=usage_data.get("candidatesTokenCount", 0),
                total_tokens=usage_data.get("totalTokenCount", 0),
            ),
            finish_reason=self.FINISH_REASONS.get(candidate.get("finishReason", "STOP"), "stop"),
        )

    async def probe(self, api_key: str) -> bool:
        """List models; costs no completion tokens."""
        await self._get_json("/models", params={"key": api_key})
        return True

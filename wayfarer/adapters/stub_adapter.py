"""
Wayfarer - Stub Provider Adapter

Deterministic in-process adapter used for tests and local smoke runs.
No network calls, no provider keys required.

Behaviour is scripted per call:

    adapter = StubAdapter(Provider.GROQ)
    adapter.script(
        StubStep.fail(QuotaError("groq", "quota")),
        StubStep.ok("Day 1: Alfama"),
    )
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .base import AdapterConfig, BaseAdapter
from ..core.models import CompletionRequest, CompletionResponse, Provider, TokenUsage


STUB_TEXT = "stub: deterministic response"


@dataclass
class StubStep:
    """One scripted call outcome."""
    text: Optional[str] = None
    error: Optional[Exception] = None
    delay: float = 0.0
    usage: TokenUsage = field(default_factory=lambda: TokenUsage(prompt_tokens=8, completion_tokens=6))

    @classmethod
    def ok(cls, text: str = STUB_TEXT, delay: float = 0.0) -> "StubStep":
        return cls(text=text, delay=delay)

    @classmethod
    def fail(cls, error: Exception, delay: float = 0.0) -> "StubStep":
        return cls(error=error, delay=delay)

    @classmethod
    def hang(cls, seconds: float) -> "StubStep":
        """Sleep, then succeed. Usually cut short by a timeout."""
        return cls(text="stub: late response", delay=seconds)


class StubAdapter(BaseAdapter):
    """Deterministic adapter for tests/smoke checks."""

    def __init__(
        self,
        provider: Provider,
        config: Optional[AdapterConfig] = None,
        default: Optional[StubStep] = None
    ):
        self.provider = provider
        self.config = config or AdapterConfig()
        self.model = self.config.model or f"{provider.value}-stub"
        self.base_url = ""
        self.client = None
        self._in_flight = 0
        self._script: List[StubStep] = []
        self.default = default or StubStep.ok()
        self.calls: List[Dict[str, Any]] = []
        self.probe_calls = 0
        self.probe_error: Optional[Exception] = None
        self.probe_delay = 0.0

    def script(self, *steps: StubStep):
        """Queue outcomes for the next calls; afterwards ``default`` applies."""
        self._script.extend(steps)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def _send(self, request: CompletionRequest, api_key: str) -> Dict[str, Any]:
        step = self._script.pop(0) if self._script else self.default
        self.calls.append({"request_id": request.request_id, "api_key": api_key})

        if step.delay:
            await asyncio.sleep(step.delay)
        if step.error is not None:
            raise step.error

        text = step.text
        if request.response_format.is_structured and text == STUB_TEXT:
            text = '{"stub": true}'

        return {"text": text, "usage": step.usage}

    def _parse(self, data: Dict[str, Any], request: CompletionRequest) -> CompletionResponse:
        return CompletionResponse(
            text=data["text"],
            provider=self.provider,
            model=self.model,
            usage=data["usage"],
        )

    async def probe(self, api_key: str) -> bool:
        self.probe_calls += 1
        if self.probe_delay:
            await asyncio.sleep(self.probe_delay)
        if self.probe_error is not None:
            raise self.probe_error
        return True

    async def close(self):
        return

"""
Wayfarer - Fallback Executor

Walks a decision's candidate list until one provider succeeds, the list
is exhausted or the overall deadline passes.

Per attempt:
- lease the provider's active key slot (no slot -> quota failure, no call)
- call the adapter under a per-attempt timeout of
  ``min(remaining, max(min_attempt_timeout, remaining / remaining_candidates))``
- record the outcome with the registry, exactly once

Failure handling never retries the same provider: transient, quota, auth
and malformed outcomes all advance to the next candidate.

Optional hedging: when ``hedge_delay_seconds`` is set and the primary has
not finished after that delay, the second candidate starts in parallel.
The first success wins. The loser keeps running; its outcome is recorded
with the registry when it finishes and its result is discarded.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional, Set, Tuple

from ..core.errors import (
    AllProvidersExhaustedError,
    DeadlineExceededError,
    TransientError,
    classify_http_error,
)
from ..core.models import (
    AttemptOutcome,
    AttemptRecord,
    CompletionRequest,
    CompletionResponse,
    ErrorKind,
    Provider,
    RoutingDecision,
    RoutingState,
)
from ..observability.logging import get_logger
from ..observability.tracing import trace_provider_call
from .registry import ProviderRegistry

logger = get_logger(__name__)

# Below this much remaining budget no attempt is started
MIN_USEFUL_ATTEMPT_SECONDS = 0.01

AttemptResult = Tuple[Optional[CompletionResponse], AttemptRecord]


@dataclass
class ExecutorConfig:
    """Configuration for fallback execution."""
    # Overall time budget per request
    deadline_seconds: float = 30.0

    # Floor for a single attempt's timeout
    min_attempt_timeout_seconds: float = 2.0

    # Start the second candidate when the primary is this slow (None = off)
    hedge_delay_seconds: Optional[float] = None


class FallbackExecutor:
    """Deadline-bound execution of a routing decision."""

    def __init__(
        self,
        registry: ProviderRegistry,
        config: Optional[ExecutorConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.config = config or ExecutorConfig()
        self._clock = clock
        self._detached: Set[asyncio.Task] = set()

    def attempt_timeout(self, remaining: float, remaining_candidates: int) -> float:
        share = remaining / max(1, remaining_candidates)
        return min(remaining, max(self.config.min_attempt_timeout_seconds, share))

    async def execute(
        self,
        decision: RoutingDecision,
        request: CompletionRequest,
        deadline_seconds: Optional[float] = None,
    ) -> CompletionResponse:
        """
        Execute a decision built by the routing engine.

        Returns:
            The first successful response

        Raises:
            AllProvidersExhaustedError: every candidate failed
            DeadlineExceededError: the time budget ran out mid-chain
        """
        budget = deadline_seconds if deadline_seconds is not None else self.config.deadline_seconds
        deadline_at = self._clock() + budget
        decision.state = RoutingState.ATTEMPTING
        candidates = list(decision.candidates)

        index = 0
        while index < len(candidates):
            remaining = deadline_at - self._clock()
            if remaining <= MIN_USEFUL_ATTEMPT_SECONDS:
                raise self._deadline_exceeded(decision, budget)

            if index == 0 and self._hedging_enabled(len(candidates)):
                response, consumed = await self._execute_hedged(
                    decision, request, candidates[0], candidates[1], deadline_at, len(candidates)
                )
                if response is not None:
                    return response
                index += consumed
                continue

            timeout = self.attempt_timeout(remaining, len(candidates) - index)
            response, record = await self._attempt(request, candidates[index], timeout)
            decision.add_attempt(record)
            if response is not None:
                return self._succeed(decision, response)
            index += 1

        if deadline_at - self._clock() <= MIN_USEFUL_ATTEMPT_SECONDS:
            raise self._deadline_exceeded(decision, budget)

        decision.finish(RoutingState.EXHAUSTED)
        logger.warning(
            "All providers exhausted",
            request_id=decision.request_id,
            tier=decision.tier.value,
            failure_reasons=decision.failure_reasons,
        )
        raise AllProvidersExhaustedError(
            failures=decision.attempts,
            request_id=decision.request_id,
            decision=decision,
        )

    # ============================================================
    # Attempts
    # ============================================================

    async def _attempt(
        self,
        request: CompletionRequest,
        provider: Provider,
        timeout: float,
        hedged: bool = False,
    ) -> AttemptResult:
        """One provider call. Records the outcome; never raises except on cancellation."""
        lease = self.registry.acquire_slot(provider)
        if lease is None:
            record = AttemptRecord(
                provider=provider,
                outcome=AttemptOutcome.FAILURE,
                error_kind=ErrorKind.QUOTA,
                error="no usable key slot",
                hedged=hedged,
            )
            self.registry.record_outcome(provider, None, record)
            return None, record

        adapter = self.registry.get_adapter(provider)
        start = time.monotonic()
        retry_after = None

        try:
            with trace_provider_call(provider.value, adapter.model, key_slot=lease.role.value) as span:
                response = await asyncio.wait_for(
                    adapter.generate(request, lease.api_key),
                    timeout=timeout,
                )
                span.set_attribute("llm.tokens.total", response.usage.total_tokens)
            record = AttemptRecord(
                provider=provider,
                outcome=AttemptOutcome.SUCCESS,
                key_role=lease.role,
                latency_ms=int((time.monotonic() - start) * 1000),
                usage=response.usage,
                hedged=hedged,
            )
        except asyncio.CancelledError:
            record = AttemptRecord(
                provider=provider,
                outcome=AttemptOutcome.FAILURE,
                key_role=lease.role,
                error_kind=ErrorKind.TRANSIENT,
                error="attempt cancelled",
                detail="cancelled",
                latency_ms=int((time.monotonic() - start) * 1000),
                hedged=hedged,
            )
            self.registry.record_outcome(provider, lease.role, record)
            raise
        except Exception as e:
            error = classify_http_error(provider.value, e, request.request_id)
            retry_after = error.error.retry_after
            response = None
            record = AttemptRecord(
                provider=provider,
                outcome=AttemptOutcome.FAILURE,
                key_role=lease.role,
                error_kind=error.kind,
                error=error.error.message,
                detail=_transient_detail(error),
                latency_ms=int((time.monotonic() - start) * 1000),
                hedged=hedged,
            )
            logger.warning(
                "Provider attempt failed",
                request_id=request.request_id,
                provider=provider.value,
                key_slot=lease.role.value,
                error_kind=error.kind.value,
                error_code=error.error.code,
                latency_ms=record.latency_ms,
            )

        self.registry.record_outcome(provider, lease.role, record, retry_after=retry_after)
        return response, record

    # ============================================================
    # Hedging
    # ============================================================

    def _hedging_enabled(self, candidate_count: int) -> bool:
        return self.config.hedge_delay_seconds is not None and candidate_count > 1

    async def _execute_hedged(
        self,
        decision: RoutingDecision,
        request: CompletionRequest,
        primary: Provider,
        secondary: Provider,
        deadline_at: float,
        candidate_count: int,
    ) -> Tuple[Optional[CompletionResponse], int]:
        """
        Race the primary against a delayed secondary.

        Returns the winning response (or None) and how many candidates
        were consumed from the front of the list. Attempts still running
        on the way out (the loser, or both when ``execute`` is cancelled)
        are detached, never dropped.
        """
        remaining = deadline_at - self._clock()
        tasks = [asyncio.ensure_future(
            self._attempt(request, primary, self.attempt_timeout(remaining, candidate_count))
        )]
        try:
            done, _ = await asyncio.wait(set(tasks), timeout=min(self.config.hedge_delay_seconds, remaining))
            remaining = deadline_at - self._clock()
            if tasks[0] in done or remaining <= MIN_USEFUL_ATTEMPT_SECONDS:
                response, record = await tasks[0]
                decision.add_attempt(record)
                if response is not None:
                    return self._succeed(decision, response), 1
                return None, 1

            logger.info(
                "Hedging slow primary",
                request_id=decision.request_id,
                primary=primary.value,
                secondary=secondary.value,
            )
            tasks.append(asyncio.ensure_future(
                self._attempt(
                    request,
                    secondary,
                    self.attempt_timeout(remaining, candidate_count - 1),
                    hedged=True,
                )
            ))

            pending = set(tasks)
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in tasks:
                    if task not in done:
                        continue
                    response, record = task.result()
                    decision.add_attempt(record)
                    if response is not None:
                        return self._succeed(decision, response), 2
            return None, 2
        finally:
            for task in tasks:
                if not task.done():
                    self._detach(task)

    def _detach(self, task: asyncio.Task):
        """Let a losing attempt finish on its own; it records its own outcome."""
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)

    # ============================================================
    # Terminal states
    # ============================================================

    def _succeed(self, decision: RoutingDecision, response: CompletionResponse) -> CompletionResponse:
        decision.finish(RoutingState.SUCCEEDED, provider_used=response.provider)
        return response

    def _deadline_exceeded(self, decision: RoutingDecision, budget: float) -> DeadlineExceededError:
        decision.finish(RoutingState.DEADLINE_EXCEEDED)
        logger.warning(
            "Routing deadline exceeded",
            request_id=decision.request_id,
            deadline_seconds=budget,
            attempts=len(decision.attempts),
        )
        return DeadlineExceededError(
            deadline_seconds=budget,
            failures=decision.attempts,
            request_id=decision.request_id,
            decision=decision,
        )


def _transient_detail(error) -> Optional[str]:
    """Sub-kind shown in failure reasons, e.g. ``timeout`` in ``transient-timeout@gemini``."""
    if not isinstance(error, TransientError):
        return None
    code = error.error.code
    return code if code and code != error.kind.value else None

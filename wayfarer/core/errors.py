"""
Wayfarer - Error Definitions

Two error families:
- Per-attempt classified provider errors (transient, quota, auth,
  malformed response). These are recovered by the fallback executor
  and never reach the caller directly.
- Terminal routing errors (no provider available, all providers
  exhausted, deadline exceeded). These are the only errors the
  routing core surfaces to its caller.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import httpx

from .models import ErrorKind

if TYPE_CHECKING:
    from .models import AttemptRecord, RoutingDecision


class ErrorType(str, Enum):
    """Error classification."""
    PROVIDER = "provider_error"
    ROUTING = "routing_error"
    CONFIGURATION = "configuration_error"
    INFRA = "infra_error"
    INVALID_REQUEST = "invalid_request_error"


@dataclass
class ErrorDetails:
    """Full error information."""
    # Core fields (always present)
    code: str
    message: str
    type: ErrorType

    # Context fields
    provider: Optional[str] = None
    request_id: str = ""

    # Recovery fields
    retryable: bool = False
    retry_after: Optional[int] = None

    # Debug fields
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self, public: bool = False) -> Dict[str, Any]:
        """
        Render the error envelope.

        With ``public=True`` provider names and debug details are left
        out so nothing upstream-specific leaks to end users.
        """
        result: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
            "request_id": self.request_id,
            "retryable": self.retryable,
        }

        if self.retry_after is not None:
            result["retry_after"] = self.retry_after

        if not public:
            if self.provider:
                result["provider"] = self.provider
            if self.details:
                result["details"] = self.details

        return {"error": result}


class WayfarerException(Exception):
    """Base exception for all Wayfarer errors."""

    def __init__(self, error: ErrorDetails, status_code: int = 500):
        self.error = error
        self.status_code = status_code
        super().__init__(error.message)


class ConfigurationError(WayfarerException):
    """Invalid configuration value."""

    def __init__(self, setting: str, reason: str):
        super().__init__(
            ErrorDetails(
                code="invalid_configuration",
                message=f"Invalid setting {setting}: {reason}",
                type=ErrorType.CONFIGURATION,
                details={"setting": setting},
            ),
            status_code=500
        )


class UnknownProviderError(WayfarerException):
    """A provider name outside the supported set."""

    def __init__(self, name: str):
        super().__init__(
            ErrorDetails(
                code="unknown_provider",
                message=f"Unknown provider: {name!r}",
                type=ErrorType.INVALID_REQUEST,
                details={"provider": name},
            ),
            status_code=400
        )


# ============================================================
# Per-attempt provider errors
# ============================================================

class ClassifiedProviderError(WayfarerException):
    """Base class for a provider failure mapped to an ErrorKind."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(
        self,
        provider: str,
        message: str,
        code: str = "",
        request_id: str = "",
        retry_after: Optional[int] = None,
        status_code: int = 502,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            ErrorDetails(
                code=code or self.kind.value,
                message=message,
                type=ErrorType.PROVIDER,
                provider=provider,
                request_id=request_id,
                retryable=True,
                retry_after=retry_after,
                details=details or {},
            ),
            status_code=status_code
        )
        self.provider = provider


class TransientError(ClassifiedProviderError):
    """Timeout, 5xx or network failure."""
    kind = ErrorKind.TRANSIENT


class QuotaError(ClassifiedProviderError):
    """Key quota or provider rate limit exhausted."""
    kind = ErrorKind.QUOTA


class AuthError(ClassifiedProviderError):
    """Provider rejected the API key."""
    kind = ErrorKind.AUTH


class MalformedResponseError(ClassifiedProviderError):
    """Provider replied but the content failed validation."""
    kind = ErrorKind.MALFORMED_RESPONSE


# ============================================================
# Terminal routing errors
# ============================================================

class RoutingError(WayfarerException):
    """Base class for errors surfaced to the caller of the routing core."""

    def __init__(
        self,
        error: ErrorDetails,
        status_code: int,
        decision: Optional["RoutingDecision"] = None
    ):
        super().__init__(error, status_code)
        self.decision = decision


class NoAvailableProviderError(RoutingError):
    """No provider passed the availability filter."""

    def __init__(
        self,
        tier: str,
        request_id: str = "",
        decision: Optional["RoutingDecision"] = None
    ):
        super().__init__(
            ErrorDetails(
                code="no_provider_available",
                message="The service is temporarily unavailable, please retry",
                type=ErrorType.ROUTING,
                request_id=request_id,
                retryable=True,
                retry_after=30,
                details={"tier": tier},
            ),
            status_code=503,
            decision=decision
        )


class AllProvidersExhaustedError(RoutingError):
    """Every candidate was attempted and failed."""

    def __init__(
        self,
        failures: List["AttemptRecord"],
        request_id: str = "",
        decision: Optional["RoutingDecision"] = None
    ):
        super().__init__(
            ErrorDetails(
                code="all_providers_exhausted",
                message="The service is temporarily unavailable, please retry",
                type=ErrorType.ROUTING,
                request_id=request_id,
                retryable=True,
                retry_after=10,
                details={"failures": [f.reason for f in failures]},
            ),
            status_code=503,
            decision=decision
        )
        self.failures = list(failures)

    @property
    def failure_reasons(self) -> List[str]:
        return [f.reason for f in self.failures]


class DeadlineExceededError(RoutingError):
    """The overall time budget ran out mid-chain."""

    def __init__(
        self,
        deadline_seconds: float,
        failures: Optional[List["AttemptRecord"]] = None,
        request_id: str = "",
        decision: Optional["RoutingDecision"] = None
    ):
        failures = list(failures or [])
        super().__init__(
            ErrorDetails(
                code="deadline_exceeded",
                message="The request timed out, please retry",
                type=ErrorType.ROUTING,
                request_id=request_id,
                retryable=True,
                details={
                    "deadline_seconds": deadline_seconds,
                    "failures": [f.reason for f in failures],
                },
            ),
            status_code=504,
            decision=decision
        )
        self.failures = failures


# ============================================================
# Error factory
# ============================================================

_QUOTA_MARKERS = ("quota", "resource_exhausted", "rate limit", "rate_limit")


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of the upstream error message."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("status") or error)
    if isinstance(error, str):
        return error
    return str(data)[:200]


def classify_http_error(
    provider: str,
    error: Exception,
    request_id: str = ""
) -> ClassifiedProviderError:
    """
    Map an httpx / decoding exception to a classified provider error.

    401, 403                -> AuthError
    429, quota markers      -> QuotaError
    408, 5xx, network       -> TransientError
    undecodable body        -> MalformedResponseError
    other 4xx               -> TransientError (next candidate may accept it)
    """
    if isinstance(error, ClassifiedProviderError):
        return error

    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return TransientError(
            provider,
            f"{provider} did not respond within timeout",
            code="timeout",
            request_id=request_id,
            status_code=504
        )

    if isinstance(error, httpx.TransportError):
        return TransientError(
            provider,
            f"Failed to reach {provider}: {error.__class__.__name__}",
            code="network_error",
            request_id=request_id
        )

    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        status = response.status_code
        message = _error_message(response)

        if status in (401, 403):
            return AuthError(
                provider,
                f"{provider} authentication failed",
                code="provider_auth_error",
                request_id=request_id,
                details={"status": status}
            )

        if status == 429 or any(m in message.lower() for m in _QUOTA_MARKERS):
            return QuotaError(
                provider,
                f"{provider} quota or rate limit exhausted",
                code="provider_quota_exhausted",
                request_id=request_id,
                retry_after=_retry_after(response),
                status_code=429,
                details={"status": status}
            )

        if status == 408 or status >= 500:
            return TransientError(
                provider,
                message or f"{provider} returned error {status}",
                code=f"upstream_{status}",
                request_id=request_id,
                details={"status": status}
            )

        return TransientError(
            provider,
            message or f"{provider} rejected the request with {status}",
            code="upstream_rejected",
            request_id=request_id,
            status_code=status,
            details={"status": status}
        )

    if isinstance(error, (json.JSONDecodeError, KeyError, IndexError, TypeError)):
        return MalformedResponseError(
            provider,
            f"{provider} returned an unreadable response",
            code="malformed_response",
            request_id=request_id
        )

    return TransientError(
        provider,
        str(error) or error.__class__.__name__,
        code="unknown_error",
        request_id=request_id
    )

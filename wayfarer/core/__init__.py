"""
Wayfarer Core Module

Contains the shared data models, error taxonomy and pricing catalog.
"""

from .models import (
    # Enums
    Provider,
    ComplexityTier,
    ResponseFormat,
    ErrorKind,
    KeySlotRole,
    AttemptOutcome,
    RoutingState,
    KEY_SLOT_ORDER,

    # Requests / responses
    ChatMessage,
    CompletionRequest,
    CompletionResponse,
    TokenUsage,

    # Routing trace
    AttemptRecord,
    RoutingDecision,
    RoutedCompletion,
)

from .errors import (
    ErrorType,
    ErrorDetails,
    WayfarerException,
    ConfigurationError,
    UnknownProviderError,

    # Per-attempt errors
    ClassifiedProviderError,
    TransientError,
    QuotaError,
    AuthError,
    MalformedResponseError,

    # Terminal errors
    RoutingError,
    NoAvailableProviderError,
    AllProvidersExhaustedError,
    DeadlineExceededError,

    # Factory
    classify_http_error,
)

from .pricing import PricingCatalog, ProviderPrice, DEFAULT_PRICES

__all__ = [
    # Enums
    "Provider",
    "ComplexityTier",
    "ResponseFormat",
    "ErrorKind",
    "KeySlotRole",
    "AttemptOutcome",
    "RoutingState",
    "KEY_SLOT_ORDER",

    # Requests / responses
    "ChatMessage",
    "CompletionRequest",
    "CompletionResponse",
    "TokenUsage",

    # Routing trace
    "AttemptRecord",
    "RoutingDecision",
    "RoutedCompletion",

    # Errors
    "ErrorType",
    "ErrorDetails",
    "WayfarerException",
    "ConfigurationError",
    "UnknownProviderError",
    "ClassifiedProviderError",
    "TransientError",
    "QuotaError",
    "AuthError",
    "MalformedResponseError",
    "RoutingError",
    "NoAvailableProviderError",
    "AllProvidersExhaustedError",
    "DeadlineExceededError",
    "classify_http_error",

    # Pricing
    "PricingCatalog",
    "ProviderPrice",
    "DEFAULT_PRICES",
]

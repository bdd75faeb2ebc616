"""
Wayfarer - Configuration

Environment-driven settings, loaded once at startup.

Per provider (``<P>`` is CEREBRAS, GEMINI or GROQ):
    <P>_ENABLED, <P>_API_KEY, <P>_API_KEY_2, <P>_API_KEY_3, <P>_MODEL,
    <P>_BASE_URL, <P>_TIMEOUT, <P>_QUOTA_LIMIT, <P>_RATE_LIMIT_RPM,
    <P>_MAX_CONCURRENT

Router-wide:
    MODE, USE_STUB_ADAPTERS, ROUTING_TIER_HIGH|MEDIUM|LOW,
    ROUTING_HIGH_THRESHOLD_CHARS, ROUTING_MEDIUM_THRESHOLD_CHARS,
    ROUTING_DEADLINE_SECONDS, ROUTING_MIN_ATTEMPT_TIMEOUT_SECONDS,
    ROUTING_HEDGE_DELAY_SECONDS, HEALTH_CHECK_INTERVAL_SECONDS,
    KEY_FAILURE_COOLDOWN_SECONDS, KEY_AUTH_COOLDOWN_SECONDS,
    KEY_QUOTA_WINDOW_SECONDS, CORS_ALLOW_ORIGINS

Invalid values raise ConfigurationError at load.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional

from .core.errors import ConfigurationError
from .core.models import ComplexityTier, Provider
from .routing.classifier import ClassifierConfig
from .routing.keys import KeyPolicy
from .routing.preferences import parse_preference

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


class RunMode(str, Enum):
    """Deployment mode."""

    LOCAL = "local"  # Development; stub adapters when no keys are set
    PROD = "prod"    # Real providers only
    TEST = "test"    # Deterministic test runs


@dataclass(frozen=True)
class ProviderDefaults:
    model: str
    timeout: float
    rate_limit_rpm: int


PROVIDER_DEFAULTS: Dict[Provider, ProviderDefaults] = {
    Provider.CEREBRAS: ProviderDefaults("llama3.1-70b", timeout=30.0, rate_limit_rpm=60),
    Provider.GEMINI: ProviderDefaults("gemini-1.5-flash", timeout=20.0, rate_limit_rpm=100),
    Provider.GROQ: ProviderDefaults("llama-3.1-70b-versatile", timeout=10.0, rate_limit_rpm=200),
}


@dataclass
class ProviderSettings:
    """Settings for one upstream provider."""
    provider: Provider
    enabled: bool
    api_keys: List[str] = field(default_factory=list, repr=False)
    model: str = ""
    base_url: Optional[str] = None
    timeout: float = 30.0
    quota_limit: Optional[int] = None
    rate_limit_rpm: Optional[int] = None
    max_concurrent: int = 10


@dataclass
class RoutingSettings:
    """Router-wide settings."""
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    key_policy: KeyPolicy = field(default_factory=KeyPolicy)
    preferences: Dict[ComplexityTier, List[Provider]] = field(default_factory=dict)
    deadline_seconds: float = 30.0
    min_attempt_timeout_seconds: float = 2.0
    hedge_delay_seconds: Optional[float] = None
    health_check_interval_seconds: float = 60.0


@dataclass
class Settings:
    """Top-level application settings."""
    mode: RunMode
    providers: Dict[Provider, ProviderSettings]
    routing: RoutingSettings
    use_stub_adapters: bool = False
    cors_allow_origins: List[str] = field(default_factory=list)


# ============================================================
# Parsing helpers
# ============================================================

def _raw(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = _raw(env, name)
    if value is None:
        return default
    if value.lower() in _TRUE:
        return True
    if value.lower() in _FALSE:
        return False
    raise ConfigurationError(name, f"expected a boolean, got {value!r}")


def _float(env: Mapping[str, str], name: str, default: Optional[float], minimum: float = 0.0) -> Optional[float]:
    value = _raw(env, name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        raise ConfigurationError(name, f"expected a number, got {value!r}") from None
    if parsed < minimum:
        raise ConfigurationError(name, f"must be >= {minimum}")
    return parsed


def _int(env: Mapping[str, str], name: str, default: Optional[int], minimum: int = 0) -> Optional[int]:
    value = _raw(env, name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ConfigurationError(name, f"expected an integer, got {value!r}") from None
    if parsed < minimum:
        raise ConfigurationError(name, f"must be >= {minimum}")
    return parsed


def get_run_mode(env: Mapping[str, str] = os.environ) -> RunMode:
    """
    Get the current run mode.

    MODE must be one of: local, prod/production, test.

    Default: prod (fail-closed default for safer deployments).
    """
    mode = (env.get("MODE") or "prod").lower().strip()
    if mode in {"prod", "production"}:
        return RunMode.PROD
    if mode == "local":
        return RunMode.LOCAL
    if mode == "test":
        return RunMode.TEST
    raise ConfigurationError("MODE", "use one of: local, prod, production, test")


# ============================================================
# Loaders
# ============================================================

def load_provider_settings(provider: Provider, env: Mapping[str, str] = os.environ) -> ProviderSettings:
    """Read the settings of one provider from ``<P>_*`` variables."""
    prefix = provider.value.upper()
    defaults = PROVIDER_DEFAULTS[provider]

    api_keys = [
        key for key in (
            _raw(env, f"{prefix}_API_KEY"),
            _raw(env, f"{prefix}_API_KEY_2"),
            _raw(env, f"{prefix}_API_KEY_3"),
        )
        if key
    ]

    return ProviderSettings(
        provider=provider,
        enabled=_bool(env, f"{prefix}_ENABLED", default=bool(api_keys)),
        api_keys=api_keys,
        model=_raw(env, f"{prefix}_MODEL") or defaults.model,
        base_url=_raw(env, f"{prefix}_BASE_URL"),
        timeout=_float(env, f"{prefix}_TIMEOUT", defaults.timeout, minimum=0.1),
        quota_limit=_int(env, f"{prefix}_QUOTA_LIMIT", None, minimum=1),
        rate_limit_rpm=_int(env, f"{prefix}_RATE_LIMIT_RPM", defaults.rate_limit_rpm, minimum=1),
        max_concurrent=_int(env, f"{prefix}_MAX_CONCURRENT", 10, minimum=1),
    )


def load_routing_settings(env: Mapping[str, str] = os.environ) -> RoutingSettings:
    """Read router-wide settings."""
    classifier_defaults = ClassifierConfig()
    try:
        classifier = ClassifierConfig(
            high_threshold_chars=_int(
                env, "ROUTING_HIGH_THRESHOLD_CHARS", classifier_defaults.high_threshold_chars
            ),
            medium_threshold_chars=_int(
                env, "ROUTING_MEDIUM_THRESHOLD_CHARS", classifier_defaults.medium_threshold_chars
            ),
        )
    except ValueError as e:
        raise ConfigurationError("ROUTING_HIGH_THRESHOLD_CHARS", str(e)) from None

    policy_defaults = KeyPolicy()
    key_policy = KeyPolicy(
        failure_cooldown_seconds=_float(
            env, "KEY_FAILURE_COOLDOWN_SECONDS", policy_defaults.failure_cooldown_seconds
        ),
        auth_cooldown_seconds=_float(
            env, "KEY_AUTH_COOLDOWN_SECONDS", policy_defaults.auth_cooldown_seconds
        ),
        quota_window_seconds=_float(
            env, "KEY_QUOTA_WINDOW_SECONDS", policy_defaults.quota_window_seconds, minimum=1.0
        ),
    )

    preferences: Dict[ComplexityTier, List[Provider]] = {}
    for tier in ComplexityTier:
        name = f"ROUTING_TIER_{tier.value.upper()}"
        value = _raw(env, name)
        if value is None:
            continue
        try:
            preferences[tier] = parse_preference(value)
        except ValueError as e:
            raise ConfigurationError(name, str(e)) from None

    return RoutingSettings(
        classifier=classifier,
        key_policy=key_policy,
        preferences=preferences,
        deadline_seconds=_float(env, "ROUTING_DEADLINE_SECONDS", 30.0, minimum=0.1),
        min_attempt_timeout_seconds=_float(env, "ROUTING_MIN_ATTEMPT_TIMEOUT_SECONDS", 2.0, minimum=0.01),
        hedge_delay_seconds=_float(env, "ROUTING_HEDGE_DELAY_SECONDS", None),
        health_check_interval_seconds=_float(env, "HEALTH_CHECK_INTERVAL_SECONDS", 60.0),
    )


def load_settings(env: Mapping[str, str] = os.environ) -> Settings:
    """
    Load and validate all settings.

    In local and test mode, providers without keys fall back to stub
    adapters so the service can run without credentials. Production
    refuses stub adapters.
    """
    mode = get_run_mode(env)
    providers = {provider: load_provider_settings(provider, env) for provider in Provider}

    has_keys = any(p.api_keys for p in providers.values())
    use_stubs = _bool(env, "USE_STUB_ADAPTERS", default=mode != RunMode.PROD and not has_keys)

    if use_stubs and mode == RunMode.PROD:
        raise ConfigurationError("USE_STUB_ADAPTERS", "not allowed in production mode")

    if use_stubs:
        for settings in providers.values():
            if not settings.api_keys:
                settings.api_keys = [f"stub-{settings.provider.value}"]
            if _raw(env, f"{settings.provider.value.upper()}_ENABLED") is None:
                settings.enabled = True

    origins = _raw(env, "CORS_ALLOW_ORIGINS") or ""
    return Settings(
        mode=mode,
        providers=providers,
        routing=load_routing_settings(env),
        use_stub_adapters=use_stubs,
        cors_allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )

"""
Wayfarer - Configuration Tests

Tests for environment loading, validation and router wiring.
"""

import pytest

from wayfarer.adapters import CerebrasAdapter, GeminiAdapter, GroqAdapter, StubAdapter
from wayfarer.bootstrap import build_adapters, build_router
from wayfarer.config import (
    RunMode,
    get_run_mode,
    load_provider_settings,
    load_settings,
)
from wayfarer.core.errors import ConfigurationError
from wayfarer.core.models import CompletionRequest, ComplexityTier, KeySlotRole, Provider


class TestRunMode:
    """Tests for MODE parsing."""

    def test_defaults_to_prod(self):
        assert get_run_mode({}) == RunMode.PROD

    @pytest.mark.parametrize("value, mode", [
        ("production", RunMode.PROD),
        ("LOCAL", RunMode.LOCAL),
        (" test ", RunMode.TEST),
    ])
    def test_known_modes(self, value, mode):
        assert get_run_mode({"MODE": value}) == mode

    def test_unknown_mode_rejected(self):
        with pytest.raises(ConfigurationError):
            get_run_mode({"MODE": "staging"})


class TestProviderSettings:
    """Tests for per-provider variables."""

    def test_keys_in_slot_order(self):
        env = {"GROQ_API_KEY": "gsk-1", "GROQ_API_KEY_2": "gsk-2", "GROQ_API_KEY_3": " "}
        settings = load_provider_settings(Provider.GROQ, env)

        assert settings.api_keys == ["gsk-1", "gsk-2"]
        assert settings.enabled is True
        assert settings.model == "llama-3.1-70b-versatile"

    def test_disabled_without_keys(self):
        assert load_provider_settings(Provider.GEMINI, {}).enabled is False

    def test_explicit_disable_wins(self):
        env = {"CEREBRAS_API_KEY": "csk-1", "CEREBRAS_ENABLED": "false"}
        assert load_provider_settings(Provider.CEREBRAS, env).enabled is False

    def test_overrides(self):
        env = {
            "GEMINI_API_KEY": "g-1",
            "GEMINI_MODEL": "gemini-1.5-pro",
            "GEMINI_TIMEOUT": "12.5",
            "GEMINI_QUOTA_LIMIT": "1000",
        }
        settings = load_provider_settings(Provider.GEMINI, env)

        assert settings.model == "gemini-1.5-pro"
        assert settings.timeout == 12.5
        assert settings.quota_limit == 1000

    @pytest.mark.parametrize("env", [
        {"GROQ_TIMEOUT": "soon"},
        {"GROQ_QUOTA_LIMIT": "0"},
        {"GROQ_ENABLED": "maybe"},
    ])
    def test_invalid_values_rejected(self, env):
        with pytest.raises(ConfigurationError):
            load_provider_settings(Provider.GROQ, env)

    def test_keys_hidden_from_repr(self):
        settings = load_provider_settings(Provider.GROQ, {"GROQ_API_KEY": "gsk-secret"})
        assert "gsk-secret" not in repr(settings)


class TestLoadSettings:
    """Tests for the full settings load."""

    def test_test_mode_without_keys_uses_stubs(self):
        settings = load_settings({"MODE": "test"})

        assert settings.use_stub_adapters is True
        assert all(p.enabled for p in settings.providers.values())
        assert settings.providers[Provider.GROQ].api_keys == ["stub-groq"]

    def test_prod_refuses_stubs(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings({"MODE": "prod", "USE_STUB_ADAPTERS": "1"})
        assert exc_info.value.error.details["setting"] == "USE_STUB_ADAPTERS"

    def test_prod_with_keys(self):
        settings = load_settings({"GROQ_API_KEY": "gsk-1"})

        assert settings.mode == RunMode.PROD
        assert settings.use_stub_adapters is False
        assert settings.providers[Provider.GROQ].enabled is True
        assert settings.providers[Provider.GEMINI].enabled is False

    def test_tier_preferences(self):
        settings = load_settings({"MODE": "test", "ROUTING_TIER_HIGH": "groq, Gemini,cerebras"})

        assert settings.routing.preferences == {
            ComplexityTier.HIGH: [Provider.GROQ, Provider.GEMINI, Provider.CEREBRAS]
        }

    def test_unknown_provider_in_preferences(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings({"MODE": "test", "ROUTING_TIER_LOW": "groq,openai"})
        assert exc_info.value.error.details["setting"] == "ROUTING_TIER_LOW"

    def test_inverted_thresholds_rejected(self):
        env = {"MODE": "test", "ROUTING_HIGH_THRESHOLD_CHARS": "100", "ROUTING_MEDIUM_THRESHOLD_CHARS": "500"}
        with pytest.raises(ConfigurationError):
            load_settings(env)

    def test_routing_values(self):
        settings = load_settings({
            "MODE": "test",
            "ROUTING_DEADLINE_SECONDS": "12",
            "ROUTING_HEDGE_DELAY_SECONDS": "1.5",
            "KEY_QUOTA_WINDOW_SECONDS": "3600",
            "CORS_ALLOW_ORIGINS": "https://app.example.com, https://admin.example.com",
        })

        assert settings.routing.deadline_seconds == 12.0
        assert settings.routing.hedge_delay_seconds == 1.5
        assert settings.routing.key_policy.quota_window_seconds == 3600.0
        assert settings.cors_allow_origins == ["https://app.example.com", "https://admin.example.com"]


class TestBootstrap:
    """Tests for building the routing stack from settings."""

    def test_stub_adapters_in_test_mode(self):
        adapters = build_adapters(load_settings({"MODE": "test"}))
        assert all(isinstance(a, StubAdapter) for a in adapters.values())

    def test_real_adapters_in_prod(self):
        env = {"GROQ_API_KEY": "gsk-1", "GEMINI_API_KEY": "g-1", "CEREBRAS_API_KEY": "c-1"}
        adapters = build_adapters(load_settings(env))

        assert isinstance(adapters[Provider.GROQ], GroqAdapter)
        assert isinstance(adapters[Provider.GEMINI], GeminiAdapter)
        assert isinstance(adapters[Provider.CEREBRAS], CerebrasAdapter)

    @pytest.mark.asyncio
    async def test_real_adapters_call_their_own_host(self):
        env = {"GROQ_API_KEY": "gsk-1", "GEMINI_API_KEY": "g-1", "CEREBRAS_API_KEY": "c-1"}
        adapters = build_adapters(load_settings(env))
        try:
            hosts = {
                provider: adapter.client.base_url.host
                for provider, adapter in adapters.items()
            }
            assert hosts == {
                Provider.GROQ: "api.groq.com",
                Provider.GEMINI: "generativelanguage.googleapis.com",
                Provider.CEREBRAS: "api.cerebras.ai",
            }
            assert len({id(adapter.client) for adapter in adapters.values()}) == 3
        finally:
            for adapter in adapters.values():
                await adapter.close()

    @pytest.mark.asyncio
    async def test_router_wiring(self):
        settings = load_settings({
            "MODE": "test",
            "GROQ_API_KEY": "gsk-1",
            "GROQ_API_KEY_2": "gsk-2",
            "USE_STUB_ADAPTERS": "true",
            "GEMINI_ENABLED": "false",
            "ROUTING_DEADLINE_SECONDS": "9",
        })
        router = build_router(settings)

        groq = router.registry.get_health(Provider.GROQ)
        assert [slot.role for slot in groq.keys.slots] == [KeySlotRole.PRIMARY, KeySlotRole.SECONDARY]
        assert router.registry.get_health(Provider.GEMINI).is_enabled is False
        assert router.executor.config.deadline_seconds == 9.0

        routed = await router.complete(CompletionRequest(prompt="Two days in Kyoto"))
        assert routed.response.provider == Provider.GROQ
        await router.close()


"""
Tests for the mock LLM service and provider selection
"""
import json
from unittest.mock import AsyncMock, patch

import pytest

from src.llm_gateway.errors import AppError, ErrorKind
from src.llm_gateway.gateway import LLMGateway
from src.llm_gateway.manager import (
    LLMServiceManager,
    create_llm_service,
    default_provider_config,
    load_provider_config,
    merge_provider_config,
)
from src.llm_gateway.mock import MockLLMService, derive_commands, extract_instruction
from src.llm_gateway.providers import ProviderConfig
from src.storage import SettingsStore


class TestMockLLMService:
    """Tests for MockLLMService"""

    def test_derive_commands_order(self):
        commands = derive_commands("fill q with hello and click search then navigate to https://example.com")
        assert [c["action"] for c in commands] == ["navigate", "fill", "click"]
        assert commands[0]["url"] == "https://example.com"
        assert commands[1]["description"] == "q"
        assert commands[1]["value"] == "hello"
        assert commands[2]["description"] == "search"

    def test_extract_instruction_strips_context(self):
        prompt = (
            "This is a continuation of your previous tasks. The initial instruction was:\n"
            "\"open the site\"\n\n"
            "My new instruction is:\nclick login\n"
            "\nPreviously completed actions:\n[1] ✓ Action: navigate, URL: \"https://a.test\"\n"
            "\n\nCurrent page information:\nURL: https://a.test\n"
        )
        assert extract_instruction(prompt) == "click login"

    @pytest.mark.asyncio
    async def test_generate_returns_json_plan(self):
        service = MockLLMService(delay_ms=0)
        response = await service.generate("navigate to https://example.com", "system")

        data = json.loads(response.content)
        assert data["commands"] == [{"action": "navigate", "url": "https://example.com"}]
        assert data["isComplete"] is True
        assert response.provider == "mock"

    @pytest.mark.asyncio
    async def test_follow_up_prompts_produce_no_commands(self):
        service = MockLLMService(delay_ms=0)
        response = await service.generate(
            'Continue the process of "click login". What are the next steps needed?',
            "system",
        )

        data = json.loads(response.content)
        assert data["commands"] == []
        assert data["isComplete"] is True

    @pytest.mark.asyncio
    async def test_unrecognized_instruction(self):
        service = MockLLMService(delay_ms=0)
        response = await service.generate("make me a sandwich", "system")

        data = json.loads(response.content)
        assert data["commands"] == []
        assert data["isComplete"] is False
        assert service.get_stats()["total_requests"] == 1


class TestProviderConfig:
    """Tests for default and persisted provider configuration"""

    def test_default_config(self):
        config = default_provider_config("Claude")
        assert config.provider_id == "claude"
        assert config.endpoint == "https://api.anthropic.com/v1/messages"

    def test_meta_default_config(self):
        config = default_provider_config("meta")
        assert config.provider_id == "meta"
        assert config.endpoint == "https://api.meta.ai/v1/chat/completions"
        assert config.model == "meta-llama/llama-4-maverick-17b-128e-instruct"

    def test_unknown_provider(self):
        with pytest.raises(AppError) as exc_info:
            default_provider_config("gemini")
        assert exc_info.value.kind == ErrorKind.CONFIGURATION

    def test_merge_camel_case_overrides(self):
        base = ProviderConfig(provider_id="openai", api_key="base", model="gpt-4o")
        merged = merge_provider_config(base, {
            "apiKey": "sk-new",
            "maxTokens": "256",
            "temperature": 0.5,
            "model": "",
            "unknown": "ignored",
        })
        assert merged.api_key == "sk-new"
        assert merged.max_tokens == 256
        assert merged.temperature == 0.5
        assert merged.model == "gpt-4o"

    @pytest.mark.asyncio
    async def test_load_from_store(self, settings_path):
        store = SettingsStore(settings_path)
        await store.set({
            "provider": "claude",
            "serviceConfig": {"apiKey": "sk-ant-test", "maxTokens": 200},
        })

        config = await load_provider_config(store=store)

        assert config.provider_id == "claude"
        assert config.api_key == "sk-ant-test"
        assert config.max_tokens == 200

    @pytest.mark.asyncio
    async def test_explicit_provider_wins(self, settings_path):
        store = SettingsStore(settings_path)
        await store.set({"provider": "claude"})

        config = await load_provider_config("mock", store)
        assert config.provider_id == "mock"

    @pytest.mark.asyncio
    async def test_invalid_persisted_values(self, settings_path):
        store = SettingsStore(settings_path)
        await store.set({"provider": "groq", "serviceConfig": {"temperature": 3}})

        with pytest.raises(AppError) as exc_info:
            await load_provider_config(store=store)
        assert exc_info.value.kind == ErrorKind.VALIDATION


class TestLLMServiceManager:
    """Tests for LLMServiceManager"""

    def test_create_service(self):
        assert isinstance(create_llm_service(ProviderConfig(provider_id="mock")), MockLLMService)
        gateway = create_llm_service(ProviderConfig(
            provider_id="groq", api_key="gsk_test", endpoint="https://api.groq.test",
        ))
        assert isinstance(gateway, LLMGateway)

    def test_create_service_requires_api_key(self):
        with pytest.raises(AppError) as exc_info:
            create_llm_service(ProviderConfig(provider_id="openai"))
        assert exc_info.value.kind == ErrorKind.CONFIGURATION

    @pytest.mark.asyncio
    async def test_initialize_mock(self):
        manager = LLMServiceManager()
        assert await manager.initialize("mock") is True
        assert manager.current_provider == "mock"

    @pytest.mark.asyncio
    async def test_initialize_real_provider(self):
        manager = LLMServiceManager()
        config = ProviderConfig(provider_id="groq", api_key="gsk_test", endpoint="https://api.groq.test")

        with patch.object(LLMGateway, "test_connection", new_callable=AsyncMock, return_value=True):
            assert await manager.initialize("groq", config) is True

        assert manager.current_provider == "groq"
        assert isinstance(manager.service, LLMGateway)

    @pytest.mark.asyncio
    async def test_failed_connection_falls_back_to_mock(self):
        manager = LLMServiceManager()
        config = ProviderConfig(provider_id="groq", api_key="gsk_test", endpoint="https://api.groq.test")

        with patch.object(LLMGateway, "test_connection", new_callable=AsyncMock, return_value=False):
            assert await manager.initialize("groq", config) is False

        assert manager.current_provider == "mock"
        assert isinstance(manager.service, MockLLMService)

    @pytest.mark.asyncio
    async def test_complete_initializes_lazily(self):
        manager = LLMServiceManager()
        text = await manager.complete("navigate to https://example.com", "system")

        assert json.loads(text)["commands"][0]["action"] == "navigate"
        assert manager.get_stats()["provider"] == "mock"

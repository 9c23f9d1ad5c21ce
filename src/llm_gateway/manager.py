"""
LLM Service Manager - Provider 选择与切换

负责：
- 合并默认配置与持久化配置，得到 ProviderConfig
- 按 Provider 标识创建服务（真实 Provider 走 LLMGateway，mock 走 MockLLMService）
- 连接测试失败时回退到 mock 服务
"""
from typing import Any, Dict, Optional, Union

from loguru import logger

from config import settings

from .errors import AppError, ErrorKind
from .gateway import LLMGateway
from .mock import MockLLMService
from .providers import ProviderConfig

LLMService = Union[LLMGateway, MockLLMService]

MOCK_PROVIDER = "mock"

# 持久化配置的键名兼容 camelCase 与 snake_case
_CONFIG_KEY_ALIASES = {
    "apiKey": "api_key",
    "maxTokens": "max_tokens",
    "apiEndpoint": "endpoint",
}


def default_provider_config(provider_id: str) -> ProviderConfig:
    """
    从 settings 构造 Provider 默认配置

    Raises:
        AppError: 未知 Provider（Configuration）
    """
    key = (provider_id or "").lower()
    common = {
        "temperature": settings.llm_temperature,
        "max_tokens": settings.llm_max_tokens,
        "timeout": settings.llm_request_timeout,
    }

    if key == "groq":
        return ProviderConfig(
            provider_id=key,
            api_key=settings.groq_api_key,
            model=settings.groq_model,
            endpoint=settings.groq_endpoint,
            **common,
        )
    if key == "openai":
        return ProviderConfig(
            provider_id=key,
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            endpoint=settings.openai_endpoint,
            **common,
        )
    if key == "claude":
        return ProviderConfig(
            provider_id=key,
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            endpoint=settings.anthropic_endpoint,
            **common,
        )
    if key == "meta":
        return ProviderConfig(
            provider_id=key,
            api_key=settings.meta_api_key,
            model=settings.meta_model,
            endpoint=settings.meta_endpoint,
            **common,
        )
    if key == MOCK_PROVIDER:
        return ProviderConfig(
            provider_id=key,
            model="mock-model",
            extra={"delay_ms": settings.mock_delay_ms},
            **common,
        )

    raise AppError(
        f"Unsupported LLM provider: {provider_id}",
        kind=ErrorKind.CONFIGURATION,
        source="service-manager",
        retryable=False,
    )


def merge_provider_config(base: ProviderConfig, overrides: Optional[Dict[str, Any]]) -> ProviderConfig:
    """将持久化的 serviceConfig 覆盖到默认配置上，忽略空值与未知键"""
    if not overrides:
        return base

    values = {
        "provider_id": base.provider_id,
        "api_key": base.api_key,
        "model": base.model,
        "temperature": base.temperature,
        "max_tokens": base.max_tokens,
        "endpoint": base.endpoint,
        "timeout": base.timeout,
        "extra": dict(base.extra),
    }
    for raw_key, value in overrides.items():
        if value is None or value == "":
            continue
        key = _CONFIG_KEY_ALIASES.get(raw_key, raw_key)
        if key in ("delayMs", "delay_ms"):
            values["extra"]["delay_ms"] = int(value)
        elif key == "temperature":
            values[key] = float(value)
        elif key == "max_tokens":
            values[key] = int(value)
        elif key in ("api_key", "model", "endpoint"):
            values[key] = str(value)
    return ProviderConfig(**values)


async def load_provider_config(provider: Optional[str] = None, store=None) -> ProviderConfig:
    """
    读取 Provider 配置：settings 默认值 + 持久化的 serviceConfig

    Args:
        provider: Provider标识，为空时使用持久化的 provider 或 settings.default_provider
        store: SettingsStore，为空或读取失败时只使用默认值

    Returns:
        ProviderConfig
    """
    stored: Dict[str, Any] = {}
    if store is not None:
        try:
            stored = await store.get(["provider", "serviceConfig"])
        except AppError as e:
            logger.warning(f"⚠️ [ServiceManager] 读取持久化配置失败，使用默认值: {e.message}")

    provider_id = provider or stored.get("provider") or settings.default_provider
    config = merge_provider_config(
        default_provider_config(provider_id),
        stored.get("serviceConfig"),
    )
    config.validate()
    return config


def create_llm_service(config: ProviderConfig) -> LLMService:
    """
    按配置创建 LLM 服务

    Raises:
        AppError: 未知 Provider 或配置非法
    """
    if config.provider_id == MOCK_PROVIDER:
        return MockLLMService(delay_ms=config.extra.get("delay_ms", settings.mock_delay_ms))

    if not config.api_key:
        raise AppError(
            f"API key is required for provider {config.provider_id}",
            kind=ErrorKind.CONFIGURATION,
            source="service-manager",
            retryable=False,
        )
    return LLMGateway(
        config,
        max_attempts=settings.llm_max_attempts,
        detailed_logging=settings.detailed_api_logging,
    )


class LLMServiceManager:
    """
    LLM 服务管理器

    Usage:
        manager = LLMServiceManager()
        await manager.initialize("groq", config)
        text = await manager.complete(prompt, system_prompt)
    """

    default_provider = MOCK_PROVIDER

    def __init__(self):
        self._service: Optional[LLMService] = None
        self._provider: Optional[str] = None
        self._config: Optional[ProviderConfig] = None

    @property
    def current_provider(self) -> str:
        return self._provider or self.default_provider

    @property
    def service(self) -> Optional[LLMService]:
        return self._service

    async def initialize(
        self,
        provider: Optional[str] = None,
        config: Optional[ProviderConfig] = None,
    ) -> bool:
        """
        初始化服务并测试连接

        连接失败或构造异常时回退到 mock 服务。

        Returns:
            bool: 是否以请求的 Provider 连接成功
        """
        provider_id = (provider or (config.provider_id if config else None)
                       or self._provider or self.default_provider).lower()
        try:
            if config is None or config.provider_id != provider_id:
                config = default_provider_config(provider_id)
            service = create_llm_service(config)
            connected = await service.test_connection()
        except AppError as e:
            logger.error(f"❌ [ServiceManager] 初始化 {provider_id} 服务失败: {e.message}")
            connected = False
            service = None

        if connected:
            self._service = service
            self._provider = provider_id
            self._config = config
            logger.info(f"✅ [ServiceManager] 当前 Provider: {provider_id}")
            return True

        if provider_id != self.default_provider:
            logger.warning(
                f"⚠️ [ServiceManager] 无法连接 {provider_id}，回退到 {self.default_provider} 服务"
            )
            await self.initialize(self.default_provider)
        return False

    async def change_provider(self, provider: str, config: Optional[ProviderConfig] = None) -> bool:
        """切换 Provider"""
        logger.info(f"🔄 [ServiceManager] 切换 Provider: {self.current_provider} -> {provider}")
        return await self.initialize(provider, config)

    async def complete(self, prompt: str, system_prompt: str) -> str:
        """
        调用当前服务生成文本

        Raises:
            AppError: Provider 调用失败
        """
        if self._service is None:
            await self.initialize()
        response = await self._service.generate(prompt, system_prompt)
        return response.content

    def get_stats(self) -> Dict:
        if self._service is None:
            return {"provider": self.current_provider}
        return self._service.get_stats()

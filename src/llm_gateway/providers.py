"""
LLM Providers - 各LLM服务提供商的协议适配

每个 Provider 只负责"线协议"翻译：
- format_request: 通用请求 → Provider 请求体
- parse_response: Provider 响应体 → 文本
- format_test_request: 连接测试用的最小请求体
- get_request_headers: 鉴权与版本请求头

支持的Provider:
- OpenAI (GPT-4o)
- Groq (OpenAI 兼容接口)
- Meta (OpenAI 兼容接口)
- Claude (Anthropic Messages API)
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Type

from .errors import AppError, ErrorKind


@dataclass
class ProviderConfig:
    """
    Provider配置

    Attributes:
        provider_id: Provider标识（openai / groq / claude / meta / mock）
        api_key: API密钥
        model: 模型名称
        temperature: 温度参数，取值 [0, 1]
        max_tokens: 最大输出token数
        endpoint: 请求地址
        timeout: 单次HTTP请求超时（秒）
        extra: 其他Provider特有参数（如 mock 的 delay_ms）
    """
    provider_id: str
    api_key: Optional[str] = None
    model: str = ""
    temperature: float = 0.3
    max_tokens: int = 1024
    endpoint: str = ""
    timeout: float = 30.0
    extra: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """校验配置取值范围"""
        if not 0 <= self.temperature <= 1:
            raise AppError(
                f"temperature must be within [0, 1], got {self.temperature}",
                kind=ErrorKind.VALIDATION,
                source="provider-config",
                retryable=False,
            )
        if self.max_tokens <= 0:
            raise AppError(
                f"max_tokens must be positive, got {self.max_tokens}",
                kind=ErrorKind.VALIDATION,
                source="provider-config",
                retryable=False,
            )

    def masked_key(self) -> str:
        """日志中使用的脱敏 API key"""
        if not self.api_key:
            return "<none>"
        if len(self.api_key) <= 8:
            return "****"
        return f"{self.api_key[:4]}...{self.api_key[-4:]}"


class LLMApiAdapter(ABC):
    """Provider 协议适配器抽象基类"""

    name = "base"
    service_name = "LLM"
    default_model = ""

    @abstractmethod
    def format_request(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """构造请求体"""
        pass

    @abstractmethod
    def parse_response(self, response: Dict[str, Any]) -> str:
        """从响应体中提取文本"""
        pass

    @abstractmethod
    def format_test_request(self, model: Optional[str] = None) -> Dict[str, Any]:
        """构造连接测试请求体"""
        pass

    @abstractmethod
    def get_request_headers(self, api_key: Optional[str]) -> Dict[str, str]:
        """构造请求头"""
        pass

    def _format_error(self, message: str) -> AppError:
        return AppError(
            f"Unexpected response format from {self.service_name} API: {message}",
            kind=ErrorKind.VALIDATION,
            source=self.name,
            retryable=False,
        )


class OpenAIAdapter(LLMApiAdapter):
    """OpenAI Chat Completions 协议"""

    name = "openai"
    service_name = "OpenAI"
    default_model = "gpt-4o"

    def format_request(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        return {
            "model": model or self.default_model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
        }

    def parse_response(self, response: Dict[str, Any]) -> str:
        choices = response.get("choices")
        if not isinstance(choices, list) or not choices:
            raise self._format_error("missing choices array")

        content = (choices[0].get("message") or {}).get("content")
        if not content:
            raise self._format_error("no content found in response")
        return content

    def format_test_request(self, model: Optional[str] = None) -> Dict[str, Any]:
        return {
            "model": model or self.default_model,
            "messages": [{"role": "user", "content": "Hello"}],
            "max_tokens": 5,
        }

    def get_request_headers(self, api_key: Optional[str]) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key or ''}",
        }


class GroqAdapter(OpenAIAdapter):
    """Groq 使用 OpenAI 兼容接口，仅默认模型不同"""

    name = "groq"
    service_name = "Groq"
    default_model = "llama-3.3-70b-versatile"


class MetaAdapter(OpenAIAdapter):
    """Meta AI 同样使用 OpenAI 兼容接口"""

    name = "meta"
    service_name = "Meta"
    default_model = "meta-llama/llama-4-maverick-17b-128e-instruct"


class ClaudeAdapter(LLMApiAdapter):
    """Anthropic Messages API 协议"""

    name = "claude"
    service_name = "Claude"
    default_model = "claude-3-sonnet-20240229"
    api_version = "2023-06-01"

    def format_request(
        self,
        prompt: str,
        system_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        return {
            "model": model or self.default_model,
            "system": system_prompt,
            "messages": [
                {
                    "role": "user",
                    "content": [{"type": "text", "text": prompt}],
                }
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

    def parse_response(self, response: Dict[str, Any]) -> str:
        content = response.get("content")
        if not isinstance(content, list) or not content:
            raise self._format_error("missing content array")

        # 取第一个文本块
        for block in content:
            if block.get("type") == "text" and block.get("text"):
                return block["text"]
        raise self._format_error("no text content found in response")

    def format_test_request(self, model: Optional[str] = None) -> Dict[str, Any]:
        return {
            "model": model or self.default_model,
            "messages": [
                {"role": "user", "content": [{"type": "text", "text": "Hello"}]}
            ],
            "max_tokens": 10,
        }

    def get_request_headers(self, api_key: Optional[str]) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": api_key or "",
            "anthropic-version": self.api_version,
        }


# Provider 注册表：新增 Provider 只需在此登记
ADAPTERS: Dict[str, Type[LLMApiAdapter]] = {
    "openai": OpenAIAdapter,
    "groq": GroqAdapter,
    "claude": ClaudeAdapter,
    "meta": MetaAdapter,
}


def create_adapter(provider_id: str) -> LLMApiAdapter:
    """
    按 Provider 标识创建适配器

    Args:
        provider_id: Provider标识（大小写不敏感）

    Returns:
        LLMApiAdapter实例

    Raises:
        AppError: 未知的 Provider（Configuration）
    """
    key = (provider_id or "").lower()
    adapter_cls = ADAPTERS.get(key)
    if adapter_cls is None:
        raise AppError(
            f"Unsupported LLM provider: {provider_id}",
            kind=ErrorKind.CONFIGURATION,
            source="adapter-factory",
            data={"supported": sorted(ADAPTERS)},
            retryable=False,
        )
    return adapter_cls()


def list_providers() -> list:
    """列出支持的 Provider"""
    return sorted(ADAPTERS)

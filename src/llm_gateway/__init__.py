"""
LLM Gateway - 统一的大语言模型调用层

提供：
- Provider 协议适配（OpenAI, Groq, Claude, Meta）
- 统一错误模型与 HTTP 错误分类
- 按错误类型的指数退避重试
- 离线 mock 服务与 Provider 切换
"""

from .errors import (
    AppError,
    ErrorKind,
    classify_connection_error,
    classify_http_error,
    execution_error_result,
    missing_element_result,
    navigation_error_result,
)
from .gateway import LLMGateway, LLMResponse
from .manager import (
    LLMServiceManager,
    create_llm_service,
    default_provider_config,
    load_provider_config,
)
from .mock import MockLLMService
from .providers import (
    ClaudeAdapter,
    GroqAdapter,
    MetaAdapter,
    LLMApiAdapter,
    OpenAIAdapter,
    ProviderConfig,
    create_adapter,
)
from .retry import compute_backoff, retry_with_backoff

__all__ = [
    'AppError',
    'ErrorKind',
    'classify_connection_error',
    'classify_http_error',
    'execution_error_result',
    'missing_element_result',
    'navigation_error_result',
    'LLMGateway',
    'LLMResponse',
    'LLMServiceManager',
    'create_llm_service',
    'default_provider_config',
    'load_provider_config',
    'MockLLMService',
    'ClaudeAdapter',
    'GroqAdapter',
    'MetaAdapter',
    'LLMApiAdapter',
    'OpenAIAdapter',
    'ProviderConfig',
    'create_adapter',
    'compute_backoff',
    'retry_with_backoff',
]

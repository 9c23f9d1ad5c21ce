"""
LLM Gateway - 统一的大语言模型调用网关

提供：
- 基于 Provider 适配器的统一调用接口
- HTTP 错误分类
- 按错误类型的指数退避重试
- 请求统计
"""
import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import aiohttp
from loguru import logger

from .errors import AppError, ErrorKind, classify_http_error
from .providers import LLMApiAdapter, ProviderConfig, create_adapter
from .retry import retry_with_backoff


@dataclass
class LLMResponse:
    """
    LLM响应对象

    Attributes:
        content: 响应文本
        model: 实际使用的模型
        provider: 实际使用的Provider
        request_id: 请求ID
        latency_ms: 响应延迟（毫秒）
        attempts: 实际尝试次数
    """
    content: str
    model: str
    provider: str
    request_id: str = ""
    latency_ms: float = 0.0
    attempts: int = 1

    def to_dict(self) -> Dict:
        """转换为字典"""
        return {
            "content": self.content,
            "model": self.model,
            "provider": self.provider,
            "request_id": self.request_id,
            "latency_ms": self.latency_ms,
            "attempts": self.attempts,
        }


class LLMGateway:
    """
    单个 Provider 的调用网关

    Usage:
        config = ProviderConfig(provider_id="groq", api_key="...", endpoint="...")
        gateway = LLMGateway(config)
        response = await gateway.generate("open example.com", system_prompt)
    """

    def __init__(
        self,
        config: ProviderConfig,
        adapter: Optional[LLMApiAdapter] = None,
        max_attempts: int = 4,
        detailed_logging: bool = False,
    ):
        """
        初始化LLM Gateway

        Args:
            config: Provider配置
            adapter: 协议适配器，为空则按 config.provider_id 创建
            max_attempts: 最大尝试次数（含首次）
            detailed_logging: 是否在 DEBUG 级别输出完整请求/响应
        """
        config.validate()
        self.config = config
        self.adapter = adapter or create_adapter(config.provider_id)
        self.max_attempts = max_attempts
        self.detailed_logging = detailed_logging

        # 请求统计
        self._request_count = 0
        self._success_count = 0
        self._failure_count = 0
        self._total_latency_ms = 0.0

        logger.info(
            f"🔧 [LLMGateway] initialized provider={self.adapter.name} | "
            f"model={self.model} | api_key={config.masked_key()}"
        )

    @property
    def provider(self) -> str:
        return self.adapter.name

    @property
    def model(self) -> str:
        return self.config.model or self.adapter.default_model

    async def _send(
        self,
        payload: Dict[str, Any],
        headers: Dict[str, str],
    ) -> Tuple[int, str, Any]:
        """
        发送一次 HTTP POST 请求

        Returns:
            (status, reason, body)：body 能解析为 JSON 时为 dict，否则为原始文本
        """
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                self.config.endpoint,
                headers=headers,
                json=payload,
            ) as response:
                text = await response.text()
                try:
                    body: Any = json.loads(text) if text else {}
                except ValueError:
                    body = text
                return response.status, response.reason or "", body

    async def _request(self, payload: Dict[str, Any], request_id: str) -> Dict[str, Any]:
        """发送请求并对非 2xx 响应进行分类"""
        headers = self.adapter.get_request_headers(self.config.api_key)
        if self.detailed_logging:
            logger.debug(
                f"📝 [LLM-REQ][{request_id}] payload: "
                f"{json.dumps(payload, ensure_ascii=False)}"
            )

        status, reason, body = await self._send(payload, headers)

        if not 200 <= status < 300:
            raise classify_http_error(status, reason, body, self.adapter.service_name)
        if not isinstance(body, dict):
            raise AppError(
                f"{self.adapter.service_name} API returned a non-JSON body",
                kind=ErrorKind.VALIDATION,
                source=self.provider,
                data={"body": str(body)[:200]},
                retryable=False,
            )
        return body

    async def generate(self, prompt: str, system_prompt: str) -> LLMResponse:
        """
        生成LLM响应

        Args:
            prompt: 用户提示词（已包含上下文）
            system_prompt: 系统提示词

        Returns:
            LLM响应对象

        Raises:
            AppError: 不可重试错误或重试耗尽
        """
        request_id = str(uuid.uuid4())[:8]
        self._request_count += 1
        attempts = 0

        payload = self.adapter.format_request(
            prompt,
            system_prompt,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            model=self.model,
        )

        logger.info(
            f"🚀 [LLM-REQ][{request_id}] provider={self.provider} | "
            f"model={self.model} | chars={len(prompt)} | "
            f"max_tokens={self.config.max_tokens} | temperature={self.config.temperature}"
        )
        start_time = time.perf_counter()

        async def operation() -> Dict[str, Any]:
            nonlocal attempts
            attempts += 1
            return await self._request(payload, request_id)

        try:
            body = await retry_with_backoff(
                operation,
                max_attempts=self.max_attempts,
                source=self.adapter.service_name,
            )
            content = self.adapter.parse_response(body)
        except AppError as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            self._failure_count += 1
            self._total_latency_ms += latency_ms
            logger.error(
                f"❌ [LLM-ERR][{request_id}] provider={self.provider} | "
                f"latency={latency_ms:.0f}ms | attempts={attempts} | "
                f"kind={e.kind.value} | error={e.message}"
            )
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000
        self._success_count += 1
        self._total_latency_ms += latency_ms

        preview = content[:150].replace("\n", " ")
        logger.info(
            f"✅ [LLM-RES][{request_id}] provider={self.provider} | "
            f"model={self.model} | latency={latency_ms:.0f}ms | attempts={attempts}"
        )
        logger.debug(f"📤 [LLM-RES][{request_id}] response_preview: {preview}")
        if self.detailed_logging:
            logger.debug(f"📤 [LLM-RES][{request_id}] raw content: {content}")

        return LLMResponse(
            content=content,
            model=self.model,
            provider=self.provider,
            request_id=request_id,
            latency_ms=latency_ms,
            attempts=attempts,
        )

    async def test_connection(self) -> bool:
        """
        测试 Provider 连接（单次请求，不重试）

        Returns:
            bool: 是否连接成功
        """
        payload = self.adapter.format_test_request(model=self.model)
        try:
            await self._request(payload, "test")
        except Exception as e:
            logger.warning(f"⚠️ [LLMGateway] {self.provider} 连接测试失败: {e}")
            return False
        logger.info(f"✅ [LLMGateway] {self.provider} 连接测试成功")
        return True

    def get_stats(self) -> Dict:
        """获取Gateway统计信息"""
        return {
            "provider": self.provider,
            "model": self.model,
            "total_requests": self._request_count,
            "successful_requests": self._success_count,
            "failed_requests": self._failure_count,
            "success_rate": (
                self._success_count / self._request_count
                if self._request_count > 0 else 0
            ),
            "avg_latency_ms": (
                self._total_latency_ms / self._request_count
                if self._request_count > 0 else 0
            ),
        }

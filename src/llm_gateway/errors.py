"""
Errors - 统一错误模型

提供：
- ErrorKind：全局错误类型枚举
- AppError：携带来源 / 原始异常 / 结构化数据 / 可重试标记的应用异常
- HTTP 响应与连接异常的分类
- 命令执行失败结果的标准化构造
"""
import asyncio
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp
from loguru import logger


class ErrorKind(str, Enum):
    """错误类型"""
    UNKNOWN = "unknown_error"
    VALIDATION = "validation_error"
    TIMEOUT = "timeout_error"

    # API
    AUTHENTICATION = "authentication_error"
    PERMISSION = "permission_error"
    RATE_LIMIT = "rate_limit_error"
    SERVER = "server_error"
    NETWORK = "network_error"

    # Service
    CONFIGURATION = "configuration_error"
    SERVICE_UNAVAILABLE = "service_unavailable"

    # Command execution
    COMMAND_EXECUTION = "command_execution_error"
    NAVIGATION = "navigation_error"
    ELEMENT_NOT_FOUND = "element_not_found"
    PAGE_LOAD = "page_load_error"

    # State
    STATE_SYNC = "state_sync_error"
    STORAGE = "storage_error"


# HTTP 层面认定为可重试的错误类型
RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.SERVER, ErrorKind.NETWORK})

# 用户 / 配置类错误，永不重试
NON_RETRYABLE_KINDS = frozenset({
    ErrorKind.AUTHENTICATION,
    ErrorKind.PERMISSION,
    ErrorKind.VALIDATION,
})

_USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.AUTHENTICATION: "Authentication failed. Please check your API key.",
    ErrorKind.PERMISSION: "Permission denied. Your account may not have access to this resource.",
    ErrorKind.RATE_LIMIT: "Rate limit exceeded. Please try again later.",
    ErrorKind.TIMEOUT: "The operation timed out. Please try again.",
    ErrorKind.NETWORK: "Network error. Please check your internet connection.",
    ErrorKind.SERVER: "Server error. Please try again later.",
    ErrorKind.ELEMENT_NOT_FOUND: "Element not found on the page. The page structure may have changed.",
    ErrorKind.NAVIGATION: "Navigation error. Please check the URL or try again later.",
    ErrorKind.PAGE_LOAD: "Page failed to load properly. Please try again.",
}


class AppError(Exception):
    """
    应用异常

    Attributes:
        message: 错误描述
        kind: 错误类型
        source: 错误来源（组件 / 服务名）
        original_error: 被包装的原始异常
        data: 额外结构化数据
        retryable: 是否允许重试
        timestamp: 产生时间（ISO 8601）
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        source: str = "app",
        original_error: Optional[BaseException] = None,
        data: Optional[Dict[str, Any]] = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.source = source
        self.original_error = original_error
        self.data = data or {}
        self.retryable = retryable
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def user_message(self) -> str:
        """返回面向用户的错误提示，未定义的类型直接使用原始消息"""
        return _USER_MESSAGES.get(self.kind, self.message)

    def should_retry(self, attempt: int = 1, max_attempts: int = 3) -> bool:
        """
        判断是否应该重试

        Args:
            attempt: 当前尝试次数（从 1 开始）
            max_attempts: 最大尝试次数

        Returns:
            bool: 是否重试
        """
        if not self.retryable:
            return False
        if attempt >= max_attempts:
            return False
        return self.kind not in NON_RETRYABLE_KINDS

    def backoff_seconds(self, attempt: int) -> float:
        """按错误类型计算第 attempt 次重试前的等待时间（秒）"""
        from .retry import compute_backoff
        return compute_backoff(self.kind, attempt)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "message": self.message,
            "kind": self.kind.value,
            "source": self.source,
            "retryable": self.retryable,
            "data": self.data,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return f"AppError(kind={self.kind.value}, source={self.source!r}, message={self.message!r})"


def classify_http_error(
    status: int,
    reason: str,
    body: Any,
    service: str,
) -> AppError:
    """
    根据 HTTP 状态码和错误响应体对 API 错误进行分类

    Args:
        status: HTTP 状态码
        reason: HTTP 状态文本
        body: 响应体（已解析的 JSON 或原始文本）
        service: 服务名（如 "Groq"、"OpenAI"）

    Returns:
        AppError: 标准化后的错误
    """
    message = reason or "API request failed"
    kind = ErrorKind.UNKNOWN
    error_data: Any = {}

    if isinstance(body, str):
        try:
            error_data = json.loads(body)
        except ValueError:
            if body:
                message = body[:200]
    elif isinstance(body, dict):
        error_data = body

    if isinstance(error_data, dict) and error_data.get("error"):
        error = error_data["error"]
        if isinstance(error, str):
            message = error
        elif isinstance(error, dict) and error.get("message"):
            message = error["message"]
            error_type = str(error.get("type") or "")
            if "auth" in error_type:
                kind = ErrorKind.AUTHENTICATION
            elif "permission" in error_type:
                kind = ErrorKind.PERMISSION
            elif "rate" in error_type:
                kind = ErrorKind.RATE_LIMIT
        else:
            message = json.dumps(error, ensure_ascii=False)

    if kind == ErrorKind.UNKNOWN:
        if status in (401, 403):
            kind = ErrorKind.AUTHENTICATION
        elif status == 429:
            kind = ErrorKind.RATE_LIMIT
        elif status in (400, 422):
            kind = ErrorKind.VALIDATION
        elif status >= 500:
            kind = ErrorKind.SERVER

    return AppError(
        f"{service} API Error: {message}",
        kind=kind,
        source=service,
        data={
            "status_code": status,
            "status_text": reason,
            "api_response": error_data,
        },
        retryable=kind in RETRYABLE_KINDS,
    )


def classify_connection_error(error: BaseException, service: str) -> AppError:
    """
    对网络层异常进行分类（请求未得到 HTTP 响应）

    Args:
        error: 原始异常
        service: 服务名

    Returns:
        AppError: 标准化后的错误
    """
    if isinstance(error, AppError):
        return error

    text = str(error) or type(error).__name__
    kind = ErrorKind.UNKNOWN
    retryable = True

    if isinstance(error, asyncio.TimeoutError) or "timeout" in text.lower():
        kind = ErrorKind.TIMEOUT
    elif isinstance(error, aiohttp.ClientError) or "Failed to fetch" in text or "NetworkError" in text:
        kind = ErrorKind.NETWORK
    elif "CORS" in text:
        kind = ErrorKind.PERMISSION
        retryable = False
    elif "API key" in text:
        kind = ErrorKind.AUTHENTICATION
        retryable = False

    return AppError(
        text,
        kind=kind,
        source=service,
        original_error=error,
        retryable=retryable,
    )


# ============================================================
# 命令执行错误
# ============================================================

def execution_error_result(error: BaseException, action: str, **details: Any) -> Dict[str, Any]:
    """命令执行异常 → 标准失败结果"""
    if isinstance(error, AppError):
        app_error = error
    else:
        app_error = AppError(
            f"Error executing {action} command: {error}",
            kind=ErrorKind.COMMAND_EXECUTION,
            source="command-executor",
            original_error=error,
            data=details,
        )
    logger.error(f"❌ [Executor] {action} 执行异常: {app_error.message}")
    return {
        "success": False,
        "action": action,
        "error": app_error.message,
        "error_kind": app_error.kind,
        **details,
    }


def navigation_error_result(error: BaseException, url: str) -> Dict[str, Any]:
    """导航异常 → 标准失败结果，常见原因给出更明确的提示"""
    message = str(error)
    kind = ErrorKind.NAVIGATION

    if "invalid URL" in message or "Invalid URL" in message:
        message = f"Invalid URL format: {url}. Please provide a complete URL including http:// or https://"
        kind = ErrorKind.VALIDATION
    elif "NetworkError" in message or "net::ERR" in message:
        message = f"Network error while navigating to {url}. The site may be unavailable."
        kind = ErrorKind.NETWORK
    elif "timeout" in message.lower():
        message = f"Timeout while navigating to {url}. The site might be slow or unreachable."
        kind = ErrorKind.TIMEOUT

    return {
        "success": False,
        "action": "navigate",
        "url": url,
        "error": message,
        "error_kind": kind,
    }


def missing_element_result(action: str, locator: str) -> Dict[str, Any]:
    """未找到目标元素 → 标准失败结果"""
    return {
        "success": False,
        "action": action,
        "error": f"No element found matching: {locator}",
        "error_kind": ErrorKind.ELEMENT_NOT_FOUND,
        "locator": locator,
    }

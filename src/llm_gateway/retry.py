"""
Retry - 指数退避重试

按错误类型选择退避策略：
- RateLimit：最长的上限和增长率
- Server：中等
- 其他：较小的默认值 + 随机抖动
"""
import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from .errors import AppError, ErrorKind, classify_connection_error

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    """
    退避参数

    Attributes:
        base: 基础等待时间（秒）
        growth: 每次尝试的增长倍数
        cap: 等待时间上限（秒）
        jitter: 随机抖动上限（秒）
    """
    base: float
    growth: float
    cap: float
    jitter: float = 0.0

    def delay(self, attempt: int) -> float:
        """第 attempt 次重试前的等待时间：min(cap, base × growth^attempt + jitter)"""
        exp_backoff = self.base * (self.growth ** attempt)
        jitter = random.random() * self.jitter if self.jitter else 0.0
        return min(self.cap, exp_backoff + jitter)


RATE_LIMIT_POLICY = BackoffPolicy(base=1.0, growth=2.0, cap=30.0)
SERVER_POLICY = BackoffPolicy(base=1.0, growth=1.5, cap=15.0)
DEFAULT_POLICY = BackoffPolicy(base=1.0, growth=1.5, cap=10.0, jitter=0.5)


def policy_for(kind: ErrorKind) -> BackoffPolicy:
    """按错误类型选择退避策略"""
    if kind == ErrorKind.RATE_LIMIT:
        return RATE_LIMIT_POLICY
    if kind == ErrorKind.SERVER:
        return SERVER_POLICY
    return DEFAULT_POLICY


def compute_backoff(kind: ErrorKind, attempt: int) -> float:
    """
    计算退避时间

    Args:
        kind: 错误类型
        attempt: 当前尝试次数（从 1 开始）

    Returns:
        float: 等待秒数
    """
    return policy_for(kind).delay(attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    source: str = "retry",
    should_retry: Optional[Callable[[AppError, int], bool]] = None,
    on_retry: Optional[Callable[[AppError, int, float], None]] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """
    带指数退避的重试

    非 AppError 异常会先经过 classify_connection_error 分类；
    Authentication / Permission / Validation 立即抛出，不消耗剩余次数。

    Args:
        operation: 无参异步操作
        max_attempts: 最大尝试次数（含首次）
        source: 日志中的来源标识
        should_retry: 额外的重试判定
        on_retry: 每次重试前的回调 (error, attempt, delay)
        sleep: 等待函数，默认 asyncio.sleep

    Returns:
        operation 的返回值

    Raises:
        AppError: 不可重试或次数耗尽时抛出最后一次错误
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            error = classify_connection_error(e, source)

            if not error.should_retry(attempt, max_attempts):
                if error.retryable and attempt >= max_attempts:
                    logger.error(
                        f"❌ [Retry][{source}] 已达最大尝试次数 {max_attempts}: {error.message}"
                    )
                raise error from e
            if should_retry is not None and not should_retry(error, attempt):
                raise error from e

            delay = compute_backoff(error.kind, attempt)
            logger.warning(
                f"🔁 [Retry][{source}] attempt {attempt}/{max_attempts} failed "
                f"({error.kind.value}), retrying in {delay:.2f}s"
            )
            if on_retry is not None:
                on_retry(error, attempt, delay)

            await (sleep or asyncio.sleep)(delay)
            attempt += 1

"""
DOM 稳定性监测

动作之后等待页面"安静下来"再提取上下文：
初始等待 → 轮询页面的 isLoading 指标，直到不再加载 / 达到最大次数 / 超过硬超时。
轮询期间的任何通信错误都视为已稳定（fail-open），不会阻塞流程。
"""
import asyncio
from typing import Optional

from loguru import logger

from .page.base import PageChannel


class StabilityMonitor:
    """
    DOM 稳定性监测器

    使用方式：
        monitor = StabilityMonitor(channel)
        await monitor.await_stable()
    """

    def __init__(
        self,
        channel: PageChannel,
        max_checks: int = 10,
        interval_ms: int = 300,
        hard_timeout_ms: int = 4000,
        initial_delay_ms: int = 500,
        growth_threshold: int = 5,
    ):
        self.channel = channel
        self.max_checks = max_checks
        self.interval_ms = interval_ms
        self.hard_timeout_ms = hard_timeout_ms
        self.initial_delay_ms = initial_delay_ms
        self.growth_threshold = growth_threshold

    async def await_stable(
        self,
        max_checks: Optional[int] = None,
        interval_ms: Optional[int] = None,
        hard_timeout_ms: Optional[int] = None,
    ) -> int:
        """
        等待页面稳定

        Args:
            max_checks: 最大轮询次数
            interval_ms: 两次轮询间隔（毫秒）
            hard_timeout_ms: 总超时（毫秒，含初始等待）

        Returns:
            int: 实际完成的轮询次数
        """
        max_checks = self.max_checks if max_checks is None else max_checks
        interval = (self.interval_ms if interval_ms is None else interval_ms) / 1000
        hard_timeout = (self.hard_timeout_ms if hard_timeout_ms is None else hard_timeout_ms) / 1000

        loop = asyncio.get_running_loop()
        deadline = loop.time() + hard_timeout
        checks = 0

        await asyncio.sleep(min(self.initial_delay_ms / 1000, hard_timeout))

        try:
            while checks < max_checks:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.debug(f"⏱️ [Stability] 达到硬超时 {hard_timeout:.1f}s，按稳定处理")
                    return checks

                status = await asyncio.wait_for(
                    self.channel.check_dom_stability(self.growth_threshold),
                    timeout=remaining,
                )
                checks += 1

                if not status.get("isLoading"):
                    logger.debug(f"✅ [Stability] 页面已稳定 (checks={checks})")
                    return checks

                logger.debug(
                    f"⏳ [Stability] 页面仍在加载 (check {checks}/{max_checks}, "
                    f"readyState={status.get('readyState')}, elements={status.get('elementCount')})"
                )
                if checks < max_checks:
                    await asyncio.sleep(max(0.0, min(interval, deadline - loop.time())))

            logger.debug(f"⏱️ [Stability] 达到最大轮询次数 {max_checks}，按稳定处理")
        except asyncio.TimeoutError:
            logger.debug("⏱️ [Stability] 稳定性检查超时，按稳定处理")
        except Exception as e:
            logger.warning(f"⚠️ [Stability] 稳定性检查失败，按稳定处理: {e}")
        return checks

"""
页面通道抽象基类

页面侧协作者的契约：引擎只通过这些方法与页面交互。
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from src.llm_gateway.errors import AppError, ErrorKind

from ..models import Command, PageContext

# 平台限制页面，无法注入页面脚本
RESTRICTED_URL_PREFIXES = (
    "chrome://",
    "chrome-extension://",
    "chrome-search://",
    "devtools://",
    "edge://",
    "about:",
)


def is_restricted_url(url: Optional[str]) -> bool:
    return bool(url) and url.startswith(RESTRICTED_URL_PREFIXES)


def check_restricted_url(url: Optional[str]) -> None:
    """
    受限页面提前拒绝

    Raises:
        AppError: 受限页面（Permission）
    """
    if is_restricted_url(url):
        scheme = url.split("/")[0]
        raise AppError(
            f"Cannot execute on restricted page ({scheme}//). "
            "Please open a regular web page and try again.",
            kind=ErrorKind.PERMISSION,
            source="page-channel",
            data={"url": url},
            retryable=False,
        )


class PageChannel(ABC):
    """页面通道抽象基类"""

    @abstractmethod
    async def current_url(self) -> str:
        """当前页面 URL"""
        ...

    @abstractmethod
    async def ping(self, timeout: float = 1.0) -> bool:
        """页面脚本是否存活"""
        ...

    @abstractmethod
    async def ensure_ready(self) -> None:
        """
        确保页面脚本可用：受限页面检查 → ping → 必要时（重新）注入

        Raises:
            AppError: 受限页面（Permission）或注入失败（PageLoad）
        """
        ...

    @abstractmethod
    async def check_dom_stability(self, growth_threshold: int = 5) -> Dict[str, Any]:
        """
        返回 {"isLoading": bool, "readyState": str, "elementCount": int}
        """
        ...

    @abstractmethod
    async def fast_snapshot(self, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        返回 {"url", "title", "keyElements": [{xpath, text, tag, x, y, width, height, inViewport}]}
        """
        ...

    async def extract_page_context(self, options: Optional[Dict[str, Any]] = None) -> PageContext:
        """默认由快照转换得到页面上下文"""
        snapshot = await self.fast_snapshot(options)
        return PageContext.from_snapshot(snapshot)

    @abstractmethod
    async def execute_commands(self, commands: List[Command]) -> Dict[str, Any]:
        """
        按顺序执行命令，返回 {"success": bool, "commandResults": [dict, ...]}
        """
        ...

    @abstractmethod
    async def wait_for_navigation(self, timeout: float = 10.0) -> bool:
        """
        等待页面加载完成信号

        Returns:
            bool: 超时前是否收到信号
        """
        ...

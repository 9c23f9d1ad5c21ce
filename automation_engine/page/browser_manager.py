"""
浏览器生命周期管理 - Playwright 浏览器与当前标签页

管理 Chromium 浏览器实例的创建和销毁，并追踪当前聚焦的页面：
新页面打开时成为当前页，当前页关闭时回退到最近打开的页面。
"""
import asyncio
from typing import List, Optional

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from src.llm_gateway.errors import AppError, ErrorKind


class BrowserManager:
    """
    Playwright 浏览器管理器（标签页身份提供者）

    确保只有一个浏览器实例，避免重复启动。
    """

    def __init__(self, headless: bool = False) -> None:
        self.headless = headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._pages: List[Page] = []
        self._active_page: Optional[Page] = None
        self._lock = asyncio.Lock()

    async def start(self) -> BrowserContext:
        """
        启动浏览器并创建上下文（已启动时直接返回）

        Returns:
            BrowserContext: 浏览器上下文
        """
        async with self._lock:
            if self._browser is None or not self._browser.is_connected():
                logger.info(f"🌐 [BrowserManager] 启动 Chromium 浏览器 (headless={self.headless})")
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=[
                        "--no-sandbox",
                        "--disable-dev-shm-usage",
                    ],
                )
                self._context = await self._browser.new_context(
                    viewport={"width": 1280, "height": 720},
                )
                self._context.on("page", self._on_page_opened)
                self._pages = []
                self._active_page = None
            return self._context

    def _on_page_opened(self, page: Page) -> None:
        self._pages.append(page)
        self._active_page = page
        page.on("close", self._on_page_closed)
        logger.debug(f"🗂️ [BrowserManager] 新页面成为当前页 (共 {len(self._pages)} 个)")

    def _on_page_closed(self, page: Page) -> None:
        if page in self._pages:
            self._pages.remove(page)
        if self._active_page is page:
            self._active_page = self._pages[-1] if self._pages else None
            logger.debug("🗂️ [BrowserManager] 当前页已关闭，切换到最近的页面")

    def focus(self, page: Page) -> None:
        """将指定页面设为当前页"""
        if page not in self._pages:
            self._pages.append(page)
            page.on("close", self._on_page_closed)
        self._active_page = page

    async def active_page(self) -> Page:
        """
        获取当前聚焦的页面，没有页面时新建一个

        Raises:
            AppError: 浏览器未启动（ServiceUnavailable）
        """
        if self._context is None:
            raise AppError(
                "Browser is not started",
                kind=ErrorKind.SERVICE_UNAVAILABLE,
                source="browser-manager",
                retryable=False,
            )
        if self._active_page is None or self._active_page.is_closed():
            page = await self._context.new_page()
            # context 的 page 事件会把它登记为当前页
            self.focus(page)
        return self._active_page

    async def open(self, url: str) -> Page:
        """在当前页打开 URL"""
        await self.start()
        page = await self.active_page()
        logger.info(f"🌐 [BrowserManager] 打开 {url}")
        await page.goto(url, wait_until="domcontentloaded")
        return page

    async def close(self) -> None:
        """关闭浏览器和 Playwright 实例"""
        async with self._lock:
            if self._browser:
                try:
                    await self._browser.close()
                except Exception as e:
                    logger.debug(f"🌐 [BrowserManager] 关闭浏览器时出错: {e}")
                self._browser = None
                self._context = None
                self._pages = []
                self._active_page = None
            if self._playwright:
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.debug(f"🌐 [BrowserManager] 停止 Playwright 时出错: {e}")
                self._playwright = None
                logger.info("🌐 [BrowserManager] 浏览器已关闭")

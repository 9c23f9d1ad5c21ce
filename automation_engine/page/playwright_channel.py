"""
Playwright 页面通道

- 按需向页面注入辅助脚本（快照 / 稳定性指标）
- 快照：可见的可交互元素 + XPath + 边界框
- 稳定性：readyState、运行中的动画、与上次轮询相比的节点数增长
- 执行 Navigate / Click / Fill：XPath 优先，其次按描述匹配文本 / label / placeholder
"""
import asyncio
from typing import Any, Dict, List, Optional

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Locator, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from src.llm_gateway.errors import (
    AppError,
    ErrorKind,
    execution_error_result,
    missing_element_result,
    navigation_error_result,
)

from ..models import ClickCommand, Command, FillCommand, NavigateCommand
from .base import PageChannel, check_restricted_url
from .browser_manager import BrowserManager

HELPER_SCRIPT = r"""
() => {
  if (window.__browserPilot) return true;

  const RELEVANT = new Set(['BUTTON', 'A', 'INPUT', 'LABEL', 'SELECT', 'TEXTAREA', 'IMG', 'SVG']);
  const ATTRS = ['id', 'name', 'type', 'placeholder', 'aria-label', 'role', 'href'];

  const getXPath = (el) => {
    if (el.id && document.querySelectorAll('#' + CSS.escape(el.id)).length === 1) {
      return `//*[@id="${el.id}"]`;
    }
    const parts = [];
    while (el && el.nodeType === Node.ELEMENT_NODE) {
      let index = 1;
      let sibling = el.previousElementSibling;
      while (sibling) {
        if (sibling.tagName === el.tagName) index++;
        sibling = sibling.previousElementSibling;
      }
      parts.unshift(`${el.tagName.toLowerCase()}[${index}]`);
      el = el.parentElement;
    }
    return '/' + parts.join('/');
  };

  const visibleText = (el) => {
    const text = el.innerText || el.value || el.getAttribute('aria-label') || el.getAttribute('placeholder') || '';
    return String(text).replace(/\s+/g, ' ').trim().slice(0, 60);
  };

  const inViewport = (rect) =>
    rect.bottom > 0 && rect.right > 0 &&
    rect.top < window.innerHeight && rect.left < window.innerWidth;

  window.__browserPilot = {
    alive: true,
    previousCount: 0,

    stability(threshold) {
      const count = document.querySelectorAll('*').length;
      const previous = this.previousCount;
      this.previousCount = count;
      const animating = typeof document.getAnimations === 'function' &&
        document.getAnimations().some((a) => a.playState === 'running');
      const growing = count > previous + threshold;
      return {
        isLoading: document.readyState !== 'complete' || animating || growing,
        readyState: document.readyState,
        elementCount: count,
      };
    },

    snapshot(maxElements) {
      const results = [];
      let truncated = false;
      const scan = (node) => {
        if (truncated) return;
        if (node.shadowRoot) scan(node.shadowRoot);
        if (node instanceof Element) {
          const style = getComputedStyle(node);
          if (style.display === 'none' || style.visibility === 'hidden' || parseFloat(style.opacity) === 0) return;
          const rect = node.getBoundingClientRect();
          const text = visibleText(node);
          const leafText = node.children.length === 0 && text.length > 0;
          if (rect.width > 0 && rect.height > 0 && (RELEVANT.has(node.tagName) || node.isContentEditable || leafText)) {
            if (results.length >= maxElements) { truncated = true; return; }
            const attributes = {};
            for (const name of ATTRS) {
              const value = node.getAttribute(name);
              if (value) attributes[name] = value.slice(0, 80);
            }
            results.push({
              tag: node.tagName.toLowerCase(),
              xpath: getXPath(node),
              text,
              x: Math.round(rect.x),
              y: Math.round(rect.y),
              width: Math.round(rect.width),
              height: Math.round(rect.height),
              inViewport: inViewport(rect),
              attributes,
            });
          }
        }
        for (const child of node.children || []) scan(child);
      };
      if (document.body) scan(document.body);
      return {
        url: window.location.href,
        title: document.title,
        keyElements: results,
        isPartial: truncated,
      };
    },
  };
  return true;
}
"""

PING_SCRIPT = "() => Boolean(window.__browserPilot && window.__browserPilot.alive)"
STABILITY_SCRIPT = """
(threshold) => window.__browserPilot
  ? window.__browserPilot.stability(threshold)
  : {isLoading: document.readyState !== 'complete', readyState: document.readyState, elementCount: 0}
"""
SNAPSHOT_SCRIPT = "(maxElements) => window.__browserPilot.snapshot(maxElements)"
SELECT_OPTIONS_SCRIPT = "(el) => Array.from(el.options || []).map((o) => [o.value, o.text])"


class PlaywrightPageChannel(PageChannel):
    """
    基于 Playwright 的页面通道

    始终作用于 BrowserManager 当前聚焦的页面。
    """

    def __init__(
        self,
        browser_manager: BrowserManager,
        max_elements: int = 150,
        action_timeout_ms: int = 10000,
        navigate_timeout_ms: int = 30000,
    ):
        self.browser_manager = browser_manager
        self.max_elements = max_elements
        self.action_timeout_ms = action_timeout_ms
        self.navigate_timeout_ms = navigate_timeout_ms

    async def _page(self) -> Page:
        return await self.browser_manager.active_page()

    async def current_url(self) -> str:
        page = await self._page()
        return page.url

    async def ping(self, timeout: float = 1.0) -> bool:
        page = await self._page()
        try:
            return bool(await asyncio.wait_for(page.evaluate(PING_SCRIPT), timeout=timeout))
        except (asyncio.TimeoutError, PlaywrightError) as e:
            logger.debug(f"🏓 [PageChannel] ping 失败: {e}")
            return False

    async def ensure_ready(self) -> None:
        url = await self.current_url()
        check_restricted_url(url)

        if await self.ping():
            return

        logger.info(f"💉 [PageChannel] 注入页面辅助脚本: {url}")
        page = await self._page()
        try:
            await page.evaluate(HELPER_SCRIPT)
        except PlaywrightError as e:
            raise AppError(
                f"Failed to inject page helper: {e}",
                kind=ErrorKind.PAGE_LOAD,
                source="page-channel",
                original_error=e,
                data={"url": url},
            ) from e

        if not await self.ping(timeout=2.0):
            raise AppError(
                "Failed to verify page helper injection",
                kind=ErrorKind.PAGE_LOAD,
                source="page-channel",
                data={"url": url},
            )

    async def check_dom_stability(self, growth_threshold: int = 5) -> Dict[str, Any]:
        page = await self._page()
        return await page.evaluate(STABILITY_SCRIPT, growth_threshold)

    async def fast_snapshot(self, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        await self.ensure_ready()
        options = options or {}
        page = await self._page()
        snapshot = await page.evaluate(
            SNAPSHOT_SCRIPT,
            int(options.get("maxElements", self.max_elements)),
        )
        logger.debug(
            f"📸 [PageChannel] 快照完成: {len(snapshot.get('keyElements') or [])} 个元素"
            f"{' (截断)' if snapshot.get('isPartial') else ''}"
        )
        return snapshot

    async def execute_commands(self, commands: List[Command]) -> Dict[str, Any]:
        results: List[Dict[str, Any]] = []
        for command in commands:
            result = await self._execute_one(command)
            results.append(result)
            if not result.get("success"):
                return {"success": False, "commandResults": results, "error": result.get("error")}
        return {"success": True, "commandResults": results}

    async def wait_for_navigation(self, timeout: float = 10.0) -> bool:
        page = await self._page()
        try:
            await page.wait_for_load_state("load", timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            return False
        return True

    async def _execute_one(self, command: Command) -> Dict[str, Any]:
        page = await self._page()
        action = command.action.value

        if isinstance(command, NavigateCommand):
            try:
                await page.goto(
                    command.url,
                    wait_until="domcontentloaded",
                    timeout=self.navigate_timeout_ms,
                )
            except PlaywrightError as e:
                return navigation_error_result(e, command.url)
            return {"success": True, "action": action, "url": command.url, "navigated": True}

        if not isinstance(command, (ClickCommand, FillCommand)):
            return {
                "success": False,
                "action": action,
                "error": f"Unsupported command: {action}",
                "error_kind": ErrorKind.VALIDATION,
            }

        locator = await self._resolve(page, command)
        if locator is None:
            return missing_element_result(action, command.xpath or command.description or "")

        before_url = page.url
        try:
            if isinstance(command, ClickCommand):
                await locator.click(timeout=self.action_timeout_ms)
            else:
                tag = await locator.evaluate("(el) => el.tagName.toLowerCase()")
                if tag == "select":
                    await self._select_option(locator, command.value)
                else:
                    await locator.fill(command.value, timeout=self.action_timeout_ms)
        except AppError as e:
            return execution_error_result(e, action, xpath=command.xpath)
        except PlaywrightError as e:
            return execution_error_result(e, action, xpath=command.xpath)

        return {"success": True, "action": action, "navigated": page.url != before_url}

    async def _resolve(self, page: Page, command: Command) -> Optional[Locator]:
        """XPath 优先，其次按描述匹配"""
        candidates: List[Locator] = []
        if command.xpath:
            candidates.append(page.locator(f"xpath={command.xpath}"))

        description = command.description
        if description:
            if isinstance(command, FillCommand):
                candidates.extend([
                    page.get_by_label(description),
                    page.get_by_placeholder(description),
                    page.locator(f"[name='{description}']"),
                ])
            else:
                candidates.extend([
                    page.get_by_role("button", name=description),
                    page.get_by_role("link", name=description),
                ])
            candidates.append(page.get_by_text(description))

        for locator in candidates:
            try:
                if await locator.count() > 0:
                    return locator.first
            except PlaywrightError as e:
                logger.debug(f"🔍 [PageChannel] 定位失败，尝试下一种方式: {e}")
        return None

    async def _select_option(self, locator: Locator, value: str) -> None:
        """下拉框：按 value / 文本精确匹配，其次按文本包含匹配"""
        options = await locator.evaluate(SELECT_OPTIONS_SCRIPT)
        match = next((v for v, text in options if value in (v, text)), None)
        if match is None:
            lower = value.lower()
            match = next((v for v, text in options if lower in text.lower()), None)
        if match is None:
            raise AppError(
                f'Could not find option matching "{value}" in dropdown',
                kind=ErrorKind.ELEMENT_NOT_FOUND,
                source="page-channel",
            )
        await locator.select_option(value=match, timeout=self.action_timeout_ms)

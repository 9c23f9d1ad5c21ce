"""
BrowserPilot - 自然语言浏览器自动化
==========================================

将自然语言指令交给 LLM 规划为浏览器命令（navigate / click / fill），
在真实页面上执行，直到任务完成。

使用方法:
  python main.py "navigate to https://example.com"           # 执行一条指令
  python main.py "fill q with hello and click search" --url https://duckduckgo.com
  python main.py "search for playwright" --interactive       # 执行后继续接收后续指令
  python main.py --set-provider claude                       # 持久化 Provider 选择
  python main.py --test-connection --provider groq           # 测试 Provider 连接
"""
import argparse
import asyncio
import sys
from typing import Optional

from loguru import logger

from automation_engine import AutomationEngine, FlowResult, ProgressUpdate
from automation_engine.page.browser_manager import BrowserManager
from automation_engine.page.playwright_channel import PlaywrightPageChannel
from config import settings
from src.llm_gateway import AppError, LLMServiceManager, load_provider_config
from src.storage import SettingsStore


def setup_logging(level: Optional[str] = None) -> None:
    """配置日志输出"""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=level or settings.log_level,
    )
    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="1 day",
            retention="7 days",
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} - {message}",
        )


def print_progress(update: ProgressUpdate) -> None:
    print(f"[{update.progress:>3}%] {update.stage}: {update.message}")


def print_result(result: FlowResult) -> None:
    status = "✅" if result.success else "❌"
    print(f"\n{status} {result.completion_message}")
    if result.error:
        print(f"   error: {result.error}")


async def build_service_manager(store: SettingsStore, provider: Optional[str]) -> LLMServiceManager:
    """读取持久化设置并初始化 LLM 服务"""
    stored = await store.get(["features"])
    features = stored.get("features") or {}
    if "detailedApiLogging" in features:
        settings.detailed_api_logging = bool(features["detailedApiLogging"])

    config = await load_provider_config(provider, store)
    manager = LLMServiceManager()
    await manager.initialize(config.provider_id, config)
    return manager


async def set_provider(store: SettingsStore, provider: str) -> int:
    """切换并持久化 Provider"""
    try:
        config = await load_provider_config(provider, store)
    except AppError as e:
        print(f"❌ {e.user_message()}")
        return 1

    manager = LLMServiceManager()
    connected = await manager.change_provider(config.provider_id, config)
    if not connected:
        print(f"❌ 无法连接 {config.provider_id}，设置未保存")
        return 1

    await store.set({"provider": config.provider_id})
    print(f"✅ 已切换到 {config.provider_id}")
    return 0


async def test_connection(store: SettingsStore, provider: Optional[str]) -> int:
    """测试 Provider 连接"""
    try:
        config = await load_provider_config(provider, store)
    except AppError as e:
        print(f"❌ {e.user_message()}")
        return 1

    manager = LLMServiceManager()
    connected = await manager.initialize(config.provider_id, config)
    print(f"{'✅' if connected else '❌'} {config.provider_id} connection {'ok' if connected else 'failed'}")
    return 0 if connected else 1


async def run(args: argparse.Namespace) -> int:
    store = SettingsStore(settings.settings_store_path)

    if args.set_provider:
        return await set_provider(store, args.set_provider)
    if args.test_connection:
        return await test_connection(store, args.provider)
    if not args.prompt and not args.interactive:
        print("❌ 请提供指令，或使用 --interactive")
        return 2

    try:
        manager = await build_service_manager(store, args.provider)
    except AppError as e:
        logger.error(f"❌ 初始化 LLM 服务失败: {e.message}")
        print(f"❌ {e.user_message()}")
        return 1
    logger.info(f"🤖 使用 Provider: {manager.current_provider}")

    browser = BrowserManager(headless=args.headless or settings.browser_headless)
    try:
        await browser.open(args.url or settings.start_url)
        channel = PlaywrightPageChannel(
            browser,
            max_elements=settings.snapshot_max_elements,
            action_timeout_ms=settings.action_timeout_ms,
            navigate_timeout_ms=int(settings.navigate_timeout * 1000),
        )
        engine = AutomationEngine(channel, manager, progress_callback=print_progress)

        exit_code = 0
        prompt = args.prompt
        reset = args.reset
        while True:
            if prompt:
                result = await engine.process_prompt(prompt, reset_session=reset)
                print_result(result)
                exit_code = 0 if result.success else 1
                reset = False

            if not args.interactive:
                break
            prompt = (await asyncio.to_thread(input, "\n> ")).strip()
            if prompt in ("exit", "quit"):
                break
            if prompt == "reset":
                engine.session_manager.reset()
                prompt = ""
        return exit_code
    finally:
        await browser.close()


def main() -> None:
    """主入口"""
    parser = argparse.ArgumentParser(description="BrowserPilot - 自然语言浏览器自动化")
    parser.add_argument("prompt", nargs="?", help="自然语言指令")
    parser.add_argument("--url", type=str, help="执行前打开的页面")
    parser.add_argument("--provider", type=str, help="本次使用的 Provider (openai / groq / claude / meta / mock)")
    parser.add_argument("--reset", action="store_true", help="开始新会话")
    parser.add_argument("--headless", action="store_true", help="无界面模式运行浏览器")
    parser.add_argument("--interactive", action="store_true", help="执行后继续接收后续指令")
    parser.add_argument("--set-provider", type=str, metavar="ID", help="切换并保存 Provider")
    parser.add_argument("--test-connection", action="store_true", help="测试 Provider 连接")
    parser.add_argument("--log-level", type=str, help="日志级别")

    args = parser.parse_args()
    setup_logging(args.log_level)

    try:
        exit_code = asyncio.run(run(args))
    except (KeyboardInterrupt, EOFError):
        logger.info("Received keyboard interrupt")
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()

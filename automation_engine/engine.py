"""
自动化引擎 - 导航感知的编排器

Preparing → Planning → Executing(group i) → {Navigating, Recovering} → … → Complete | Failed

核心流程：
1. 获取页面上下文，确定是新会话还是续接
2. 规划：指令 → Plan
3. 按导航边界将命令切分为命令组，逐组顺序执行
4. 发生导航时执行握手：等待加载信号 → 重新就绪 → 等待稳定 → 刷新上下文 → 针对新页面重新规划
5. 计划未完成时请求续接，直到某次规划不再产生命令（有硬上限）
"""
import asyncio
import inspect
from typing import Any, Callable, List, Optional, Tuple

from loguru import logger

from config import settings
from src.llm_gateway.errors import AppError, ErrorKind

from .executor import CommandExecutor
from .models import (
    Command,
    CommandResult,
    FlowResult,
    FlowStage,
    NavigateCommand,
    PageContext,
    Plan,
    ProgressStep,
    ProgressUpdate,
    RecoveryOutcome,
    default_progress_steps,
)
from .page.base import PageChannel
from .planner import CommandPlanner, TextCompleter
from .prompts import format_continuation_prompt, format_post_navigation_prompt
from .recovery import RecoveryManager
from .session import SessionManager
from .stability import StabilityMonitor

ProgressCallback = Callable[[ProgressUpdate], Any]

NO_MORE_COMMANDS_MESSAGE = "Flow completed (no more commands needed)"


def split_at_navigation(commands: List[Command]) -> List[List[Command]]:
    """
    按导航边界切分命令：每个 Navigate 之后立即结束当前组，剩余部分成为最后一组

    导航之后的命令面对的是另一个 DOM，不能复用旧的定位。
    """
    groups: List[List[Command]] = []
    current: List[Command] = []
    for command in commands:
        current.append(command)
        if isinstance(command, NavigateCommand):
            groups.append(current)
            current = []
    if current:
        groups.append(current)
    return groups


class AutomationEngine:
    """
    自动化编排引擎

    同一时间只运行一个顶层流程：后到的指令在锁上排队，待前一个流程结束后
    基于更新后的会话继续执行。

    使用方式：
        engine = AutomationEngine(channel, service_manager)
        result = await engine.process_prompt("search for playwright on example.com")
    """

    def __init__(
        self,
        channel: PageChannel,
        llm: TextCompleter,
        session_manager: Optional[SessionManager] = None,
        progress_callback: Optional[ProgressCallback] = None,
        max_continuations: Optional[int] = None,
        snapshot_timeout: Optional[float] = None,
        navigation_signal_timeout: Optional[float] = None,
        stability_monitor: Optional[StabilityMonitor] = None,
    ):
        self.channel = channel
        self.session_manager = session_manager or SessionManager()
        self.progress_callback = progress_callback
        self.max_continuations = (
            settings.max_continuations if max_continuations is None else max_continuations
        )
        self.snapshot_timeout = (
            settings.snapshot_timeout if snapshot_timeout is None else snapshot_timeout
        )
        self.navigation_signal_timeout = (
            settings.navigation_signal_timeout
            if navigation_signal_timeout is None else navigation_signal_timeout
        )

        self.planner = CommandPlanner(llm)
        self.executor = CommandExecutor(
            channel,
            self.session_manager,
            click_fill_timeout=settings.click_fill_timeout,
            navigate_timeout=settings.navigate_timeout,
            navigation_group_timeout=settings.navigation_group_timeout,
            max_recovery_attempts=settings.max_recovery_attempts,
        )
        self.stability = stability_monitor or StabilityMonitor(
            channel,
            max_checks=settings.stability_max_checks,
            interval_ms=settings.stability_interval_ms,
            hard_timeout_ms=settings.stability_hard_timeout_ms,
            initial_delay_ms=settings.stability_initial_delay_ms,
            growth_threshold=settings.stability_growth_threshold,
        )
        self.recovery = RecoveryManager(self.planner, channel, self.session_manager)

        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        """是否有流程正在执行"""
        return self._lock.locked()

    async def process_prompt(
        self,
        prompt: str,
        reset_session: bool = False,
        continuation_commands: Optional[Plan] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> FlowResult:
        """
        处理一条顶层指令

        Args:
            prompt: 自然语言指令
            reset_session: 是否重置会话
            continuation_commands: 预置的后续计划（不调用 LLM）
            progress_callback: 本次流程的进度回调，缺省使用构造时传入的回调

        Returns:
            FlowResult：任何错误都会转换为 success=False，不会抛出
        """
        if self._lock.locked():
            logger.info("⏳ [Orchestrator] 已有流程在执行，新指令排队等待")

        async with self._lock:
            return await self._run_flow(
                prompt,
                reset_session,
                continuation_commands,
                progress_callback or self.progress_callback,
            )

    async def _run_flow(
        self,
        prompt: str,
        reset_session: bool,
        continuation_commands: Optional[Plan],
        callback: Optional[ProgressCallback],
    ) -> FlowResult:
        logger.info("🚀 [Orchestrator] ===== 开始流程 =====")
        logger.info(f"🚀 [Orchestrator] 指令: {prompt}")
        steps = default_progress_steps()

        try:
            await self._report(callback, FlowStage.PREPARING, "Getting page context...", 0, steps)
            page_context = await self._fetch_context()

            session, is_new_session = self.session_manager.start_or_resume(
                prompt, reset_session, page_context
            )
            initial_prompt = session.initial_prompt or prompt

            session_info = self.session_manager.snapshot(is_new_session)
            session_info.continuation_commands = continuation_commands

            await self._report(callback, FlowStage.PLANNING, "Sending request to LLM...", 25, steps)
            plan = await self.planner.plan(prompt, page_context, session_info)

            continuations = 0
            while True:
                steps = plan.progress_steps or default_progress_steps()

                error_command = plan.error_command
                if error_command is not None:
                    logger.warning(f"⚠️ [Orchestrator] 规划失败: {error_command.error_detail}")
                    await self._report(callback, FlowStage.ERROR, error_command.message, 0, steps)
                    return FlowResult(
                        success=False,
                        is_complete=False,
                        completion_message=error_command.message,
                        error=error_command.error_detail or error_command.message,
                        error_kind=ErrorKind.VALIDATION,
                    )

                if not plan.commands:
                    message = NO_MORE_COMMANDS_MESSAGE
                    if continuations == 0 and plan.completion_message:
                        message = plan.completion_message
                    logger.info(f"🏁 [Orchestrator] 没有更多命令，流程完成: {message}")
                    await self._report(callback, FlowStage.COMPLETE, message, 100, steps)
                    return FlowResult(success=True, is_complete=True, completion_message=message)

                await self._report(
                    callback,
                    FlowStage.EXECUTING,
                    f"Executing {len(plan.commands)} commands...",
                    75,
                    steps,
                )
                is_complete, message = await self._execute_plan(plan, initial_prompt, callback, steps)

                if is_complete:
                    message = message or "Commands executed successfully"
                    logger.info(f"🏁 [Orchestrator] ===== 流程完成 ===== {message}")
                    await self._report(callback, FlowStage.COMPLETE, message, 100, steps)
                    return FlowResult(success=True, is_complete=True, completion_message=message)

                if continuations >= self.max_continuations:
                    raise AppError(
                        f"Flow did not complete after {self.max_continuations} continuation rounds",
                        kind=ErrorKind.COMMAND_EXECUTION,
                        source="orchestrator",
                        data={"max_continuations": self.max_continuations},
                        retryable=False,
                    )
                continuations += 1

                logger.info(
                    f"🔁 [Orchestrator] 流程未完成，请求续接 "
                    f"({continuations}/{self.max_continuations})"
                )
                await self.stability.await_stable()
                page_context = await self._fetch_context()
                plan = await self.planner.plan(
                    format_continuation_prompt(initial_prompt),
                    page_context,
                    self.session_manager.snapshot(is_new_session=False),
                )

        except AppError as e:
            logger.error(f"❌ [Orchestrator] 流程失败 ({e.kind.value}): {e.message}")
            await self._report(callback, FlowStage.ERROR, f"Error: {e.user_message()}", 0, steps)
            return FlowResult(
                success=False,
                is_complete=False,
                completion_message=f"Flow failed: {e.user_message()}",
                error=e.message,
                error_kind=e.kind,
            )
        except Exception as e:
            logger.exception(f"❌ [Orchestrator] 流程异常: {e}")
            await self._report(callback, FlowStage.ERROR, f"Error: {e}", 0, steps)
            return FlowResult(
                success=False,
                is_complete=False,
                completion_message=f"Flow failed: {e}",
                error=str(e),
                error_kind=ErrorKind.UNKNOWN,
            )

    async def _execute_plan(
        self,
        plan: Plan,
        initial_prompt: str,
        callback: Optional[ProgressCallback],
        steps: List[ProgressStep],
    ) -> Tuple[bool, str]:
        """
        按命令组顺序执行计划

        Returns:
            (is_complete, completion_message)
        """
        groups = split_at_navigation(plan.commands)
        is_complete = plan.is_complete
        message = plan.completion_message
        logger.info(
            f"📋 [Orchestrator] {len(plan.commands)} 条命令切分为 {len(groups)} 组: "
            f"[{', '.join(str(len(g)) for g in groups)}]"
        )

        async def recover(
            command: Command,
            result: CommandResult,
            remaining_in_group: List[Command],
            remaining_groups: int,
        ) -> RecoveryOutcome:
            await self._report(
                callback,
                FlowStage.RECOVERING,
                f"Command {command.action.value} failed, looking for alternatives...",
                80,
                steps,
            )
            return await self.recovery.recover(command, result, remaining_in_group, remaining_groups)

        index = 0
        while index < len(groups):
            group = groups[index]
            remaining_groups = len(groups) - index - 1
            logger.info(f"⚙️ [Orchestrator] 执行第 {index + 1}/{len(groups)} 组 ({len(group)} 条命令)")

            result = await self.executor.execute_group(
                group,
                recover=recover,
                refine=self._refine,
                remaining_groups=remaining_groups,
            )
            if result.is_complete is not None:
                is_complete = result.is_complete
            if result.completion_message:
                message = result.completion_message

            if not result.success:
                failure = result.last_error
                logger.warning(
                    f"🛑 [Orchestrator] 第 {index + 1} 组执行失败，停止剩余 {remaining_groups} 组: "
                    f"{failure.error if failure else 'unknown error'}"
                )
                return False, message

            if result.needs_navigation:
                fresh = await self._handle_navigation(initial_prompt, callback, steps)
                fresh_commands = [] if fresh.error_command else fresh.commands
                if fresh_commands:
                    logger.info(
                        f"🧭 [Orchestrator] 新页面规划出 {len(fresh_commands)} 条命令，替换剩余计划"
                    )
                    groups = groups[:index + 1] + split_at_navigation(fresh_commands)
                    is_complete = fresh.is_complete
                    message = fresh.completion_message
                elif result.remaining_commands:
                    groups = (
                        groups[:index + 1]
                        + split_at_navigation(result.remaining_commands)
                        + groups[index + 1:]
                    )
            index += 1

        return is_complete, message

    async def _handle_navigation(
        self,
        initial_prompt: str,
        callback: Optional[ProgressCallback],
        steps: List[ProgressStep],
    ) -> Plan:
        """导航握手：等待加载 → 重新就绪 → 等待稳定 → 刷新上下文 → 针对新页面规划"""
        await self._report(callback, FlowStage.NAVIGATING, "Waiting for page to load...", 80, steps)

        loaded = await self.channel.wait_for_navigation(self.navigation_signal_timeout)
        if not loaded:
            logger.warning(
                f"⏱️ [Orchestrator] {self.navigation_signal_timeout}s 内未收到加载完成信号，继续执行"
            )

        await self.channel.ensure_ready()
        await self.stability.await_stable()
        page_context = await self._fetch_context()
        logger.info(f"🧭 [Orchestrator] 导航完成: {page_context.url}")

        return await self.planner.plan(
            format_post_navigation_prompt(initial_prompt, page_context.url),
            page_context,
            self.session_manager.snapshot(is_new_session=False),
        )

    async def _fetch_context(self) -> PageContext:
        """
        确保页面脚本就绪并提取页面上下文

        Raises:
            AppError: 受限页面（Permission）或快照超时（PageLoad）
        """
        await self.channel.ensure_ready()
        try:
            page_context = await asyncio.wait_for(
                self.channel.extract_page_context(),
                timeout=self.snapshot_timeout,
            )
        except asyncio.TimeoutError as e:
            raise AppError(
                f"Timed out getting page context after {self.snapshot_timeout}s",
                kind=ErrorKind.PAGE_LOAD,
                source="orchestrator",
                original_error=e,
            ) from e

        self.session_manager.update_page_context(page_context)
        logger.debug(
            f"📄 [Orchestrator] 页面上下文: url={page_context.url}, "
            f"elements={len(page_context.elements)}"
        )
        return page_context

    async def _refine(self, command: Command) -> Command:
        """基于最新页面上下文细化下一条命令的定位"""
        try:
            page_context = await self._fetch_context()
        except Exception as e:
            logger.warning(f"⚠️ [Orchestrator] 细化前刷新上下文失败，保留原命令: {e}")
            return command
        return await self.planner.refine_locator(command, page_context)

    async def _report(
        self,
        callback: Optional[ProgressCallback],
        stage: FlowStage,
        message: str,
        progress: int,
        steps: List[ProgressStep],
    ) -> None:
        if callback is None:
            return
        update = ProgressUpdate(stage=stage.value, message=message, progress=progress, steps=steps)
        try:
            result = callback(update)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"⚠️ [Orchestrator] 进度回调失败: {e}")

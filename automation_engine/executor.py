"""
命令执行引擎 - 逐条下发命令到页面通道

设计要点：
- 组内命令严格顺序执行，任何时刻只有一条命令在途
- 每条命令都有超时：Click/Fill 15s，Navigate 30s，整组预期导航时 60s
- Navigate 因页面跳转导致通道断开，视为 {success, navigated}
- 命令之间细化下一条命令的定位
- 失败时交给恢复流程，恢复命令替换组内剩余部分
"""
import asyncio
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from src.llm_gateway.errors import AppError, ErrorKind, execution_error_result

from .models import (
    Command,
    CommandResult,
    ErrorCommand,
    GroupResult,
    NavigateCommand,
    RecoveryOutcome,
)
from .page.base import PageChannel
from .session import SessionManager

# 页面跳转导致通道断开时的典型错误信息
CHANNEL_CLOSED_MARKERS = (
    "message channel closed",
    "receiving end does not exist",
    "target closed",
    "target page, context or browser has been closed",
    "execution context was destroyed",
    "frame was detached",
    "navigating frame was detached",
)

RecoverFn = Callable[[Command, CommandResult, List[Command], int], Awaitable[RecoveryOutcome]]
RefineFn = Callable[[Command], Awaitable[Command]]


def is_channel_closed_error(message: Optional[str]) -> bool:
    """错误信息是否表示页面通道因导航而断开"""
    if not message:
        return False
    lower = message.lower()
    return any(marker in lower for marker in CHANNEL_CLOSED_MARKERS)


def needs_refinement(command: Command) -> bool:
    """只有描述、没有 XPath 的命令才需要细化定位"""
    return bool(getattr(command, "description", None)) and not getattr(command, "xpath", None)


class CommandExecutor:
    """
    命令执行引擎

    使用方式：
        executor = CommandExecutor(channel, session_manager)
        group_result = await executor.execute_group(commands, recover=..., refine=...)
    """

    def __init__(
        self,
        channel: PageChannel,
        session_manager: SessionManager,
        click_fill_timeout: float = 15.0,
        navigate_timeout: float = 30.0,
        navigation_group_timeout: float = 60.0,
        max_recovery_attempts: int = 3,
    ):
        self.channel = channel
        self.session_manager = session_manager
        self.click_fill_timeout = click_fill_timeout
        self.navigate_timeout = navigate_timeout
        self.navigation_group_timeout = navigation_group_timeout
        self.max_recovery_attempts = max_recovery_attempts

    def timeout_for(self, command: Command, anticipate_navigation: bool = False) -> float:
        """命令的超时时间（秒）"""
        if isinstance(command, NavigateCommand):
            return self.navigation_group_timeout if anticipate_navigation else self.navigate_timeout
        return self.click_fill_timeout

    async def execute_command(
        self,
        command: Command,
        anticipate_navigation: bool = False,
    ) -> CommandResult:
        """
        执行单条命令

        Args:
            command: 命令
            anticipate_navigation: 整组预期发生导航（放宽 Navigate 超时）

        Returns:
            CommandResult
        """
        action = command.action.value

        if isinstance(command, ErrorCommand):
            return CommandResult(
                success=False,
                action=action,
                error=command.message,
                error_kind=ErrorKind.VALIDATION,
            )

        is_navigate = isinstance(command, NavigateCommand)
        timeout = self.timeout_for(command, anticipate_navigation)
        logger.debug(f"⚙️ [Executor] 执行 {command.to_dict()} (timeout={timeout}s)")

        try:
            response = await asyncio.wait_for(
                self.channel.execute_commands([command]),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"⏱️ [Executor] {action} 超时 ({timeout}s)")
            return CommandResult(
                success=False,
                action=action,
                error=f"Command {action} timed out after {timeout:.0f}s",
                error_kind=ErrorKind.TIMEOUT,
            )
        except Exception as e:
            if is_navigate and is_channel_closed_error(str(e)):
                logger.info(f"🧭 [Executor] 导航中通道断开，视为导航成功: {e}")
                return CommandResult(success=True, action=action, navigated=True)
            return CommandResult.from_dict(execution_error_result(e, action))

        command_results = (response or {}).get("commandResults") or []
        if command_results:
            result = CommandResult.from_dict(command_results[0])
        else:
            result = CommandResult(
                success=bool((response or {}).get("success")),
                action=action,
                error=(response or {}).get("error"),
            )

        if is_navigate:
            if not result.success and is_channel_closed_error(result.error):
                logger.info(f"🧭 [Executor] 导航中通道断开，视为导航成功: {result.error}")
                return CommandResult(success=True, action=action, navigated=True)
            if result.success and not result.navigated:
                result = CommandResult(success=True, action=action, navigated=True)

        if not result.success and result.error_kind is None:
            result = CommandResult(
                success=False,
                action=result.action or action,
                error=result.error,
                navigated=result.navigated,
                error_kind=ErrorKind.COMMAND_EXECUTION,
            )
        return result

    async def execute_group(
        self,
        group: List[Command],
        recover: Optional[RecoverFn] = None,
        refine: Optional[RefineFn] = None,
        remaining_groups: int = 0,
    ) -> GroupResult:
        """
        顺序执行一个命令组

        Args:
            group: 命令组
            recover: 失败恢复回调 (failed_command, result, remaining_in_group, remaining_groups)
            refine: 定位细化回调，在两条命令之间对下一条命令调用
            remaining_groups: 当前组之后还有多少组

        Returns:
            GroupResult
        """
        queue: List[Command] = list(group)
        anticipate_navigation = len(queue) > 1 and any(
            isinstance(c, NavigateCommand) for c in queue
        )
        group_result = GroupResult(success=True)
        recoveries = 0

        while queue:
            command = queue.pop(0)
            result = await self.execute_command(command, anticipate_navigation)
            self.session_manager.record(command, result)
            group_result.command_results.append(result)

            mark = "✓" if result.success else "✗"
            logger.info(
                f"⚙️ [Executor] {mark} {command.action.value}"
                + (f" | error={result.error}" if result.error else "")
            )

            if result.navigated:
                group_result.needs_navigation = True
                group_result.remaining_commands = queue
                if queue:
                    logger.debug(f"🧭 [Executor] 导航后仍有 {len(queue)} 条命令待新页面处理")
                break

            if not result.success:
                if recover is None or recoveries >= self.max_recovery_attempts:
                    group_result.success = False
                    break

                recoveries += 1
                outcome = await recover(command, result, list(queue), remaining_groups)
                if outcome.is_complete is not None:
                    group_result.is_complete = outcome.is_complete
                if outcome.completion_message:
                    group_result.completion_message = outcome.completion_message

                if not outcome.recovery_commands:
                    logger.info(f"🛑 [Executor] {command.action.value} 失败且无替代方案，停止当前组")
                    group_result.success = False
                    break

                logger.info(
                    f"🩹 [Executor] 使用 {len(outcome.recovery_commands)} 条恢复命令替换剩余 {len(queue)} 条"
                )
                queue = list(outcome.recovery_commands)
                continue

            if queue and refine is not None and needs_refinement(queue[0]):
                try:
                    queue[0] = await refine(queue[0])
                except AppError as e:
                    logger.warning(f"⚠️ [Executor] 定位细化失败，继续使用原命令: {e.message}")

        return group_result

"""
失败恢复 - 命令失败后请求替代方案

只有当计划中还有其他命令要执行时才触发（否则恢复没有意义，也不发起远程调用）。
返回的恢复命令替换当前组中尚未执行的部分，不会重试失败的命令本身。
"""
from typing import List

from loguru import logger

from .models import Command, CommandResult, ErrorCommand, RecoveryOutcome
from .page.base import PageChannel
from .planner import CommandPlanner
from .prompts import format_recovery_prompt
from .session import SessionManager


class RecoveryManager:
    """失败恢复管理器"""

    def __init__(
        self,
        planner: CommandPlanner,
        channel: PageChannel,
        session_manager: SessionManager,
    ):
        self.planner = planner
        self.channel = channel
        self.session_manager = session_manager

    async def recover(
        self,
        failed_command: Command,
        failure_result: CommandResult,
        remaining_in_group: List[Command],
        remaining_groups: int,
    ) -> RecoveryOutcome:
        """
        为失败的命令请求替代命令

        Args:
            failed_command: 失败的命令
            failure_result: 失败结果
            remaining_in_group: 当前组尚未执行的命令
            remaining_groups: 当前组之后还有多少组

        Returns:
            RecoveryOutcome

        Raises:
            AppError: Provider 调用失败
        """
        if not remaining_in_group and remaining_groups <= 0:
            logger.debug("🩹 [Recovery] 计划中已无后续命令，跳过恢复")
            return RecoveryOutcome()

        error_message = failure_result.error or "Unknown error"
        logger.info(
            f"🩹 [Recovery] {failed_command.action.value} 失败，请求替代方案: {error_message}"
        )

        try:
            page_context = await self.channel.extract_page_context()
        except Exception as e:
            logger.warning(f"⚠️ [Recovery] 刷新页面上下文失败，使用上一次的上下文: {e}")
            page_context = self.session_manager.session.last_page_context
        else:
            self.session_manager.update_page_context(page_context)

        plan = await self.planner.plan(
            format_recovery_prompt(failed_command, error_message),
            page_context,
            self.session_manager.snapshot(is_new_session=False),
        )

        recovery_commands = [c for c in plan.commands if not isinstance(c, ErrorCommand)]
        logger.info(f"🩹 [Recovery] 获得 {len(recovery_commands)} 条替代命令")

        return RecoveryOutcome(
            recovery_commands=recovery_commands,
            is_complete=plan.is_complete if recovery_commands else None,
            completion_message=plan.completion_message or None,
        )

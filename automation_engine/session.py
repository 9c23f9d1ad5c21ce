"""
Session Manager - 自动化会话管理

管理多轮自动化会话，包括：
- 会话创建与重置（新指令 / reset）
- 续接判断（是否为已有会话的后续指令）
- 只追加的动作历史
- 最近一次页面上下文
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from loguru import logger

from .models import ActionRecord, Command, CommandResult, PageContext, SessionInfo


@dataclass
class Session:
    """
    自动化会话

    Attributes:
        session_id: 会话唯一ID
        initial_prompt: 开启会话的指令
        action_history: 动作历史（只追加）
        last_page_context: 最近一次页面上下文
        created_at: 创建时间
    """
    session_id: str
    initial_prompt: Optional[str] = None
    action_history: List[ActionRecord] = field(default_factory=list)
    last_page_context: Optional[PageContext] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionManager:
    """
    会话管理器

    会话只存在于进程生命周期内，所有修改都发生在编排器的调用链上。
    """

    def __init__(self):
        self._session = Session(session_id=self._new_id())

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex[:12]

    @property
    def session(self) -> Session:
        return self._session

    @property
    def initial_prompt(self) -> Optional[str]:
        return self._session.initial_prompt

    def start_or_resume(
        self,
        prompt: str,
        reset_requested: bool = False,
        page_context: Optional[PageContext] = None,
    ) -> Tuple[Session, bool]:
        """
        开始新会话或续接已有会话

        Args:
            prompt: 当前指令
            reset_requested: 是否要求重置
            page_context: 当前页面上下文

        Returns:
            (session, is_new_session)
        """
        is_new_session = reset_requested or not self._session.initial_prompt
        if is_new_session:
            self._session = Session(
                session_id=self._new_id(),
                initial_prompt=prompt,
                last_page_context=page_context,
            )
            logger.info(
                f"🆕 [Session] 新会话 {self._session.session_id}: {prompt[:80]}"
            )
        else:
            self._session.last_page_context = page_context
            logger.info(
                f"🔄 [Session] 续接会话 {self._session.session_id}, "
                f"已有 {len(self._session.action_history)} 条动作记录"
            )
        return self._session, is_new_session

    def update_page_context(self, page_context: Optional[PageContext]) -> None:
        """整体替换最近一次页面上下文"""
        self._session.last_page_context = page_context

    def record(self, command: Command, result: CommandResult) -> ActionRecord:
        """追加一条动作记录"""
        record = ActionRecord(command=command, result=result)
        self._session.action_history.append(record)
        return record

    def snapshot(self, is_new_session: bool = False) -> SessionInfo:
        """返回只读的会话信息副本，用于格式化提示词"""
        return SessionInfo(
            initial_prompt=self._session.initial_prompt,
            action_history=tuple(self._session.action_history),
            is_new_session=is_new_session,
        )

    def reset(self) -> None:
        """清空会话"""
        logger.info(f"🗑️ [Session] 重置会话 {self._session.session_id}")
        self._session = Session(session_id=self._new_id())

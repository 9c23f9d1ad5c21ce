"""
自动化引擎数据模型

定义编排引擎的核心数据结构，包括：
- Command：浏览器命令（Navigate / Click / Fill / Error）
- CommandResult / ActionRecord：执行结果与历史记录
- PageContext / ElementDescriptor：页面上下文
- Plan / ProgressStep：规划结果
- GroupResult / RecoveryOutcome / FlowResult：执行、恢复与整体流程结果
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union
from urllib.parse import urlparse

from src.llm_gateway.errors import AppError, ErrorKind


class CommandAction(str, Enum):
    """命令类型"""
    NAVIGATE = "navigate"
    CLICK = "click"
    FILL = "fill"
    ERROR = "error"


class FlowStage(str, Enum):
    """流程阶段（用于进度回调）"""
    PREPARING = "preparing"
    PLANNING = "planning"
    EXECUTING = "executing"
    NAVIGATING = "navigating"
    RECOVERING = "recovering"
    COMPLETE = "complete"
    ERROR = "error"


# ============================================================
# Command
# ============================================================

@dataclass(frozen=True)
class NavigateCommand:
    """
    导航命令

    Attributes:
        url: 绝对 URL
    """
    url: str
    action: ClassVar[CommandAction] = CommandAction.NAVIGATE

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action.value, "url": self.url}


@dataclass(frozen=True)
class ClickCommand:
    """
    点击命令，xpath 与 description 至少提供一个

    Attributes:
        xpath: 元素 XPath
        description: 元素的自然语言描述
    """
    xpath: Optional[str] = None
    description: Optional[str] = None
    action: ClassVar[CommandAction] = CommandAction.CLICK

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action.value, "xpath": self.xpath, "description": self.description}


@dataclass(frozen=True)
class FillCommand:
    """
    填写命令，xpath 与 description 至少提供一个

    Attributes:
        xpath: 元素 XPath
        description: 元素的自然语言描述
        value: 要填写的值
    """
    xpath: Optional[str] = None
    description: Optional[str] = None
    value: str = ""
    action: ClassVar[CommandAction] = CommandAction.FILL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "xpath": self.xpath,
            "description": self.description,
            "value": self.value,
        }


@dataclass(frozen=True)
class ErrorCommand:
    """
    诊断用伪命令：规划结果无法解析或命令非法时产生，不会在页面上执行

    Attributes:
        message: 面向用户的说明
        error_detail: 错误详情
        raw_content: 截断后的原始响应
    """
    message: str
    error_detail: str = ""
    raw_content: str = ""
    action: ClassVar[CommandAction] = CommandAction.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "message": self.message,
            "errorDetail": self.error_detail,
            "rawContent": self.raw_content,
        }


Command = Union[NavigateCommand, ClickCommand, FillCommand, ErrorCommand]


def is_valid_url(url: Any) -> bool:
    """是否为语法合法的绝对 URL"""
    if not isinstance(url, str) or not url.strip():
        return False
    parsed = urlparse(url.strip())
    return bool(parsed.scheme) and bool(parsed.netloc)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def command_from_dict(data: Dict[str, Any]) -> Command:
    """
    从 LLM 返回的字典构造命令

    Raises:
        AppError: 命令类型未知、缺少定位信息或 URL 非法（Validation）
    """
    if not isinstance(data, dict):
        raise AppError(
            f"Command must be an object, got {type(data).__name__}",
            kind=ErrorKind.VALIDATION,
            source="command-parser",
            retryable=False,
        )

    action = str(data.get("action") or "").lower()

    if action == CommandAction.NAVIGATE.value:
        url = data.get("url")
        if not is_valid_url(url):
            raise AppError(
                f"Invalid URL for navigate command: {url!r}",
                kind=ErrorKind.VALIDATION,
                source="command-parser",
                data={"command": data},
                retryable=False,
            )
        return NavigateCommand(url=url.strip())

    if action in (CommandAction.CLICK.value, CommandAction.FILL.value):
        xpath = _optional_str(data.get("xpath"))
        description = _optional_str(data.get("description"))
        if xpath is None and description is None:
            raise AppError(
                f"{action} command requires an xpath or a description",
                kind=ErrorKind.VALIDATION,
                source="command-parser",
                data={"command": data},
                retryable=False,
            )
        if action == CommandAction.CLICK.value:
            return ClickCommand(xpath=xpath, description=description)
        value = data.get("value")
        return FillCommand(
            xpath=xpath,
            description=description,
            value="" if value is None else str(value),
        )

    if action == CommandAction.ERROR.value:
        return ErrorCommand(
            message=str(data.get("message") or "Unknown error"),
            error_detail=str(data.get("errorDetail") or ""),
            raw_content=str(data.get("rawContent") or ""),
        )

    raise AppError(
        f"Unknown command action: {data.get('action')!r}",
        kind=ErrorKind.VALIDATION,
        source="command-parser",
        data={"command": data},
        retryable=False,
    )


# ============================================================
# 执行结果与历史
# ============================================================

@dataclass(frozen=True)
class CommandResult:
    """
    单条命令的执行结果

    Attributes:
        success: 是否成功
        action: 命令类型
        error: 错误信息
        navigated: 是否引发了页面导航
        error_kind: 错误类型
    """
    success: bool
    action: str
    error: Optional[str] = None
    navigated: bool = False
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommandResult":
        kind = data.get("error_kind") or data.get("errorKind")
        if kind is not None and not isinstance(kind, ErrorKind):
            try:
                kind = ErrorKind(kind)
            except ValueError:
                kind = ErrorKind.UNKNOWN
        return cls(
            success=bool(data.get("success")),
            action=str(data.get("action") or ""),
            error=data.get("error"),
            navigated=bool(data.get("navigated", False)),
            error_kind=kind,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success, "action": self.action}
        if self.error is not None:
            result["error"] = self.error
        if self.navigated:
            result["navigated"] = True
        if self.error_kind is not None:
            result["error_kind"] = self.error_kind.value
        return result


@dataclass(frozen=True)
class ActionRecord:
    """
    会话历史中的一条记录

    Attributes:
        command: 执行的命令
        result: 执行结果
        timestamp: 记录时间（ISO 8601）
    """
    command: Command
    result: CommandResult
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


# ============================================================
# 页面上下文
# ============================================================

@dataclass(frozen=True)
class ElementLocation:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class ElementDescriptor:
    """
    页面上的可交互元素

    Attributes:
        xpath: 元素 XPath
        text: 可见文本
        type: 元素类型（标签名）
        location: 边界框
        visible: 是否在视口内
        attributes: 辅助属性（id / name / placeholder 等）
    """
    xpath: str
    text: str = ""
    type: str = ""
    location: Optional[ElementLocation] = None
    visible: bool = True
    attributes: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PageContext:
    """
    页面上下文，每次导航或稳定等待后整体替换

    Attributes:
        url: 当前页面 URL
        title: 页面标题
        elements: 可交互元素列表
        is_partial: 是否为截断的快照
    """
    url: str
    title: str = ""
    elements: Tuple[ElementDescriptor, ...] = ()
    is_partial: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any]) -> "PageContext":
        """将页面快照 {url, title, keyElements[...]} 转换为 PageContext"""
        elements = []
        for el in snapshot.get("keyElements") or []:
            attributes = {
                key: str(value)
                for key, value in (el.get("attributes") or {}).items()
                if value not in (None, "")
            }
            elements.append(ElementDescriptor(
                xpath=el.get("xpath", ""),
                text=el.get("text") or "",
                type=el.get("tag") or "",
                location=ElementLocation(
                    x=el.get("x", 0),
                    y=el.get("y", 0),
                    width=el.get("width", 0),
                    height=el.get("height", 0),
                ),
                visible=bool(el.get("inViewport", True)),
                attributes=attributes,
            ))
        return cls(
            url=snapshot.get("url", ""),
            title=snapshot.get("title") or "",
            elements=tuple(elements),
            is_partial=bool(snapshot.get("isPartial", False)),
        )


# ============================================================
# 规划
# ============================================================

@dataclass(frozen=True)
class ProgressStep:
    id: str
    label: str
    description: str = ""


def default_progress_steps() -> List[ProgressStep]:
    """LLM 未提供进度步骤时使用的默认步骤"""
    return [
        ProgressStep("preparing", "Preparing", "Getting page context and preparing"),
        ProgressStep("sending", "Sending", "Sending request to LLM"),
        ProgressStep("processing", "Processing", "Processing response from LLM"),
        ProgressStep("executing", "Executing", "Executing commands on the page"),
        ProgressStep("complete", "Complete", "All steps completed"),
    ]


@dataclass
class Plan:
    """
    规划结果

    Attributes:
        commands: 有序命令列表
        is_complete: 执行完这些命令后任务是否完成
        completion_message: 完成状态说明
        progress_steps: 进度步骤
    """
    commands: List[Command] = field(default_factory=list)
    is_complete: bool = False
    completion_message: str = ""
    progress_steps: List[ProgressStep] = field(default_factory=default_progress_steps)

    @property
    def error_command(self) -> Optional[ErrorCommand]:
        """规划整体失败时返回诊断伪命令（所有命令均为 ErrorCommand）"""
        if self.commands and all(isinstance(c, ErrorCommand) for c in self.commands):
            return self.commands[0]
        return None


@dataclass
class SessionInfo:
    """
    规划时使用的会话信息

    Attributes:
        initial_prompt: 会话的初始指令
        action_history: 历史记录快照
        is_new_session: 是否为新会话
        continuation_commands: 预先给定的后续计划，存在时不调用 LLM
    """
    initial_prompt: Optional[str] = None
    action_history: Tuple[ActionRecord, ...] = ()
    is_new_session: bool = True
    continuation_commands: Optional[Plan] = None


# ============================================================
# 执行、恢复与流程结果
# ============================================================

@dataclass
class GroupResult:
    """
    一个命令组的执行结果

    Attributes:
        success: 组内所有命令（含恢复命令）是否成功
        command_results: 各命令结果
        needs_navigation: 是否发生了导航，需要执行导航握手
        remaining_commands: 导航后尚未执行的命令（留给新页面）
        is_complete: 恢复过程给出的完成标记（可选）
        completion_message: 恢复过程给出的完成说明（可选）
    """
    success: bool
    command_results: List[CommandResult] = field(default_factory=list)
    needs_navigation: bool = False
    remaining_commands: List[Command] = field(default_factory=list)
    is_complete: Optional[bool] = None
    completion_message: Optional[str] = None

    @property
    def last_error(self) -> Optional[CommandResult]:
        for result in reversed(self.command_results):
            if not result.success:
                return result
        return None


@dataclass
class RecoveryOutcome:
    """
    失败恢复结果

    Attributes:
        recovery_commands: 替换当前组剩余部分的命令
        is_complete: 恢复计划的完成标记（可选）
        completion_message: 恢复计划的完成说明（可选）
    """
    recovery_commands: List[Command] = field(default_factory=list)
    is_complete: Optional[bool] = None
    completion_message: Optional[str] = None


@dataclass
class ProgressUpdate:
    """
    进度更新

    Attributes:
        stage: 当前阶段
        message: 说明
        progress: 百分比（0-100）
        steps: 进度步骤
    """
    stage: str
    message: str
    progress: int = 0
    steps: List[ProgressStep] = field(default_factory=default_progress_steps)


@dataclass
class FlowResult:
    """
    一次顶层指令的最终结果

    Attributes:
        success: 是否成功
        is_complete: 任务是否完成
        completion_message: 完成说明
        error: 错误信息
        error_kind: 错误类型
    """
    success: bool
    is_complete: bool
    completion_message: str = ""
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "success": self.success,
            "isComplete": self.is_complete,
            "completionMessage": self.completion_message,
        }
        if self.error is not None:
            result["error"] = self.error
        if self.error_kind is not None:
            result["errorKind"] = self.error_kind.value
        return result

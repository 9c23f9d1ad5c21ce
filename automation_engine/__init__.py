"""
自动化引擎 - 自然语言指令驱动的浏览器自动化

核心流程：指令 → LLM 规划 → 按导航切分命令组 → 顺序执行 → 失败恢复 → 续接
直到任务完成或不可恢复地失败。
"""
from .engine import AutomationEngine, split_at_navigation
from .models import (
    ClickCommand,
    CommandResult,
    ErrorCommand,
    FillCommand,
    FlowResult,
    NavigateCommand,
    PageContext,
    Plan,
    ProgressUpdate,
)
from .planner import CommandPlanner, parse_plan
from .session import SessionManager

__all__ = [
    "AutomationEngine",
    "split_at_navigation",
    "ClickCommand",
    "CommandResult",
    "ErrorCommand",
    "FillCommand",
    "FlowResult",
    "NavigateCommand",
    "PageContext",
    "Plan",
    "ProgressUpdate",
    "CommandPlanner",
    "parse_plan",
    "SessionManager",
]

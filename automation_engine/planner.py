"""
命令规划器 - 指令 + 页面上下文 + 历史 → Plan

设计要点：
- 调用 LLM 前组装完整提示词（续接说明、动作历史、页面元素）
- LLM 返回的是非结构化文本，依次尝试：直接解析 → 代码块提取 → 逐个 { 位置解码
- 解析失败不抛异常，降级为只包含一个诊断伪命令的 Plan
- 单条非法命令降级为诊断伪命令，不影响其余命令
"""
import dataclasses
import json
import re
from typing import Any, Dict, List, Optional, Protocol

from loguru import logger

from src.llm_gateway.errors import AppError

from .models import (
    ClickCommand,
    Command,
    ErrorCommand,
    FillCommand,
    PageContext,
    Plan,
    ProgressStep,
    SessionInfo,
    command_from_dict,
    default_progress_steps,
)
from .prompts import format_prompt_with_context, format_refinement_prompt, get_system_prompt

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")

PARSE_FAILURE_MESSAGE = "Failed to parse response. Please try again."
RAW_CONTENT_LIMIT = 500


class TextCompleter(Protocol):
    """LLM 文本补全接口（LLMServiceManager 满足该接口）"""

    async def complete(self, prompt: str, system_prompt: str) -> str:
        ...


def _as_plan_object(data: Any) -> Optional[Dict[str, Any]]:
    if isinstance(data, dict) and "commands" in data:
        return data
    return None


def _scan_for_commands_object(text: str) -> Optional[Dict[str, Any]]:
    """逐个 '{' 位置尝试解码，返回第一个包含 "commands" 的对象"""
    decoder = json.JSONDecoder()
    pos = text.find("{")
    while pos != -1:
        try:
            data, _ = decoder.raw_decode(text, pos)
        except ValueError:
            data = None
        found = _as_plan_object(data)
        if found is not None:
            return found
        pos = text.find("{", pos + 1)
    return None


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    从 LLM 文本中提取 Plan 对象

    顺序：直接解析 → ```json 代码块 → 第一个包含 "commands" 的对象
    不含 "commands" 键的对象不算 Plan，继续尝试下一种方式

    Returns:
        解析出的字典，全部失败时返回 None
    """
    candidates: List[str] = [text.strip()]

    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        found = _as_plan_object(data)
        if found is not None:
            return found

    return _scan_for_commands_object(text)


def _truncate(text: str, limit: int = RAW_CONTENT_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def error_plan(detail: str, raw_content: str = "") -> Plan:
    """解析失败时的诊断 Plan"""
    return Plan(
        commands=[ErrorCommand(
            message=PARSE_FAILURE_MESSAGE,
            error_detail=detail,
            raw_content=_truncate(raw_content),
        )],
        is_complete=False,
        completion_message="Error parsing response",
    )


def _parse_progress_steps(raw: Any) -> List[ProgressStep]:
    if not isinstance(raw, list) or not raw:
        return default_progress_steps()

    steps = []
    for item in raw:
        if isinstance(item, dict) and item.get("id") and item.get("label"):
            steps.append(ProgressStep(
                id=str(item["id"]),
                label=str(item["label"]),
                description=str(item.get("description") or ""),
            ))
    return steps or default_progress_steps()


def _parse_is_complete(raw: Any) -> bool:
    # 只有 true 或 "true" 视为完成，"false" 等字符串不算
    if isinstance(raw, str):
        return raw.strip().lower() == "true"
    return raw is True


def parse_plan(text: Optional[str]) -> Plan:
    """
    将 LLM 文本解析为 Plan，任何输入都不会抛出异常

    Args:
        text: LLM 返回的原始文本

    Returns:
        Plan
    """
    text = text or ""
    data = extract_json_object(text)
    if data is None:
        logger.warning(f"⚠️ [Planner] 响应中没有可解析的 Plan 对象: {_truncate(text, 200)!r}")
        return error_plan("No plan object with a 'commands' array found in response", text)

    raw_commands = data.get("commands", [])
    if not isinstance(raw_commands, list):
        logger.warning("⚠️ [Planner] 响应中的 commands 不是数组")
        return error_plan("'commands' is not an array", text)

    commands: List[Command] = []
    for raw in raw_commands:
        try:
            commands.append(command_from_dict(raw))
        except AppError as e:
            logger.warning(f"⚠️ [Planner] 非法命令: {e.message}")
            commands.append(ErrorCommand(
                message=f"Invalid command returned by the model: {e.message}",
                error_detail=e.message,
                raw_content=_truncate(json.dumps(raw, ensure_ascii=False, default=str)),
            ))

    return Plan(
        commands=commands,
        is_complete=_parse_is_complete(data.get("isComplete")),
        completion_message=str(data.get("completionMessage") or ""),
        progress_steps=_parse_progress_steps(data.get("progressSteps")),
    )


class CommandPlanner:
    """
    命令规划器

    使用方式：
        planner = CommandPlanner(service_manager)
        plan = await planner.plan("search for python", page_context, session_info)
    """

    def __init__(self, llm: TextCompleter):
        self.llm = llm

    async def plan(
        self,
        prompt: str,
        page_context: Optional[PageContext] = None,
        session_info: Optional[SessionInfo] = None,
    ) -> Plan:
        """
        生成执行计划

        Args:
            prompt: 指令文本
            page_context: 当前页面上下文
            session_info: 会话信息；带 continuation_commands 时直接使用，不调用 LLM

        Returns:
            Plan

        Raises:
            AppError: Provider 调用失败（重试耗尽或不可重试）
        """
        if session_info is not None and session_info.continuation_commands is not None:
            given = session_info.continuation_commands
            logger.debug(f"📋 [Planner] 使用预置的后续命令: {len(given.commands)} 条")
            return Plan(
                commands=list(given.commands),
                is_complete=given.is_complete,
                completion_message=given.completion_message,
                progress_steps=given.progress_steps or default_progress_steps(),
            )

        has_context = page_context is not None and bool(page_context.elements)
        system_prompt = get_system_prompt(has_context)
        user_prompt = format_prompt_with_context(prompt, page_context, session_info)

        logger.info(f"🧠 [Planner] 请求规划: {prompt[:80]}")
        logger.debug(f"📝 [Planner] 完整提示词:\n{user_prompt}")

        text = await self.llm.complete(user_prompt, system_prompt)
        plan = parse_plan(text)

        logger.info(
            f"📋 [Planner] 规划完成: commands={len(plan.commands)}, "
            f"is_complete={plan.is_complete}"
        )
        for i, command in enumerate(plan.commands):
            logger.debug(f"📋 [Planner] Command[{i}]: {command.to_dict()}")
        return plan

    async def refine_locator(self, command: Command, page_context: Optional[PageContext]) -> Command:
        """
        为只有描述、没有 XPath 的 Click / Fill 命令请求精确 XPath

        找不到或调用失败时返回原命令。
        """
        if not isinstance(command, (ClickCommand, FillCommand)):
            return command
        if command.xpath or not command.description or page_context is None:
            return command

        refinement = format_prompt_with_context(format_refinement_prompt(command), page_context)
        try:
            text = await self.llm.complete(refinement, get_system_prompt(True))
        except AppError as e:
            logger.warning(f"⚠️ [Planner] 定位细化失败，保留原命令: {e.message}")
            return command

        for candidate in parse_plan(text).commands:
            xpath = getattr(candidate, "xpath", None)
            if xpath:
                logger.info(f"🔍 [Planner] 细化定位 \"{command.description}\" -> {xpath}")
                return dataclasses.replace(command, xpath=xpath)

        logger.debug(f"🔍 [Planner] 未能细化 \"{command.description}\"，保留原命令")
        return command

"""
提示词模板

- 系统提示词（有 / 无页面上下文两种）
- 用户提示词格式化：续接说明 + 动作历史 + 页面元素列表
- 恢复 / 续接 / 导航后 / 定位细化 提示词
"""
from typing import Optional

from .models import (
    ActionRecord,
    ClickCommand,
    Command,
    ErrorCommand,
    FillCommand,
    NavigateCommand,
    PageContext,
    SessionInfo,
)

_BASE_SYSTEM_PROMPT = """You are BrowserPilot, a browser automation assistant.
Your task is to convert natural language instructions into structured browser commands.
ALWAYS respond with VALID JSON in the following format:

{
  "commands": [
    {"action": "navigate", "url": "https://example.com"},
    {"action": "click", "xpath": "XPath of the element to click"},
    {"action": "fill", "xpath": "XPath of the input element", "value": "Text to fill in"}
  ],
  "isComplete": true,
  "completionMessage": "Short explanation of the completion status",
  "progressSteps": [
    {"id": "executing", "label": "Executing", "description": "What is being done"}
  ]
}

Only use these three action types: "navigate", "click" and "fill".

Always include "isComplete":
- true when the commands fully satisfy the user's request
- false when more steps will be needed after these commands run (for example after a navigation)
Include a "completionMessage" describing what remains if the flow is incomplete.

For follow-up instructions you will receive the initial instruction, the list of previously
executed actions with their results, and the current state of the page. Use the history to
avoid repeating failed actions and try alternative approaches when errors occur."""

_WITH_CONTEXT_SUFFIX = """

You will also receive the interactive elements of the current page. Each element has a
number in brackets, its type, its text, its XPath and its location (x, y, width, height).

You MUST identify elements by XPath and use the XPath EXACTLY as listed, for example:
{"action": "click", "xpath": "//*[@id='login-button']"}

If no listed element matches, return a command with a description instead:
{"action": "click", "description": "Clear button in search form"}

For navigation commands provide the full absolute URL."""

_WITHOUT_CONTEXT_SUFFIX = """

Without XPath information, describe the target element in text instead:
{"action": "click", "description": "Login button"}
{"action": "fill", "description": "Email field in the login form", "value": "user@example.com"}

Elements will be matched by their visible text, label or placeholder."""

_SYSTEM_PROMPT_FOOTER = """

Escape characters in JSON strings properly.
If you cannot understand the request, return an empty commands array."""


def get_system_prompt(has_page_context: bool = False) -> str:
    """构造系统提示词"""
    suffix = _WITH_CONTEXT_SUFFIX if has_page_context else _WITHOUT_CONTEXT_SUFFIX
    return _BASE_SYSTEM_PROMPT + suffix + _SYSTEM_PROMPT_FOOTER


def format_action_record(index: int, record: ActionRecord) -> str:
    """将一条动作记录格式化为一行（失败时附带错误行）"""
    command = record.command
    mark = "✓" if record.result.success else "✗"
    line = f"[{index}] {mark} Action: {command.action.value}, "

    if isinstance(command, NavigateCommand):
        line += f'URL: "{command.url}"\n'
    elif isinstance(command, ClickCommand):
        line += (
            f'XPath: "{command.xpath or "N/A"}", '
            f'Description: "{command.description or "N/A"}"\n'
        )
    elif isinstance(command, FillCommand):
        line += (
            f'XPath: "{command.xpath or "N/A"}", '
            f'Description: "{command.description or "N/A"}", '
            f'Value: "{command.value}"\n'
        )
    elif isinstance(command, ErrorCommand):
        line += f'Message: "{command.message}"\n'

    if not record.result.success and record.result.error:
        line += f"    Error: {record.result.error}\n"
    return line


def format_page_context(page_context: PageContext) -> str:
    """将页面上下文格式化为编号元素列表（从 1 开始）"""
    text = (
        "\n\nCurrent page information:\n"
        f"URL: {page_context.url}\n"
        f"Title: {page_context.title}\n"
    )

    if page_context.elements:
        text += "\nInteractive elements on the page:\n"
        for index, element in enumerate(page_context.elements, start=1):
            text += (
                f"[{index}] Type: {element.type}, "
                f'Text: "{element.text}", '
                f'XPath: "{element.xpath}"\n'
            )
            if element.attributes:
                attrs = ", ".join(f'{key}: "{value}"' for key, value in element.attributes.items())
                text += f"    Attributes: {attrs}\n"
            if element.location is not None:
                loc = element.location
                text += (
                    f"    Location: x={loc.x}, y={loc.y}, "
                    f"width={loc.width}, height={loc.height}\n"
                )

    if page_context.is_partial:
        text += "\nNote: the element list was truncated; only the most relevant elements are shown."
    return text


def format_prompt_with_context(
    prompt: str,
    page_context: Optional[PageContext] = None,
    session_info: Optional[SessionInfo] = None,
) -> str:
    """
    组装发送给 LLM 的用户提示词

    Args:
        prompt: 当前指令
        page_context: 页面上下文
        session_info: 会话信息；续接会话时附加初始指令与动作历史

    Returns:
        str: 完整的用户提示词
    """
    user_prompt = prompt

    if session_info and session_info.initial_prompt and not session_info.is_new_session:
        user_prompt = (
            "This is a continuation of your previous tasks. The initial instruction was:\n"
            f'"{session_info.initial_prompt}"\n\n'
            f"My new instruction is:\n{prompt}\n"
        )
        if session_info.action_history:
            user_prompt += "\nPreviously completed actions:\n"
            for index, record in enumerate(session_info.action_history, start=1):
                user_prompt += format_action_record(index, record)

    if page_context is not None:
        user_prompt += format_page_context(page_context)

    return user_prompt


def format_recovery_prompt(command: Command, error_message: str) -> str:
    """命令失败后请求替代方案"""
    return (
        f'The previous command ({command.action.value}) failed with error: "{error_message}".\n'
        "Please provide alternative commands to achieve the same goal.\n"
        "Consider different ways to identify the element or alternative elements "
        "that would accomplish the same task."
    )


def format_continuation_prompt(initial_prompt: str) -> str:
    """计划未完成时请求后续步骤"""
    return (
        f'Continue the process of "{initial_prompt}". What are the next steps needed?\n'
        "Based on the current page state and actions taken so far, provide the next set "
        "of commands to complete the user's request."
    )


def format_post_navigation_prompt(initial_prompt: str, url: str) -> str:
    """导航完成后针对新页面重新规划"""
    return (
        f"The page has navigated to {url}. Continue on the current page with the task: "
        f'"{initial_prompt}".\n'
        "Using the interactive elements of this page, provide the remaining commands. "
        "Do not repeat the navigation that was just completed."
    )


def format_refinement_prompt(command: Command) -> str:
    """请求为仅有描述的命令给出精确 XPath"""
    description = getattr(command, "description", "") or ""
    return (
        f'I need to {command.action.value} the element described as: "{description}".\n'
        "Please analyze the interactive elements list to provide the exact XPath for this "
        "element from the page context.\n"
        "If you find a matching element in the interactive elements list, use its exact XPath.\n"
        "If not, suggest a description that might be better for finding the element."
    )

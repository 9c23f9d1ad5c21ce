"""
Mock LLM Service - 离线模拟服务

不发起任何网络请求，通过简单的模式匹配从指令中推导命令，
并以 JSON 文本返回，走与真实 Provider 完全相同的解析路径。

支持的指令模式：
- navigate to <url>
- fill <field> with <value>
- click <element>
"""
import asyncio
import json
import re
import time
import uuid
from typing import Any, Dict, List

from loguru import logger

from .gateway import LLMResponse

NAVIGATE_PATTERN = re.compile(r"navigate to (https?://[^\s,]+)")
FILL_PATTERN = re.compile(
    r"fill (?:the )?(?:\"([^\"]+)\"|'([^']+)'|(\w+))(?:\s+(?:field|input|form))?"
    r" with (?:\"([^\"]+)\"|'([^']+)'|([^\s,.]+))"
)
CLICK_PATTERN = re.compile(
    r"click(?:\s+on)?(?:\s+the)?\s+(?:\"([^\"]+)\"|'([^']+)'|([^\s,.]+)(?:\s+(?:button|link))?)"
)

# 编排器生成的跟进类提示词，模拟服务对其不再产出命令
FOLLOW_UP_MARKERS = (
    "continue the process of",
    "the previous command (",
    "i need to ",
    "the page has navigated",
)

_PAGE_SECTION = "\n\nCurrent page information:"
_NEW_INSTRUCTION = "My new instruction is:\n"
_HISTORY_SECTION = "\nPreviously completed actions:"


def extract_instruction(prompt: str) -> str:
    """从已格式化的提示词中取出用户指令部分（去掉历史与页面信息）"""
    text = prompt.split(_PAGE_SECTION, 1)[0]
    if _NEW_INSTRUCTION in text:
        text = text.split(_NEW_INSTRUCTION, 1)[1]
        text = text.split(_HISTORY_SECTION, 1)[0]
    return text.strip()


def derive_commands(instruction: str) -> List[Dict[str, Any]]:
    """按固定模式从指令中推导命令"""
    lower = instruction.lower()
    commands: List[Dict[str, Any]] = []

    navigate = NAVIGATE_PATTERN.search(lower)
    if navigate:
        commands.append({"action": "navigate", "url": navigate.group(1)})

    for match in FILL_PATTERN.finditer(lower):
        field_name = match.group(1) or match.group(2) or match.group(3)
        value = match.group(4) or match.group(5) or match.group(6)
        commands.append({
            "action": "fill",
            "xpath": None,
            "description": field_name,
            "value": value,
        })

    for match in CLICK_PATTERN.finditer(lower):
        description = match.group(1) or match.group(2) or match.group(3)
        commands.append({"action": "click", "xpath": None, "description": description})

    return commands


class MockLLMService:
    """
    模拟 LLM 服务

    与 LLMGateway 暴露相同的 generate / test_connection / get_stats 接口。
    """

    provider = "mock"
    model = "mock-model"

    def __init__(self, delay_ms: int = 500):
        self.delay_ms = delay_ms
        self._request_count = 0
        logger.info(f"🔧 [MockLLM] initialized with delay {delay_ms}ms")

    async def generate(self, prompt: str, system_prompt: str = "") -> LLMResponse:
        """根据指令生成模拟响应"""
        request_id = str(uuid.uuid4())[:8]
        self._request_count += 1
        start_time = time.perf_counter()

        if self.delay_ms > 0:
            await asyncio.sleep(self.delay_ms / 1000)

        instruction = extract_instruction(prompt)
        if instruction.lower().startswith(FOLLOW_UP_MARKERS):
            commands: List[Dict[str, Any]] = []
            result = {
                "commands": commands,
                "isComplete": True,
                "completionMessage": "Mock service has no further commands",
            }
        else:
            commands = derive_commands(instruction)
            result = {
                "commands": commands,
                "isComplete": len(commands) > 0,
                "completionMessage": (
                    "Mock service has generated commands based on your request"
                    if commands
                    else "Couldn't understand your request. Please try again with different wording."
                ),
            }

        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"✅ [MockLLM][{request_id}] {len(commands)} commands | latency={latency_ms:.0f}ms"
        )
        return LLMResponse(
            content=json.dumps(result, ensure_ascii=False),
            model=self.model,
            provider=self.provider,
            request_id=request_id,
            latency_ms=latency_ms,
        )

    async def test_connection(self) -> bool:
        """模拟服务始终可用"""
        return True

    def get_stats(self) -> Dict:
        return {
            "provider": self.provider,
            "model": self.model,
            "total_requests": self._request_count,
        }

"""
automation_engine 规划相关单元测试

测试内容：
- 数据模型（Command / CommandResult / PageContext）
- Plan 解析（直接 JSON / 代码块 / 内嵌对象 / 解析失败）
- CommandPlanner（提示词组装、预置命令、定位细化）
- 提示词模板
- SessionManager
"""
import json

import pytest

from conftest import ScriptedLLM, element


# ============================================================
# 数据模型测试
# ============================================================

class TestModels:
    """测试命令与页面上下文模型"""

    def test_command_from_dict(self):
        from automation_engine.models import ClickCommand, FillCommand, NavigateCommand, command_from_dict

        assert command_from_dict({"action": "navigate", "url": "https://x.test"}) == NavigateCommand("https://x.test")
        assert command_from_dict({"action": "CLICK", "xpath": "//a"}) == ClickCommand(xpath="//a")
        fill = command_from_dict({"action": "fill", "description": "Email", "value": 42})
        assert fill == FillCommand(description="Email", value="42")

    def test_invalid_commands(self):
        from automation_engine.models import command_from_dict
        from src.llm_gateway.errors import AppError, ErrorKind

        for data in (
            {"action": "navigate", "url": "example.com"},
            {"action": "click", "xpath": "", "description": "  "},
            {"action": "scroll"},
            "click",
        ):
            with pytest.raises(AppError) as exc_info:
                command_from_dict(data)
            assert exc_info.value.kind == ErrorKind.VALIDATION

    def test_command_result_from_dict(self):
        from automation_engine.models import CommandResult
        from src.llm_gateway.errors import ErrorKind

        result = CommandResult.from_dict({
            "success": False,
            "action": "click",
            "error": "No element found",
            "error_kind": "element_not_found",
        })
        assert result.error_kind == ErrorKind.ELEMENT_NOT_FOUND
        assert result.to_dict()["error_kind"] == "element_not_found"
        assert CommandResult.from_dict({"success": False, "errorKind": "bogus"}).error_kind == ErrorKind.UNKNOWN

    def test_page_context_from_snapshot(self):
        from automation_engine.models import PageContext

        context = PageContext.from_snapshot({
            "url": "https://x.test",
            "title": "X",
            "keyElements": [element("//*[@id='q']", "Search", tag="input", name="q", placeholder="")],
            "isPartial": True,
        })
        assert context.url == "https://x.test"
        assert context.is_partial is True
        assert context.elements[0].type == "input"
        assert context.elements[0].attributes == {"name": "q"}
        assert context.elements[0].location.width == 100

    def test_flow_result_to_dict(self):
        from automation_engine.models import FlowResult
        from src.llm_gateway.errors import ErrorKind

        result = FlowResult(False, False, "Flow failed", error="boom", error_kind=ErrorKind.TIMEOUT)
        assert result.to_dict() == {
            "success": False,
            "isComplete": False,
            "completionMessage": "Flow failed",
            "error": "boom",
            "errorKind": "timeout_error",
        }


# ============================================================
# Plan 解析测试
# ============================================================

class TestParsePlan:
    """测试 LLM 文本 → Plan"""

    def test_direct_json(self):
        from automation_engine.models import NavigateCommand
        from automation_engine.planner import parse_plan

        plan = parse_plan(json.dumps({
            "commands": [{"action": "navigate", "url": "https://x.test"}],
            "isComplete": True,
            "completionMessage": "done",
            "progressSteps": [{"id": "nav", "label": "Navigate"}],
        }))
        assert plan.commands == [NavigateCommand("https://x.test")]
        assert plan.is_complete is True
        assert plan.completion_message == "done"
        assert [s.id for s in plan.progress_steps] == ["nav"]

    def test_fenced_json(self):
        from automation_engine.planner import parse_plan

        text = 'Sure!\n```json\n{"commands": [{"action": "click", "xpath": "//b"}], "isComplete": false}\n```\n'
        plan = parse_plan(text)
        assert len(plan.commands) == 1
        assert plan.is_complete is False
        assert len(plan.progress_steps) == 5

    def test_embedded_object(self):
        from automation_engine.planner import parse_plan

        text = 'Here you go: {"commands": [{"action": "fill", "xpath": "//i", "value": "v"}]} hope it helps'
        plan = parse_plan(text)
        assert plan.commands[0].value == "v"

    def test_embedded_object_with_braces_in_prose(self):
        from automation_engine.models import NavigateCommand
        from automation_engine.planner import parse_plan

        before = (
            'I considered {option A}. Plan: '
            '{"commands":[{"action":"navigate","url":"https://x.test"}],"isComplete":true}'
        )
        plan = parse_plan(before)
        assert plan.commands == [NavigateCommand("https://x.test")]
        assert plan.is_complete is True

        after = (
            '{"commands":[{"action":"navigate","url":"https://x.test"}],"isComplete":false}'
            ' Note: use {xpath} next time'
        )
        plan = parse_plan(after)
        assert plan.commands == [NavigateCommand("https://x.test")]
        assert plan.error_command is None

    def test_object_without_commands_gives_error_plan(self):
        from automation_engine.planner import PARSE_FAILURE_MESSAGE, parse_plan

        for text in (
            '{"error": "model refused"}',
            '```json\n{"answer": 42}\n```',
            'Sorry {not json} and {"reason": "no"}',
        ):
            plan = parse_plan(text)
            assert plan.error_command is not None, text
            assert plan.error_command.message == PARSE_FAILURE_MESSAGE
            assert plan.is_complete is False

    def test_non_plan_object_skipped_for_later_plan(self):
        from automation_engine.models import ClickCommand
        from automation_engine.planner import parse_plan

        text = 'Context {"page": "home"} then {"commands": [{"action": "click", "xpath": "//a"}]}'
        assert parse_plan(text).commands == [ClickCommand(xpath="//a")]

    def test_is_complete_string_values(self):
        from automation_engine.planner import parse_plan

        assert parse_plan('{"commands": [], "isComplete": "false"}').is_complete is False
        assert parse_plan('{"commands": [], "isComplete": "TRUE"}').is_complete is True
        assert parse_plan('{"commands": [], "isComplete": 1}').is_complete is False
        assert parse_plan('{"commands": []}').is_complete is False

    def test_malformed_text_gives_error_plan(self):
        from automation_engine.models import ErrorCommand
        from automation_engine.planner import PARSE_FAILURE_MESSAGE, parse_plan

        raw = "I cannot help with that " * 50
        plan = parse_plan(raw)

        error = plan.error_command
        assert isinstance(error, ErrorCommand)
        assert error.message == PARSE_FAILURE_MESSAGE
        assert error.raw_content.endswith("...")
        assert len(error.raw_content) == 503
        assert plan.is_complete is False

    def test_commands_not_a_list(self):
        from automation_engine.planner import parse_plan

        assert parse_plan('{"commands": "navigate"}').error_command is not None
        assert parse_plan(None).error_command is not None

    def test_invalid_command_becomes_error_command(self):
        from automation_engine.models import ClickCommand, ErrorCommand
        from automation_engine.planner import parse_plan

        plan = parse_plan(json.dumps({"commands": [
            {"action": "navigate", "url": "not a url"},
            {"action": "click", "xpath": "//ok"},
        ]}))
        assert isinstance(plan.commands[0], ErrorCommand)
        assert plan.commands[1] == ClickCommand(xpath="//ok")
        assert plan.error_command is None

    def test_empty_commands(self):
        from automation_engine.planner import parse_plan

        plan = parse_plan('{"commands": [], "isComplete": true}')
        assert plan.commands == []
        assert plan.error_command is None


# ============================================================
# CommandPlanner 测试
# ============================================================

class TestCommandPlanner:
    """测试 CommandPlanner"""

    @pytest.mark.asyncio
    async def test_plan_sends_context(self):
        from automation_engine.models import PageContext
        from automation_engine.planner import CommandPlanner

        llm = ScriptedLLM([{"commands": [{"action": "click", "xpath": "//*[@id='go']"}], "isComplete": True}])
        context = PageContext.from_snapshot({
            "url": "https://x.test",
            "keyElements": [element("//*[@id='go']", "Go")],
        })

        plan = await CommandPlanner(llm).plan("click go", context)

        assert plan.commands[0].xpath == "//*[@id='go']"
        assert llm.prompts[0].startswith("click go\n\nCurrent page information:")
        assert "XPath EXACTLY" in llm.system_prompts[0]

    @pytest.mark.asyncio
    async def test_system_prompt_without_elements(self):
        from automation_engine.planner import CommandPlanner

        llm = ScriptedLLM()
        await CommandPlanner(llm).plan("open example")

        assert "describe the target element" in llm.system_prompts[0]
        assert llm.prompts[0] == "open example"

    @pytest.mark.asyncio
    async def test_continuation_commands_skip_llm(self):
        from automation_engine.models import ClickCommand, Plan, SessionInfo
        from automation_engine.planner import CommandPlanner

        llm = ScriptedLLM()
        given = Plan(commands=[ClickCommand(xpath="//a")], is_complete=True, completion_message="given")

        plan = await CommandPlanner(llm).plan(
            "anything",
            session_info=SessionInfo(continuation_commands=given),
        )

        assert plan.commands == [ClickCommand(xpath="//a")]
        assert plan.completion_message == "given"
        assert llm.prompts == []

    @pytest.mark.asyncio
    async def test_provider_errors_propagate(self):
        from automation_engine.planner import CommandPlanner
        from src.llm_gateway.errors import AppError, ErrorKind

        llm = ScriptedLLM([AppError("bad key", kind=ErrorKind.AUTHENTICATION, retryable=False)])
        with pytest.raises(AppError):
            await CommandPlanner(llm).plan("open example")

    @pytest.mark.asyncio
    async def test_refine_locator(self):
        from automation_engine.models import FillCommand, PageContext
        from automation_engine.planner import CommandPlanner

        llm = ScriptedLLM([{"commands": [{"action": "fill", "xpath": "//*[@id='email']", "value": "x"}]}])
        context = PageContext.from_snapshot({
            "url": "https://x.test",
            "keyElements": [element("//*[@id='email']", "", tag="input")],
        })
        command = FillCommand(description="Email field", value="me@x.test")

        refined = await CommandPlanner(llm).refine_locator(command, context)

        assert refined.xpath == "//*[@id='email']"
        assert refined.value == "me@x.test"
        assert 'described as: "Email field"' in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_refine_keeps_command_when_nothing_found(self):
        from automation_engine.models import ClickCommand, PageContext
        from automation_engine.planner import CommandPlanner
        from src.llm_gateway.errors import AppError, ErrorKind

        command = ClickCommand(description="Submit")
        context = PageContext(url="https://x.test")

        llm = ScriptedLLM([{"commands": [{"action": "click", "description": "Send"}]}])
        assert await CommandPlanner(llm).refine_locator(command, context) is command

        failing = ScriptedLLM([AppError("down", kind=ErrorKind.SERVER)])
        assert await CommandPlanner(failing).refine_locator(command, context) is command

        with_xpath = ClickCommand(xpath="//b", description="Submit")
        assert await CommandPlanner(ScriptedLLM()).refine_locator(with_xpath, context) is with_xpath


# ============================================================
# 提示词测试
# ============================================================

class TestPrompts:
    """测试提示词模板"""

    def test_continuation_framing_with_history(self):
        from automation_engine.models import (
            ActionRecord,
            ClickCommand,
            CommandResult,
            NavigateCommand,
            SessionInfo,
        )
        from automation_engine.prompts import format_prompt_with_context

        history = (
            ActionRecord(NavigateCommand("https://x.test"), CommandResult(True, "navigate", navigated=True)),
            ActionRecord(ClickCommand(xpath="//missing"), CommandResult(False, "click", error="No element found")),
        )
        info = SessionInfo(initial_prompt="log in", action_history=history, is_new_session=False)

        text = format_prompt_with_context("now log out", session_info=info)

        assert text.startswith("This is a continuation of your previous tasks.")
        assert '"log in"' in text
        assert "My new instruction is:\nnow log out" in text
        assert '[1] ✓ Action: navigate, URL: "https://x.test"' in text
        assert '[2] ✗ Action: click, XPath: "//missing", Description: "N/A"' in text
        assert "    Error: No element found" in text

    def test_new_session_has_no_framing(self):
        from automation_engine.models import SessionInfo
        from automation_engine.prompts import format_prompt_with_context

        info = SessionInfo(initial_prompt="log in", is_new_session=True)
        assert format_prompt_with_context("log in", session_info=info) == "log in"

    def test_page_context_listing(self):
        from automation_engine.models import PageContext
        from automation_engine.prompts import format_page_context

        context = PageContext.from_snapshot({
            "url": "https://x.test",
            "title": "X",
            "keyElements": [element("//a", "Home", tag="a"), element("//b", "Go", id="go")],
            "isPartial": True,
        })
        text = format_page_context(context)

        assert 'URL: https://x.test' in text
        assert '[1] Type: a, Text: "Home", XPath: "//a"' in text
        assert '[2] Type: button, Text: "Go", XPath: "//b"' in text
        assert 'Attributes: id: "go"' in text
        assert "truncated" in text

    def test_recovery_prompt_names_action_and_error(self):
        from automation_engine.models import ClickCommand
        from automation_engine.prompts import format_recovery_prompt

        text = format_recovery_prompt(ClickCommand(xpath="//missing"), "No element found matching: //missing")
        assert "(click)" in text
        assert "No element found matching: //missing" in text


# ============================================================
# SessionManager 测试
# ============================================================

class TestSessionManager:
    """测试会话管理"""

    def test_first_prompt_starts_session(self, session_manager):
        session, is_new = session_manager.start_or_resume("open example")
        assert is_new is True
        assert session.initial_prompt == "open example"

    def test_follow_up_resumes(self, session_manager):
        from automation_engine.models import CommandResult, NavigateCommand

        first, _ = session_manager.start_or_resume("open example")
        session_manager.record(NavigateCommand("https://x.test"), CommandResult(True, "navigate"))

        second, is_new = session_manager.start_or_resume("click login")

        assert is_new is False
        assert second.session_id == first.session_id
        assert second.initial_prompt == "open example"
        assert len(session_manager.snapshot().action_history) == 1

    def test_reset_requested(self, session_manager):
        first, _ = session_manager.start_or_resume("open example")
        second, is_new = session_manager.start_or_resume("search", reset_requested=True)

        assert is_new is True
        assert second.session_id != first.session_id
        assert second.action_history == []

    def test_snapshot_is_a_copy(self, session_manager):
        from automation_engine.models import ClickCommand, CommandResult

        session_manager.start_or_resume("open example")
        snapshot = session_manager.snapshot()
        session_manager.record(ClickCommand(xpath="//a"), CommandResult(True, "click"))

        assert snapshot.action_history == ()
        assert len(session_manager.snapshot().action_history) == 1

    def test_reset(self, session_manager):
        session_manager.start_or_resume("open example")
        session_manager.reset()
        assert session_manager.initial_prompt is None

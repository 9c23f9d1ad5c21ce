"""
Test configuration
"""
import json
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

# Add project root to path
src_path = Path(__file__).parent.parent
sys.path.insert(0, str(src_path))

# Set minimal environment variables for testing
os.environ.setdefault("GROQ_API_KEY", "test_groq_key")
os.environ.setdefault("OPENAI_API_KEY", "test_openai_key")  # Set a dummy key for testing
os.environ.setdefault("MOCK_DELAY_MS", "0")
os.environ.setdefault("STABILITY_INITIAL_DELAY_MS", "0")
os.environ.setdefault("STABILITY_INTERVAL_MS", "0")

from automation_engine.models import NavigateCommand  # noqa: E402
from automation_engine.page.base import PageChannel, check_restricted_url  # noqa: E402


def element(xpath: str, text: str = "", tag: str = "button", **attributes: str) -> Dict[str, Any]:
    """Snapshot entry in the shape produced by the page helper script"""
    return {
        "tag": tag,
        "xpath": xpath,
        "text": text,
        "x": 10,
        "y": 20,
        "width": 100,
        "height": 30,
        "inViewport": True,
        "attributes": attributes,
    }


class FakePageChannel(PageChannel):
    """
    Scripted page channel

    - pages: url -> list of snapshot elements
    - missing: xpaths that fail with "No element found"
    - handlers: action -> callable(command) returning a result dict or raising
    - stability: queued isLoading values, empty means stable
    - events: everything the engine asked for, in order
    """

    def __init__(self, url: str = "https://start.test", pages: Optional[Dict[str, List[Dict]]] = None):
        self.url = url
        self.pages: Dict[str, List[Dict]] = pages or {}
        self.missing: set = set()
        self.handlers: Dict[str, Callable[[Any], Dict[str, Any]]] = {}
        self.stability: List[Any] = []
        self.navigation_signal = True
        self.executed: List[Any] = []
        self.events: List[tuple] = []
        self.stability_checks = 0

    async def current_url(self) -> str:
        return self.url

    async def ping(self, timeout: float = 1.0) -> bool:
        return True

    async def ensure_ready(self) -> None:
        check_restricted_url(self.url)

    async def check_dom_stability(self, growth_threshold: int = 5) -> Dict[str, Any]:
        self.stability_checks += 1
        self.events.append(("stability",))
        if self.stability:
            value = self.stability.pop(0)
            if isinstance(value, BaseException):
                raise value
            return {"isLoading": value, "readyState": "loading" if value else "complete", "elementCount": 0}
        return {"isLoading": False, "readyState": "complete", "elementCount": 0}

    async def fast_snapshot(self, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.events.append(("snapshot", self.url))
        return {
            "url": self.url,
            "title": f"Page {self.url}",
            "keyElements": self.pages.get(self.url, []),
            "isPartial": False,
        }

    async def execute_commands(self, commands: List[Any]) -> Dict[str, Any]:
        results = []
        for command in commands:
            self.executed.append(command)
            self.events.append(("execute", command.action.value))
            handler = self.handlers.get(command.action.value)
            if handler is not None:
                result = handler(command)
            elif isinstance(command, NavigateCommand):
                self.url = command.url
                result = {"success": True, "action": "navigate", "navigated": True}
            elif getattr(command, "xpath", None) in self.missing:
                result = {
                    "success": False,
                    "action": command.action.value,
                    "error": f"No element found matching: {command.xpath}",
                    "error_kind": "element_not_found",
                }
            else:
                result = {"success": True, "action": command.action.value}
            results.append(result)
            if not result.get("success"):
                return {"success": False, "commandResults": results}
        return {"success": True, "commandResults": results}

    async def wait_for_navigation(self, timeout: float = 10.0) -> bool:
        self.events.append(("wait_for_navigation",))
        return self.navigation_signal


class ScriptedLLM:
    """
    Text completer returning queued responses

    dict responses are serialized to JSON; exceptions are raised.
    An empty queue answers with a plan that has no commands.
    """

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.prompts: List[str] = []
        self.system_prompts: List[str] = []

    async def complete(self, prompt: str, system_prompt: str) -> str:
        self.prompts.append(prompt)
        self.system_prompts.append(system_prompt)
        if not self.responses:
            return json.dumps({"commands": [], "isComplete": True})
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response


@pytest.fixture
def fake_channel():
    return FakePageChannel()


@pytest.fixture
def session_manager():
    from automation_engine.session import SessionManager
    return SessionManager()


@pytest.fixture
def settings_path(tmp_path):
    return tmp_path / "browser_pilot" / "settings.json"

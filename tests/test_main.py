"""
Tests for the command-line entry point
"""
import argparse
from unittest.mock import MagicMock, patch

import pytest

import main
from config import settings
from src.storage import SettingsStore


def cli_args(**overrides) -> argparse.Namespace:
    values = {
        "prompt": "click login",
        "url": None,
        "provider": None,
        "reset": False,
        "headless": True,
        "interactive": False,
        "set_provider": None,
        "test_connection": False,
        "log_level": None,
    }
    values.update(overrides)
    return argparse.Namespace(**values)


class TestRun:
    """Configuration errors on the prompt path end with an exit code"""

    @pytest.mark.asyncio
    async def test_unknown_provider_returns_error_code(self, settings_path, capsys):
        browser_cls = MagicMock()
        with patch.object(settings, "settings_store_path", settings_path), \
                patch("main.BrowserManager", browser_cls):
            exit_code = await main.run(cli_args(provider="bogus"))

        assert exit_code == 1
        assert "❌" in capsys.readouterr().out
        browser_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_persisted_config_returns_error_code(self, settings_path):
        await SettingsStore(settings_path).set({
            "provider": "groq",
            "serviceConfig": {"temperature": 3},
        })

        browser_cls = MagicMock()
        with patch.object(settings, "settings_store_path", settings_path), \
                patch("main.BrowserManager", browser_cls):
            exit_code = await main.run(cli_args())

        assert exit_code == 1
        browser_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_prompt(self, settings_path):
        with patch.object(settings, "settings_store_path", settings_path):
            assert await main.run(cli_args(prompt=None)) == 2

"""
Tests for SettingsStore
"""
import json
from unittest.mock import patch

import pytest

from src.llm_gateway.errors import AppError, ErrorKind
from src.storage import SettingsStore


class TestSettingsStore:
    """Tests for the file-backed settings store"""

    @pytest.mark.asyncio
    async def test_missing_file_reads_empty(self, settings_path):
        store = SettingsStore(settings_path)
        assert await store.get() == {}
        assert await store.get(["provider"]) == {}

    @pytest.mark.asyncio
    async def test_set_and_get(self, settings_path):
        store = SettingsStore(settings_path)
        await store.set({"provider": "groq"})
        await store.set({"features": {"detailedApiLogging": True}})

        assert await store.get(["provider"]) == {"provider": "groq"}
        assert await store.get() == {
            "provider": "groq",
            "features": {"detailedApiLogging": True},
        }
        assert json.loads(settings_path.read_text(encoding="utf-8"))["provider"] == "groq"

    @pytest.mark.asyncio
    async def test_remove(self, settings_path):
        store = SettingsStore(settings_path)
        await store.set({"provider": "groq", "serviceConfig": {"model": "x"}})
        await store.remove(["serviceConfig", "not-there"])

        assert await store.get() == {"provider": "groq"}

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_empty(self, settings_path):
        settings_path.parent.mkdir(parents=True)
        settings_path.write_text("{not json", encoding="utf-8")

        store = SettingsStore(settings_path)
        assert await store.get() == {}

        await store.set({"provider": "claude"})
        assert await store.get() == {"provider": "claude"}

    @pytest.mark.asyncio
    async def test_write_failure_raises_storage_error(self, settings_path):
        store = SettingsStore(settings_path)
        with patch("src.storage.settings_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(AppError) as exc_info:
                await store.set({"provider": "groq"})

        assert exc_info.value.kind == ErrorKind.STORAGE
        assert not settings_path.exists()

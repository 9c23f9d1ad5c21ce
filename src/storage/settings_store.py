"""
Settings store for provider selection and service configuration.

Persists a flat key -> value mapping as a single JSON file. Reads tolerate a
missing or corrupt file (callers fall back to defaults); writes are atomic
(temp file + replace) and raise on failure.

Keys in use:
    provider: selected provider id
    serviceConfig: per-provider overrides (apiKey, model, temperature, maxTokens)
    features: feature flags (detailedApiLogging)
"""
import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from loguru import logger

from src.llm_gateway.errors import AppError, ErrorKind


class SettingsStore:
    """
    File-based key -> value store.

    File I/O runs in a worker thread so the event loop is never blocked.
    """

    def __init__(self, path: Union[str, Path]):
        """
        Initialize the settings store.

        Args:
            path: JSON file location; parent directories are created on first write
        """
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"⚠️ [SettingsStore] Cannot read {self.path}, using defaults: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"⚠️ [SettingsStore] Unexpected content in {self.path}, using defaults")
            return {}
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)

    async def get(self, keys: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """
        Read values.

        Args:
            keys: keys to read; None returns everything

        Returns:
            Dictionary with the requested keys that exist
        """
        data = await asyncio.to_thread(self._read_all)
        if keys is None:
            return data
        return {key: data[key] for key in keys if key in data}

    async def set(self, values: Dict[str, Any]) -> None:
        """
        Merge values into the store.

        Raises:
            AppError: the file could not be written (Storage)
        """
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            data.update(values)
            try:
                await asyncio.to_thread(self._write_all, data)
            except OSError as e:
                raise AppError(
                    f"Failed to write settings to {self.path}: {e}",
                    kind=ErrorKind.STORAGE,
                    source="settings-store",
                    original_error=e,
                    retryable=False,
                ) from e

        logger.debug(f"💾 [SettingsStore] Saved keys: {', '.join(values)}")

    async def remove(self, keys: Iterable[str]) -> None:
        """Delete keys if present."""
        keys = list(keys)
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            for key in keys:
                data.pop(key, None)
            try:
                await asyncio.to_thread(self._write_all, data)
            except OSError as e:
                raise AppError(
                    f"Failed to write settings to {self.path}: {e}",
                    kind=ErrorKind.STORAGE,
                    source="settings-store",
                    original_error=e,
                    retryable=False,
                ) from e

"""
Storage - 持久化设置存储
"""
from .settings_store import SettingsStore

__all__ = ["SettingsStore"]

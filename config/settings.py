"""
Configuration settings for BrowserPilot
"""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # LLM Provider Configuration
    default_provider: str = "groq"
    groq_api_key: Optional[str] = None
    groq_model: str = "llama-3.3-70b-versatile"
    groq_endpoint: str = "https://api.groq.com/openai/v1/chat/completions"
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    openai_endpoint: str = "https://api.openai.com/v1/chat/completions"
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-3-sonnet-20240229"
    anthropic_endpoint: str = "https://api.anthropic.com/v1/messages"
    meta_api_key: Optional[str] = None
    meta_model: str = "meta-llama/llama-4-maverick-17b-128e-instruct"
    meta_endpoint: str = "https://api.meta.ai/v1/chat/completions"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 1024

    # LLM Request
    llm_request_timeout: float = 30.0  # 单次 HTTP 请求超时（秒）
    llm_max_attempts: int = 4  # 含首次请求在内的最大尝试次数
    mock_delay_ms: int = 500

    # Command Execution（秒）
    click_fill_timeout: float = 15.0
    navigate_timeout: float = 30.0
    navigation_group_timeout: float = 60.0  # 整组预期发生导航时的上限
    snapshot_timeout: float = 5.0
    ping_timeout: float = 1.0
    navigation_signal_timeout: float = 10.0

    # DOM Stability
    stability_max_checks: int = 10
    stability_interval_ms: int = 300
    stability_hard_timeout_ms: int = 4000
    stability_initial_delay_ms: int = 500
    stability_growth_threshold: int = 5  # 两次轮询之间节点数增长超过该值视为仍在加载

    # Orchestration
    max_continuations: int = 10
    max_recovery_attempts: int = 3  # 单个命令组内最多触发的恢复次数

    # Storage
    settings_store_path: Path = Path.home() / ".browser_pilot" / "settings.json"

    # Browser
    browser_headless: bool = False
    start_url: str = "https://example.com"  # 未指定 --url 时打开的页面
    action_timeout_ms: int = 10000  # 页面内单个点击 / 填写的等待上限
    snapshot_max_elements: int = 150

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None
    detailed_api_logging: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()

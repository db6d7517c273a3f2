"""
Configuration settings for the autopilot agent
"""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # AI Planner Configuration
    planner_api_url: str = "http://localhost:11435"
    planner_model: str = "gemma-3-12b"
    planner_api_token: Optional[str] = None
    planner_timeout: int = 60  # seconds per completion request

    # Persistent Store Configuration
    store_backend: str = "file"  # memory, file or redis
    store_path: str = "data/agent_store"
    redis_url: Optional[str] = None

    # Experience Memory
    max_memory_size: int = 1000
    learning_enabled: bool = True

    # Scheduler
    max_depth: int = 5
    task_interval: float = 1.0  # seconds between tasks

    # Browser / Perception
    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 720
    user_agent: Optional[str] = None
    tab_load_timeout_ms: int = 30000
    action_settle_delay: float = 1.0
    navigation_settle_delay: float = 2.0
    screenshot_history_limit: int = 50
    max_page_links: int = 20
    max_content_chars: int = 5000

    # Search / Downloads
    search_url_template: str = "https://html.duckduckgo.com/html/?q={query}"
    download_dir: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()

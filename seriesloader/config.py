"""
config: Loads the settings document (config.yaml) with env var overrides.

Precedence: env vars > config.yaml > defaults
"""
from __future__ import annotations
import os
from pathlib import Path
from dataclasses import dataclass, field
import yaml


@dataclass(frozen=True)
class BrowserSettings:
    headless: bool = True
    disable_images: bool = True
    user_agent: str = ""
    proxy: str = ""
    arguments: tuple[str, ...] = ()
    page_load_timeout: float = 10.0
    network_timeout: float = 15.0


@dataclass
class Config:
    # Database
    db_url: str = ""  # empty = use default SQLite path

    # Paths
    download_dir: str = "./Downloads"
    export_dir: str = "./exports"
    yt_dlp_path: str = ""  # empty = PATH lookup

    # Performance
    max_concurrent_downloads: int = 2
    download_timeout_minutes: int = 30
    page_load_timeout_seconds: int = 10
    network_timeout_seconds: int = 15
    delay_between_episodes_ms: int = 500
    delay_after_error_ms: int = 2000
    max_consecutive_errors: int = 5

    # Browser
    browser_headless: bool = True
    browser_disable_images: bool = True
    browser_user_agent: str = ""
    browser_proxy: str = ""
    browser_arguments: list[str] = field(default_factory=list)

    # Logging
    log_level: str = "INFO"

    def validate(self) -> None:
        positive = (
            "max_concurrent_downloads", "download_timeout_minutes",
            "page_load_timeout_seconds", "network_timeout_seconds",
            "max_consecutive_errors",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be greater than 0")
        for name in ("delay_between_episodes_ms", "delay_after_error_ms"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

    def browser(self) -> BrowserSettings:
        return BrowserSettings(
            headless=self.browser_headless,
            disable_images=self.browser_disable_images,
            user_agent=self.browser_user_agent,
            proxy=self.browser_proxy,
            arguments=tuple(self.browser_arguments),
            page_load_timeout=float(self.page_load_timeout_seconds),
            network_timeout=float(self.network_timeout_seconds),
        )


_TRUE = {"1", "true", "yes", "on"}


def load_config(config_path: str | Path | None = None) -> Config:
    """Load config from YAML file, then override with env vars."""
    cfg = Config()

    # 1. Load from YAML if available
    if config_path is None:
        config_path = os.environ.get("SERIESLOADER_CONFIG", "config.yaml")
    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        for key, value in data.items():
            key_norm = key.replace("-", "_")
            if hasattr(cfg, key_norm) and value is not None:
                setattr(cfg, key_norm, value)

    # 2. Override with env vars (SERIESLOADER_ prefix)
    env_map = {
        "SERIESLOADER_DB_URL": "db_url",
        "SERIESLOADER_DOWNLOAD_DIR": "download_dir",
        "SERIESLOADER_EXPORT_DIR": "export_dir",
        "SERIESLOADER_YT_DLP": "yt_dlp_path",
        "SERIESLOADER_MAX_DOWNLOADS": "max_concurrent_downloads",
        "SERIESLOADER_DOWNLOAD_TIMEOUT": "download_timeout_minutes",
        "SERIESLOADER_PAGE_TIMEOUT": "page_load_timeout_seconds",
        "SERIESLOADER_NETWORK_TIMEOUT": "network_timeout_seconds",
        "SERIESLOADER_EPISODE_DELAY": "delay_between_episodes_ms",
        "SERIESLOADER_ERROR_DELAY": "delay_after_error_ms",
        "SERIESLOADER_MAX_ERRORS": "max_consecutive_errors",
        "SERIESLOADER_HEADLESS": "browser_headless",
        "SERIESLOADER_USER_AGENT": "browser_user_agent",
        "SERIESLOADER_PROXY": "browser_proxy",
        "SERIESLOADER_LOG_LEVEL": "log_level",
    }
    for env_key, attr in env_map.items():
        val = os.environ.get(env_key)
        if val is not None:
            field_type = type(getattr(cfg, attr))
            if field_type == bool:
                setattr(cfg, attr, val.strip().lower() in _TRUE)
            elif field_type == int:
                setattr(cfg, attr, int(val))
            elif field_type == float:
                setattr(cfg, attr, float(val))
            else:
                setattr(cfg, attr, val)

    return cfg

"""Configuration management using Pydantic Settings."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LINKS2MEDIA_",
        extra="ignore",
    )

    # I/O Paths
    output_dir: Path = Field(default=Path("./downloads"))
    log_dir: Path = Field(default=Path("./logs"))
    history_file: Path = Field(default=Path("./downloads/history.json"))

    # HTTP transport
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
        )
    )
    mobile_user_agent: str = Field(
        default=(
            "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
            "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
        )
    )
    accept_language: str = Field(default="zh-CN,zh;q=0.9,en;q=0.8")
    request_timeout_seconds: float = Field(default=20.0)
    connect_timeout_seconds: float = Field(default=10.0)
    max_redirects: int = Field(default=10)

    # Download engine
    download_max_retry: int = Field(default=3)
    download_chunk_size: int = Field(default=4 * 1024 * 1024)
    enable_chunked_download: bool = Field(default=True)
    retry_backoff_base: float = Field(default=0.25)
    retry_backoff_step: float = Field(default=0.2)
    # Some CDNs answer 400/401 for expired signatures, so they share the retry class
    retryable_statuses: set[int] = Field(default={400, 401, 403, 404, 410, 412})

    # Image candidate probing
    probe_enabled: bool = Field(default=True)
    probe_candidate_limit: int = Field(default=3)
    probe_pixel_tolerance: float = Field(default=0.05)

    # Optional cookies (raw "name=value; name2=value2" strings)
    weibo_cookie: str = Field(default="")
    bilibili_cookie: str = Field(default="")
    xiaohongshu_cookie: str = Field(default="")
    douyin_cookie: str = Field(default="")

    # Naming / saving
    classify_folders: bool = Field(default=True)
    datetime_first: bool = Field(default=True)
    modify_file_date: bool = Field(default=True)
    title_max_length: int = Field(default=64)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "text", "both"] = Field(default="both")


# Default singleton for convenience
settings = Settings()

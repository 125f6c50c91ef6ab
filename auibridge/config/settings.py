"""Runtime settings."""

from __future__ import annotations

from functools import lru_cache
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 10; K) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/137.0.0.0 Mobile Safari/537.36"
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AUIBRIDGE_", extra="ignore", frozen=True)

    app_name: str = "AUIBridge"
    log_level: str = "info"
    # 空串表示只输出到 stderr
    log_file: str = ""
    host: str = "0.0.0.0"
    port: int = 3000

    target_url: str = "https://www.assistant-ui.com/api/chat"
    # 为空时关闭鉴权（公开模式）
    server_api_key: str = ""
    upstream_proxy: str = ""
    # None 表示不设读超时，上游挂起时流保持打开
    upstream_timeout_seconds: float | None = None
    upstream_connect_timeout_seconds: float = 30.0
    upstream_max_connections: int = 100
    upstream_max_keepalive_connections: int = 20
    upstream_user_agent: str = DEFAULT_USER_AGENT
    upstream_thread_id: str = "DEFAULT_THREAD_ID"
    upstream_trigger: str = "submit-message"
    echo_model_in_metadata: bool = False

    models: str = "gpt-4o-mini"
    model_owner: str = "proxy"
    stream_queue_size: int = Field(default=64, ge=1)
    cors_allow_origin: str = "*"

    @field_validator("target_url")
    @classmethod
    def _check_target_url(cls, value: str) -> str:
        parsed = urlparse(value.strip())
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("target_url must be an absolute http(s) URL")
        return value.strip()

    @field_validator("upstream_timeout_seconds")
    @classmethod
    def _non_positive_timeout_disables(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            return None
        return value

    @property
    def model_ids(self) -> list[str]:
        return [item.strip() for item in self.models.split(",") if item.strip()]

    @property
    def default_model(self) -> str:
        ids = self.model_ids
        return ids[0] if ids else "unknown-model"

    @property
    def auth_enabled(self) -> bool:
        return bool(self.server_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

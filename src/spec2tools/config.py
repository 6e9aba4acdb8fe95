"""Configuration for spec2tools."""

from __future__ import annotations

from functools import lru_cache
from typing import Optional, Set

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SPEC2TOOLS_", case_sensitive=False, populate_by_name=True
    )

    spec: Optional[str] = Field(default=None)
    base_url: Optional[str] = Field(default=None)
    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SPEC2TOOLS_API_KEY", "API_KEY"),
    )
    interactive_auth: bool = Field(default=False)

    server_name: str = Field(default="openapi-mcp-server")
    transport: str = Field(default="stdio")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)

    http_timeout_seconds: float = Field(default=30)
    openapi_cache_seconds: int = Field(default=0)

    oauth_callback_host: str = Field(default="127.0.0.1")
    oauth_callback_port: int = Field(default=54321)
    oauth_timeout_seconds: float = Field(default=300)

    tool_allowlist: Optional[str] = Field(default=None)

    log_level: str = Field(default="INFO")

    def allowed_tools(self) -> Set[str]:
        if not self.tool_allowlist:
            return set()
        return {item.strip() for item in self.tool_allowlist.split(",") if item.strip()}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

"""Configuration for the HTTP server."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Settings for the thread API."""

    title: str = Field(default="threadgraph", validation_alias="THREADGRAPH_API_TITLE")

    # Dev-friendly CORS. Override via THREADGRAPH_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="THREADGRAPH_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    history_page_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        validation_alias="THREADGRAPH_HISTORY_PAGE_SIZE",
        description="Default number of checkpoints returned by the history endpoint.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

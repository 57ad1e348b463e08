"""Engine configuration."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Settings for the superstep scheduler and its checkpoint store."""

    recursion_limit: int = Field(
        default=25,
        gt=0,
        description="Maximum supersteps per advance/resume call",
    )
    max_workers: int = Field(
        default=8,
        gt=0,
        description="Thread pool size for nodes of one superstep",
    )

    checkpoint_backend: Literal["memory", "json", "sqlite"] = Field(
        default="memory",
        description="Checkpoint store used when none is passed to compile()",
    )
    storage_path: Path = Field(
        default=Path(".threadgraph"),
        description="Directory for the json and sqlite backends",
    )
    checkpoint_write_retries: int = Field(
        default=2,
        ge=0,
        description="Extra attempts for a failing checkpoint write",
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    model_config = SettingsConfigDict(
        env_prefix="THREADGRAPH_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def sqlite_path(self) -> Path:
        return self.storage_path / "checkpoints.sqlite"

    @property
    def json_root(self) -> Path:
        return self.storage_path / "threads"

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        from threadgraph.logging import configure_logging

        configure_logging(self.log_level)
        if self.debug:
            logging.getLogger("threadgraph").setLevel(logging.DEBUG)

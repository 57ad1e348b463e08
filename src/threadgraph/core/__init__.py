"""Core configuration."""

from threadgraph.core.config import EngineSettings

__all__ = ["EngineSettings"]

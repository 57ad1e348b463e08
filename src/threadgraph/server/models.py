"""Pydantic models for the HTTP server."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class RunRequest(BaseModel):
    input: dict[str, Any] | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    checkpoint_id: str | None = None


class ResumeRequest(BaseModel):
    value: Any = None
    node: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)


class ForkRequest(BaseModel):
    checkpoint_id: str
    new_thread_id: str | None = None


class UpdateStateRequest(BaseModel):
    values: dict[str, Any]
    checkpoint_id: str | None = None


class ApiError(BaseModel):
    error: str
    message: str
    thread_id: str | None = None
    checkpoint_id: str | None = None


class ThreadList(BaseModel):
    threads: list[str] = Field(default_factory=list)

"""Settings Pydantic models for chatbridge configuration."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class GeminiConfig(BaseModel):
    """Model endpoint, credential and sampling parameters."""

    model: str = "gemini-2.0-flash"
    api_key: str | None = None
    generate_content_url: str | None = None
    base_url: str | None = None
    system_instruction: str | None = None

    temperature: float | None = 0.5
    top_p: float | None = None
    top_k: int | None = None
    max_output_tokens: int | None = None
    stop_sequences: list[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class StreamConfig(BaseModel):
    """Streaming and polling behaviour of the driver."""

    no_data_timeout_sec: float = Field(default=10.0, gt=0)
    poll_interval_ms: int = Field(default=10, gt=0)
    use_functions: bool = True
    custom_headers: dict[str, str] = Field(default_factory=dict)
    custom_parameters: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}


class VisionConfig(BaseModel):
    """Vision-directive continuation."""

    enabled: bool = True
    mime_type: str = "image/jpeg"
    capture_timeout_sec: float = Field(default=10.0, gt=0)

    model_config = {"extra": "ignore"}


class Settings(BaseModel):
    """Top-level settings model."""

    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    vision: VisionConfig = Field(default_factory=VisionConfig)

    debug: bool = False

    model_config = {"extra": "ignore"}

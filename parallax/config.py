# parallax/config.py
"""
Configuration for Parallax.

Values are loaded from environment variables (and an optional ``.env`` file at
the project root) and validated with Pydantic. Every component receives its
settings from here; nothing reads the environment on its own.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above parallax/).
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

DEFAULT_SERVER_URL = "http://localhost:11434"


class OllamaConfig(BaseSettings):
    """Connection and request settings for the generation server."""

    server_url: str = Field(DEFAULT_SERVER_URL, alias="PARALLAX_SERVER_URL")
    model: str = Field("", alias="PARALLAX_MODEL")  # empty = auto-select
    disable_thinking: bool = Field(True, alias="PARALLAX_DISABLE_THINKING")

    chat_timeout: float = Field(180.0, alias="PARALLAX_CHAT_TIMEOUT")
    models_timeout: float = Field(10.0, alias="PARALLAX_MODELS_TIMEOUT")
    probe_timeout: float = Field(5.0, alias="PARALLAX_PROBE_TIMEOUT")

    chat_temperature: float = Field(0.7, alias="PARALLAX_CHAT_TEMPERATURE")
    chat_num_predict: int = Field(1000, alias="PARALLAX_CHAT_NUM_PREDICT")
    history_window: int = Field(10, alias="PARALLAX_HISTORY_WINDOW")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize(self) -> "OllamaConfig":
        self.server_url = (self.server_url or DEFAULT_SERVER_URL).strip().rstrip("/")
        self.model = (self.model or "").strip()
        self.chat_timeout = max(1.0, float(self.chat_timeout))
        self.models_timeout = max(0.5, float(self.models_timeout))
        self.probe_timeout = max(0.5, float(self.probe_timeout))
        self.chat_temperature = max(0.0, min(2.0, float(self.chat_temperature)))
        self.chat_num_predict = max(1, int(self.chat_num_predict))
        self.history_window = max(1, int(self.history_window))
        return self

    def request_options(self, base: dict[str, Any] | None = None) -> dict[str, Any]:
        """Return generation options with the thinking switch applied."""
        options = dict(base or {})
        if self.disable_thinking:
            options["no_thinking"] = True
        return options


class OrchestrationConfig(BaseSettings):
    """Settings for the multi-worker analysis orchestrator."""

    worker_timeout: float = Field(90.0, alias="PARALLAX_WORKER_TIMEOUT")
    worker_temperature: float = Field(0.2, alias="PARALLAX_WORKER_TEMPERATURE")
    worker_num_predict: int = Field(500, alias="PARALLAX_WORKER_NUM_PREDICT")
    worker_num_ctx: int = Field(2048, alias="PARALLAX_WORKER_NUM_CTX")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "OrchestrationConfig":
        self.worker_timeout = max(1.0, float(self.worker_timeout))
        self.worker_temperature = max(0.0, min(2.0, float(self.worker_temperature)))
        self.worker_num_predict = max(1, int(self.worker_num_predict))
        self.worker_num_ctx = max(256, int(self.worker_num_ctx))
        return self

    def worker_options(self) -> dict[str, Any]:
        """Base sampling options for worker tasks (specializations override)."""
        return {
            "temperature": self.worker_temperature,
            "num_predict": self.worker_num_predict,
            "num_ctx": self.worker_num_ctx,
        }


class ParallaxConfig:
    """
    Master configuration composing the subsystem configs.

    The single source of truth handed to the CLI and the orchestrator.
    """

    def __init__(self):
        self.ollama = OllamaConfig()
        self.orchestration = OrchestrationConfig()
        logger.debug(
            "config.loaded",
            server_url=self.ollama.server_url,
            model=self.ollama.model or "<auto>",
            disable_thinking=self.ollama.disable_thinking,
        )

    def __repr__(self) -> str:
        return (
            f"ParallaxConfig(server={self.ollama.server_url}, "
            f"model={self.ollama.model or '<auto>'}, "
            f"worker_timeout={self.orchestration.worker_timeout}s)"
        )

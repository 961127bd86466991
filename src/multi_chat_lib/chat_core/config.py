"""Runtime settings for the sync core, optionally loaded from the environment."""

import os
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator

from .logger import setup_logging

_ENV_PREFIX = "MULTI_CHAT_"


class SyncSettings(BaseModel):
    """Settings shared by the sync facade and the bundled implementations.

    Attributes:
        reconcile_tail_count: Persisted messages fetched per reconciliation (the last user/assistant pair).
        system_prompt: System instruction sent with every turn.
        openai_base_url: Optional OpenAI-compatible endpoint for ``OpenAITurnSource.from_settings``.
        log_level: Level applied by ``setup_logging``.
    """

    reconcile_tail_count: int = Field(default=2, ge=1)
    system_prompt: Optional[str] = None
    openai_base_url: Optional[str] = None
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "SyncSettings":
        """Build settings from environment variables.

        Reads ``MULTI_CHAT_RECONCILE_TAIL_COUNT``, ``MULTI_CHAT_SYSTEM_PROMPT``,
        ``MULTI_CHAT_LOG_LEVEL`` and ``OPENAI_BASE_URL``.
        Unset variables keep their defaults.

        Args:
            load_env_file: Load a ``.env`` file found from the working directory first.

        Raises:
            pydantic.ValidationError: If a variable holds an invalid value.
        """
        if load_env_file:
            env_file = find_dotenv(usecwd=True)
            if env_file:
                load_dotenv(env_file)

        values = {
            "reconcile_tail_count": os.getenv(f"{_ENV_PREFIX}RECONCILE_TAIL_COUNT"),
            "system_prompt": os.getenv(f"{_ENV_PREFIX}SYSTEM_PROMPT"),
            "log_level": os.getenv(f"{_ENV_PREFIX}LOG_LEVEL"),
            "openai_base_url": os.getenv("OPENAI_BASE_URL"),
        }
        return cls.model_validate({k: v for k, v in values.items() if v is not None})

    def setup_logging(self) -> None:
        """Attach the library's stdout handler at ``log_level``; see ``logger.setup_logging``."""
        setup_logging(self.log_level)

"""
Runtime configuration for the CodeFortress audit service.

This module centralizes environment-driven configuration: which
reasoning collaborator backs verdicts, explanations and chat, how the
GitHub data source is reached, and the timeout/retry policy applied to
every collaborator call.

Configuration is read once at startup and is immutable afterwards.
"""

from __future__ import annotations

import os
from pydantic import BaseModel, Field, field_validator, ValidationInfo

from fortress.app.collaborators.outcome import CallPolicy


DEFAULT_CHAT_SYSTEM_INSTRUCTION = (
    "You are the CodeFortress Security AI. Help users navigate CI/CD security."
)


class FortressConfig(BaseModel):
    """
    Runtime configuration for the audit service.

    Environment-driven and read-only at runtime.
    """

    # ------------------------------------------------------------------
    # Reasoning collaborator
    # ------------------------------------------------------------------

    REASONER_PROVIDER: str = Field(
        "simulated",
        description="Reasoning collaborator backing verdicts, explanations and chat",
    )

    AZURE_OPENAI_ENDPOINT: str = Field(
        "",
        description="Azure OpenAI endpoint URL",
    )

    AZURE_OPENAI_DEPLOYMENT: str = Field(
        "",
        validate_default=True,
        description="Azure OpenAI deployment name",
    )

    AZURE_OPENAI_API_VERSION: str = Field(
        "2024-10-21",
        description="Azure OpenAI API version",
    )

    # ------------------------------------------------------------------
    # Data source
    # ------------------------------------------------------------------

    GITHUB_API_URL: str = Field(
        "https://api.github.com",
        description="Base URL of the GitHub REST API used to resolve targets",
    )

    GITHUB_TOKEN: str = Field(
        "",
        description="Optional token for authenticated GitHub requests",
    )

    # ------------------------------------------------------------------
    # Collaborator call policy
    # ------------------------------------------------------------------

    COLLABORATOR_TIMEOUT_SECONDS: float = Field(
        30.0,
        description="Per-attempt timeout for every collaborator call",
    )

    COLLABORATOR_MAX_ATTEMPTS: int = Field(
        2,
        description="Attempts per collaborator call before degrading",
    )

    COLLABORATOR_BACKOFF_SECONDS: float = Field(
        0.5,
        description="Base of the exponential backoff between attempts",
    )

    # ------------------------------------------------------------------
    # Session behaviour
    # ------------------------------------------------------------------

    CLEAR_CHAT_ON_RESET: bool = Field(
        False,
        description="Clear the chat conversation when the audit session is reset",
    )

    CHAT_SYSTEM_INSTRUCTION: str = Field(
        DEFAULT_CHAT_SYSTEM_INSTRUCTION,
        description="Session instruction sent with every chat message",
    )

    LOG_LEVEL: str = Field(
        "INFO",
        description="Root logging level for the service process",
    )

    # ------------------------------------------------------------------
    # Validators (Pydantic v2)
    # ------------------------------------------------------------------

    @field_validator("REASONER_PROVIDER")
    @classmethod
    def validate_reasoner_provider(cls, v: str) -> str:
        allowed = {"simulated", "azure_openai"}
        if v not in allowed:
            raise ValueError(
                f"Unsupported REASONER_PROVIDER '{v}'. "
                f"Allowed values: {sorted(allowed)}"
            )
        return v

    @field_validator("AZURE_OPENAI_DEPLOYMENT")
    @classmethod
    def azure_settings_required(
        cls, v: str, info: ValidationInfo
    ) -> str:
        if info.data.get("REASONER_PROVIDER") == "azure_openai":
            if not info.data.get("AZURE_OPENAI_ENDPOINT"):
                raise ValueError(
                    "REASONER_PROVIDER is azure_openai but "
                    "AZURE_OPENAI_ENDPOINT is not configured."
                )
            if not v:
                raise ValueError(
                    "REASONER_PROVIDER is azure_openai but "
                    "AZURE_OPENAI_DEPLOYMENT is not configured."
                )
        return v

    @field_validator("COLLABORATOR_TIMEOUT_SECONDS")
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("COLLABORATOR_TIMEOUT_SECONDS must be positive.")
        return v

    @field_validator("COLLABORATOR_MAX_ATTEMPTS")
    @classmethod
    def attempts_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("COLLABORATOR_MAX_ATTEMPTS must be at least 1.")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    # ------------------------------------------------------------------
    # Derived settings
    # ------------------------------------------------------------------

    def call_policy(self) -> CallPolicy:
        return CallPolicy(
            timeout_seconds=self.COLLABORATOR_TIMEOUT_SECONDS,
            max_attempts=self.COLLABORATOR_MAX_ATTEMPTS,
            backoff_seconds=self.COLLABORATOR_BACKOFF_SECONDS,
        )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls) -> "FortressConfig":
        """
        Load configuration from environment variables.

        All values are parsed once at startup and must remain immutable.
        """

        def env_bool(name: str, default: bool) -> bool:
            raw = os.getenv(name)
            if raw is None:
                return default
            return raw.lower() in {"1", "true", "yes", "on"}

        return cls(
            REASONER_PROVIDER=os.getenv(
                "FORTRESS_REASONER_PROVIDER", "simulated"
            ),
            AZURE_OPENAI_ENDPOINT=os.getenv(
                "FORTRESS_AZURE_OPENAI_ENDPOINT", ""
            ),
            AZURE_OPENAI_DEPLOYMENT=os.getenv(
                "FORTRESS_AZURE_OPENAI_DEPLOYMENT", ""
            ),
            AZURE_OPENAI_API_VERSION=os.getenv(
                "FORTRESS_AZURE_OPENAI_API_VERSION", "2024-10-21"
            ),
            GITHUB_API_URL=os.getenv(
                "FORTRESS_GITHUB_API_URL", "https://api.github.com"
            ),
            GITHUB_TOKEN=os.getenv("FORTRESS_GITHUB_TOKEN", ""),
            COLLABORATOR_TIMEOUT_SECONDS=float(
                os.getenv("FORTRESS_COLLABORATOR_TIMEOUT_SECONDS", "30")
            ),
            COLLABORATOR_MAX_ATTEMPTS=int(
                os.getenv("FORTRESS_COLLABORATOR_MAX_ATTEMPTS", "2")
            ),
            COLLABORATOR_BACKOFF_SECONDS=float(
                os.getenv("FORTRESS_COLLABORATOR_BACKOFF_SECONDS", "0.5")
            ),
            CLEAR_CHAT_ON_RESET=env_bool(
                "FORTRESS_CLEAR_CHAT_ON_RESET", False
            ),
            CHAT_SYSTEM_INSTRUCTION=os.getenv(
                "FORTRESS_CHAT_SYSTEM_INSTRUCTION",
                DEFAULT_CHAT_SYSTEM_INSTRUCTION,
            ),
            LOG_LEVEL=os.getenv("FORTRESS_LOG_LEVEL", "INFO"),
        )

    model_config = {
        "frozen": True,
    }

# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for all deployment-specific settings: LLM and
embedding providers, vector database, session store, scan tuning,
cluster discovery and logging.

Changelog:
    v2: SCAN_LEASE_TTL_S (executor lease expiry) and SESSION_IDLE_TTL_S
        (retention of sessions abandoned before scanning).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === LLM (classification service) ===
    llm_provider: str = "anthropic"
    llm_model: str = "claude-sonnet-4-20250514"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 2048
    llm_timeout_s: float = 60.0

    # Provider API keys
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # === EMBEDDINGS ===
    embedding_provider: str = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # === Vector database (semantic index) ===
    vector_db_type: Literal["chromadb", "qdrant"] = "qdrant"
    vector_db_path: Path = Path("~/.capscan/vectordb")
    vector_db_url: str = ""
    vector_db_api_key: str = ""
    capability_collection: str = "capabilities"

    # === Session store ===
    session_backend: Literal["json", "sqlite"] = "json"
    session_dir: Path = Path("./tmp")

    # === Scan tuning ===
    session_cleanup_delay_s: float = 30.0
    session_idle_ttl_s: float = 86400.0
    scan_lease_ttl_s: float = 600.0
    scan_recent_errors_limit: int = 5
    scan_max_persist_failures: int = 3

    # === Discovery (kubectl) ===
    kubectl_path: str = "kubectl"
    kubeconfig: str = ""
    kubectl_context: str = ""
    kubectl_timeout_s: float = 30.0

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("llm_temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """LLM_TEMPERATURE must lie in [0, 2]."""
        if not 0.0 <= v <= 2.0:
            raise ValueError("llm_temperature must be between 0 and 2")
        return v

    @field_validator(
        "llm_max_tokens",
        "embedding_dimensions",
        "scan_recent_errors_limit",
        "scan_max_persist_failures",
    )
    @classmethod
    def validate_positive(cls, v: int, info) -> int:  # noqa: N805
        if v < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return v

    @field_validator(
        "session_cleanup_delay_s",
        "session_idle_ttl_s",
        "kubectl_timeout_s",
        "llm_timeout_s",
        "scan_lease_ttl_s",
    )
    @classmethod
    def validate_non_negative(cls, v: float, info) -> float:  # noqa: N805
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.vector_db_api_key and not self.vector_db_url:
            errors.append("VECTOR_DB_API_KEY requires VECTOR_DB_URL")

        if not self.capability_collection.strip():
            errors.append("CAPABILITY_COLLECTION must not be empty")

        if self.kubectl_timeout_s == 0:
            errors.append("KUBECTL_TIMEOUT_S must be > 0")

        if self.llm_timeout_s == 0:
            errors.append("LLM_TIMEOUT_S must be > 0")

        if self.scan_lease_ttl_s == 0:
            errors.append("SCAN_LEASE_TTL_S must be > 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def sessions_path(self) -> Path:
        """Directory holding one record per capability scan session."""
        return self.session_dir.expanduser() / "capability-sessions"

    @property
    def llm_api_key(self) -> str:
        """API key of the configured classification provider."""
        if self.llm_provider == "anthropic":
            return self.anthropic_api_key
        if self.llm_provider == "openai":
            return self.openai_api_key
        return ""


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or CLI flags).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]

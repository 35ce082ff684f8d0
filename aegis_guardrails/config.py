"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings

from aegis_guardrails.models.core import CheckVerdict


class Settings(BaseSettings):
    """Guardrails service configuration.

    All settings can be overridden via environment variables
    (e.g., POSTGRES_HOST, CHECK_TIMEOUT, CLASSIFIER_URL).
    """

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8081
    api_log_level: str = "info"
    cors_origins: list[str] = ["http://localhost:5173"]

    # Auth
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "aegis"
    postgres_user: str = "aegis"
    postgres_password: str = "aegis-dev"

    # Evaluation
    max_input_length: int = Field(default=10_000, gt=0)
    check_timeout: float = Field(default=0.5, gt=0)
    evaluation_timeout: float = Field(default=2.0, gt=0)
    unavailable_verdict: CheckVerdict = CheckVerdict.WARN
    input_hash_salt: str = "change-me-in-production"

    # Content classifier (unset URL = local keyword classifier)
    classifier_url: str | None = None
    classifier_api_key: str | None = None
    classifier_timeout: float = 1.0
    classifier_model: str | None = None

    # Audit
    audit_queue_size: int = Field(default=10_000, gt=0)
    audit_max_attempts: int = Field(default=3, gt=0)
    audit_retry_base_delay: float = 0.5
    audit_retry_max_delay: float = 5.0
    audit_flush_timeout: float = 5.0

    @property
    def postgres_dsn(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    model_config = {"env_prefix": "", "case_sensitive": False}


settings = Settings()

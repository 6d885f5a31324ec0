"""Configuration for the automation engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Matrix credentials are only required when chat integration is enabled, so the
engine can run webhook/stdout/email workflows without a homeserver.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StepErrorPolicy(str, Enum):
    """What a workflow run does when one of its steps fails."""

    CONTINUE = "continue"
    HALT = "halt"


class EngineSettings(BaseSettings):
    """Settings for the engine process.

    Environment variables:
    - DB_FILE                  (required)
    - DEBUG, LOG_LEVEL         (optional)
    - WEBHOOK_LISTENER_HOST, WEBHOOK_LISTENER_PORT
    - WORKFLOWS_DEF_TOML_FILE  (optional)
    - MATRIX_ENABLED, MATRIX_HOMESERVER_URL, MATRIX_SERVER_NAME,
      MATRIX_USERNAME, MATRIX_PASSWORD
    - SMTP_HOST, SMTP_PORT, SMTP_USERNAME, SMTP_PASSWORD, SMTP_FROM, SMTP_STARTTLS

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    debug: bool = Field(default=False, validation_alias="DEBUG")
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    database_path: Path | None = Field(
        default=None,
        validation_alias="DB_FILE",
        description="SQLite database file holding triggers, workflows, steps and bots",
    )

    listener_host: str = Field(default="0.0.0.0", validation_alias="WEBHOOK_LISTENER_HOST")
    listener_port: int = Field(
        default=8080,
        validation_alias="WEBHOOK_LISTENER_PORT",
        ge=1,
        le=65535,
    )

    workflows_definition_file: Path | None = Field(
        default=None,
        validation_alias="WORKFLOWS_DEF_TOML_FILE",
        description="Optional TOML file with workflow definitions imported at startup",
    )

    matrix_enabled: bool = Field(default=True, validation_alias="MATRIX_ENABLED")
    matrix_homeserver_url: str = Field(default="", validation_alias="MATRIX_HOMESERVER_URL")
    matrix_server_name: str = Field(
        default="",
        validation_alias="MATRIX_SERVER_NAME",
        description="Homeserver domain; bots only accept invites to rooms on this server",
    )
    matrix_username: str = Field(default="", validation_alias="MATRIX_USERNAME")
    matrix_password: str = Field(default="", validation_alias="MATRIX_PASSWORD")
    matrix_request_timeout_seconds: float | None = Field(
        default=None,
        validation_alias="MATRIX_REQUEST_TIMEOUT_SECONDS",
        gt=0,
        description="Timeout for individual homeserver requests (unset means no timeout)",
    )

    poll_request_timeout_seconds: float | None = Field(
        default=None,
        validation_alias="POLL_REQUEST_TIMEOUT_SECONDS",
        gt=0,
        description="Timeout for poll trigger URL fetches (unset means no timeout)",
    )

    step_error_policy: StepErrorPolicy = Field(
        default=StepErrorPolicy.CONTINUE,
        validation_alias="STEP_ERROR_POLICY",
        description=(
            "'continue' logs a failed step and carries on with the payload it received; "
            "'halt' stops the workflow at the failed step."
        ),
    )
    wake_up_timeout_seconds: float | None = Field(
        default=None,
        validation_alias="WAKE_UP_TIMEOUT_SECONDS",
        gt=0,
        description="Upper bound for bringing all bots online (unset means wait forever)",
    )
    allow_partial_wake_up: bool = Field(
        default=False,
        validation_alias="ALLOW_PARTIAL_WAKE_UP",
        description=(
            "If true, start-up continues when some (but not all) bots fail to wake up. "
            "The failures are still logged."
        ),
    )

    smtp_host: str = Field(default="", validation_alias="SMTP_HOST")
    smtp_port: int = Field(default=587, validation_alias="SMTP_PORT", ge=1, le=65535)
    smtp_username: str = Field(default="", validation_alias="SMTP_USERNAME")
    smtp_password: str = Field(default="", validation_alias="SMTP_PASSWORD")
    smtp_from: str = Field(default="", validation_alias="SMTP_FROM")
    smtp_starttls: bool = Field(default=True, validation_alias="SMTP_STARTTLS")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _require_database_and_matrix(self) -> EngineSettings:
        if self.database_path is None or not str(self.database_path).strip():
            raise ValueError("DB_FILE environment variable must be set and not empty")

        if self.matrix_enabled:
            required = {
                "MATRIX_HOMESERVER_URL": self.matrix_homeserver_url,
                "MATRIX_SERVER_NAME": self.matrix_server_name,
                "MATRIX_USERNAME": self.matrix_username,
                "MATRIX_PASSWORD": self.matrix_password,
            }
            for name, value in required.items():
                if not value.strip():
                    raise ValueError(f"{name} environment variable must be set and not empty")
        return self

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host.strip() and self.smtp_from.strip())

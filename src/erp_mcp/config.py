"""Gateway settings, read from the environment and ``.env``."""

from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from erp_mcp.services.query import DEFAULT_QUERY_LIMIT, MAX_QUERY_LIMIT
from erp_mcp.utilities.logging import LogLevel


class Settings(BaseSettings):
    """Gateway settings.

    Every field maps onto the upper-cased environment variable of the same
    name, e.g. ``SUPABASE_PROJECT_URL`` or ``API_TIMEOUT``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # Backend
    supabase_project_url: str
    supabase_bearer_token: Annotated[str, Field(min_length=10, repr=False)]
    order_verification_url: str | None = None
    """Defaults to the ``verify-order`` edge function of the project."""

    api_timeout: Annotated[int, Field(ge=1000, le=30000)] = 5000
    """Outbound request timeout in milliseconds."""

    default_query_limit: Annotated[int, Field(ge=1, le=MAX_QUERY_LIMIT)] = DEFAULT_QUERY_LIMIT

    # Server
    log_level: LogLevel = "INFO"
    host: str = "127.0.0.1"
    port: int = 3000
    mcp_api_key: Annotated[str | None, Field(repr=False)] = None
    tool_call_timeout: Annotated[float, Field(gt=0)] = 30.0

    @field_validator("supabase_project_url")
    @classmethod
    def _validate_project_url(cls, value: str) -> str:
        if not value.startswith("http"):
            raise ValueError("SUPABASE_PROJECT_URL must be an http(s) URL")
        return value.rstrip("/")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @property
    def verification_url(self) -> str:
        return self.order_verification_url or f"{self.supabase_project_url}/functions/v1/verify-order"

    @property
    def timeout_seconds(self) -> float:
        return self.api_timeout / 1000

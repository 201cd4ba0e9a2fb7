"""Application configuration contract."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentpack.errors import ConfigError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="AGENTPACK_ENV", default="dev")
    log_level: str = Field(alias="AGENTPACK_LOG_LEVEL", default="INFO")

    mcp_protocol_version: str = Field(alias="AGENTPACK_MCP_PROTOCOL_VERSION", default="2025-06-18")
    mcp_timeout_seconds: float = Field(alias="AGENTPACK_MCP_TIMEOUT_SECONDS", default=30.0)
    mcp_host_widening: int = Field(alias="AGENTPACK_MCP_HOST_WIDENING", default=1)

    fetch_timeout_seconds: float = Field(alias="AGENTPACK_FETCH_TIMEOUT_SECONDS", default=30.0)

    sandbox_python: str = Field(alias="AGENTPACK_SANDBOX_PYTHON", default="")
    sandbox_ready_timeout_seconds: float = Field(
        alias="AGENTPACK_SANDBOX_READY_TIMEOUT_SECONDS", default=15.0
    )
    sandbox_run_timeout_seconds: float = Field(
        alias="AGENTPACK_SANDBOX_RUN_TIMEOUT_SECONDS", default=120.0
    )
    sandbox_shutdown_timeout_seconds: float = Field(
        alias="AGENTPACK_SANDBOX_SHUTDOWN_TIMEOUT_SECONDS", default=5.0
    )

    registry_url: str = Field(alias="AGENTPACK_REGISTRY_URL", default="https://agents.example.com")


def validate_settings(settings: Settings) -> None:
    bad: list[str] = []
    if settings.mcp_timeout_seconds <= 0:
        bad.append("AGENTPACK_MCP_TIMEOUT_SECONDS")
    if settings.fetch_timeout_seconds <= 0:
        bad.append("AGENTPACK_FETCH_TIMEOUT_SECONDS")
    if settings.sandbox_ready_timeout_seconds <= 0:
        bad.append("AGENTPACK_SANDBOX_READY_TIMEOUT_SECONDS")
    if settings.sandbox_run_timeout_seconds <= 0:
        bad.append("AGENTPACK_SANDBOX_RUN_TIMEOUT_SECONDS")
    if settings.sandbox_shutdown_timeout_seconds <= 0:
        bad.append("AGENTPACK_SANDBOX_SHUTDOWN_TIMEOUT_SECONDS")
    if settings.mcp_host_widening not in (0, 1):
        bad.append("AGENTPACK_MCP_HOST_WIDENING(0 or 1)")
    if bad:
        raise ConfigError(f"invalid configuration: {', '.join(sorted(bad))}")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

"""
Application Settings
===================

Engine, process pool and rendering service settings using Pydantic Settings.
Supports development, testing, and production environments.
"""

from typing import Annotated, Optional, List, Union
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
import json
import shlex


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    # Application Configuration
    app_name: str = Field(default="Universal Renderer", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(
        default="development", description="Environment: development, testing, production"
    )
    debug: bool = Field(default=False, description="Expose exception details in error bodies")

    # Rendering Service Configuration
    host: str = Field(default="0.0.0.0", description="Rendering service host")
    port: int = Field(default=3001, description="Rendering service port")

    # Remote Engine Configuration
    server_url: Optional[str] = Field(
        default=None, description="Base URL of the rendering service; unset disables SSR"
    )
    static_path: Optional[str] = Field(
        default=None, description="Non-streaming render endpoint path; unset posts to server_url"
    )
    stream_path: str = Field(default="/stream", description="Streaming render endpoint path")
    timeout: float = Field(default=3.0, gt=0, description="Connect/read timeout in seconds")

    # Engine Selection
    engine: str = Field(default="streaming", description="Engine: streaming or process-pool")
    streaming_enabled: bool = Field(
        default=False, description="Stream pages when the engine supports it"
    )

    # Process Pool Configuration
    process_command: Annotated[List[str], NoDecode] = Field(
        default=["bun", "app/frontend/ssr/ssr.ts"], description="Worker process argv"
    )
    process_pool_size: int = Field(default=5, ge=1, description="Worker process pool size")
    process_checkout_timeout: float = Field(
        default=5.0, gt=0, description="Pool checkout wait in seconds"
    )
    process_read_timeout: float = Field(
        default=5.0, gt=0, description="Worker response wait in seconds"
    )
    process_max_line_bytes: int = Field(
        default=16 * 1024 * 1024, description="Largest accepted worker response line"
    )

    # Monitoring Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(default=None, description="Optional rotating log file")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = {"development", "testing", "production"}
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("process_command", mode="before")
    @classmethod
    def parse_process_command(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse the worker command from a JSON list or a shell-style string."""
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("[") and v.endswith("]"):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return shlex.split(v)
        return v

    @field_validator("process_command")
    @classmethod
    def validate_process_command(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("Process command must not be empty")
        return v

    @field_validator("static_path", "stream_path")
    @classmethod
    def normalize_path(cls, v: Optional[str]) -> Optional[str]:
        """Ensure endpoint paths are absolute."""
        if v is None:
            return v
        v = v.strip()
        return v if v.startswith("/") else f"/{v}"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, env_prefix="SSR_"
    )


# Global settings instance - will be initialized when needed
settings = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global settings
    settings = Settings()
    return settings

"""
Configuration Schema

This module defines the Pydantic schema for the rule engine configuration.
Every section has defaults, so an empty config file (or no file at all)
yields a working local setup.
"""
import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from inbox_rules.errors import ErrorCode
from inbox_rules.models import RuleAction


class DatabaseConfig(BaseModel):
    """Persistence configuration section."""
    path: str = Field(default="data/inbox_rules.db", description="SQLite database file")

    @field_validator('path')
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("database path cannot be empty")
        return v


class ParserConfig(BaseModel):
    """Rule parser configuration section."""
    default_action: RuleAction = Field(
        default=RuleAction.VIP,
        description="Action assigned when free text does not state one"
    )

    @field_validator('default_action', mode='before')
    @classmethod
    def upper_action(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v


class AIConfig(BaseModel):
    """AI-assisted extraction configuration section (OpenAI-compatible API)."""
    enabled: bool = Field(default=True, description="Allow escalation to the AI extractor")
    api_key_env: str = Field(default="OPENROUTER_API_KEY", description="Environment variable name for API key")
    api_url: str = Field(default="https://openrouter.ai/api/v1", description="API endpoint")
    model: str = Field(default="openai/gpt-4.1-mini", description="LLM model to use")
    temperature: float = Field(default=0.0, description="LLM temperature (0.0-2.0)")
    retry_attempts: int = Field(default=3, description="Number of attempts for failed API calls")
    retry_delay_seconds: int = Field(default=1, description="Initial delay between retries (exponential backoff)")
    timeout_seconds: int = Field(default=30, description="HTTP timeout per request")

    @field_validator('temperature')
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Validate temperature is in valid range."""
        if not (0.0 <= v <= 2.0):
            raise ValueError(f"Temperature must be between 0.0 and 2.0, got {v}")
        return v

    @field_validator('retry_attempts')
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Retry attempts must be at least 1, got {v}")
        return v

    @field_validator('retry_delay_seconds')
    @classmethod
    def validate_retry_delay(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Retry delay cannot be negative, got {v}")
        return v

    @field_validator('timeout_seconds')
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Timeout must be at least 1 second, got {v}")
        return v

    @field_validator('api_key_env')
    @classmethod
    def validate_api_key_env(cls, v: str) -> str:
        """Validate API key environment variable name is provided."""
        if not v or not v.strip():
            raise ValueError("api_key_env must be specified")
        return v


class AuditConfig(BaseModel):
    """Audit log configuration section."""
    async_writes: bool = Field(default=True, description="Dispatch audit writes off the caller's path")
    list_limit: int = Field(default=100, description="Default number of events returned by listings")

    @field_validator('list_limit')
    @classmethod
    def validate_list_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"list_limit must be at least 1, got {v}")
        return v


class SweepConfig(BaseModel):
    """Suppression sweep configuration section."""
    max_workers: int = Field(default=8, description="Worker threads used to evaluate tasks")

    @field_validator('max_workers')
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        if not (1 <= v <= 64):
            raise ValueError(f"max_workers must be between 1 and 64, got {v}")
        return v


class EngineSettings(BaseModel):
    """
    Root configuration object.

    Built once at process start (see config.load_settings) and passed to
    collaborators by reference.
    """
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    parser: ParserConfig = Field(default_factory=ParserConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    sweep: SweepConfig = Field(default_factory=SweepConfig)

    def get_ai_api_key(self) -> str:
        """
        Get the AI API key from its environment variable.

        Raises:
            ConfigError: If the environment variable is not set
        """
        from inbox_rules.config import ConfigError

        api_key: Optional[str] = os.environ.get(self.ai.api_key_env)
        if not api_key:
            raise ConfigError(
                f"AI API key environment variable '{self.ai.api_key_env}' is not set",
                code=ErrorCode.CONFIG_MISSING
            )
        return api_key

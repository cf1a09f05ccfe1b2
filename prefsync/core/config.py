"""
Configuration settings for the preference synchronization library
"""
from typing import List, Optional, Dict, Any
from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LocalStoreBackend(str, Enum):
    MEMORY = "memory"
    FILE = "file"
    REDIS = "redis"


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Service configuration
    service_name: str = Field(default="prefsync")
    environment: Environment = Field(default=Environment.DEVELOPMENT)
    log_level: LogLevel = Field(default=LogLevel.INFO)

    # Local preference store
    local_store_backend: LocalStoreBackend = Field(default=LocalStoreBackend.MEMORY)
    local_store_path: str = Field(default=".prefsync/local_store.json")
    redis_url: Optional[str] = Field(default=None)
    local_key_prefix: str = Field(default="@")

    # Remote profile store
    remote_profile_collection: str = Field(default="users")

    # Connectivity probing
    connectivity_probe_host: str = Field(default="")
    connectivity_probe_port: int = Field(default=443)
    connectivity_check_interval_seconds: float = Field(default=30.0)
    connectivity_probe_timeout_seconds: float = Field(default=5.0)

    # Cleanup
    cleanup_min_interval_hours: float = Field(default=6.0)

    # Reminders
    task_reminder_lead_minutes: int = Field(default=60)
    default_reminder_hour: int = Field(default=9)
    default_reminder_minute: int = Field(default=0)

    @field_validator("local_key_prefix", mode="before")
    @classmethod
    def parse_key_prefix(cls, v):
        if v is None:
            return ""
        return str(v)

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING

    def validate_configuration(self) -> List[str]:
        """Validate configuration and return list of issues"""
        issues = []

        if self.local_store_backend == LocalStoreBackend.REDIS and not self.redis_url:
            issues.append("REDIS_URL is required when the local store backend is redis")

        if self.local_store_backend == LocalStoreBackend.FILE and not self.local_store_path:
            issues.append("LOCAL_STORE_PATH is required when the local store backend is file")

        if not self.remote_profile_collection:
            issues.append("Remote profile collection name must not be empty")

        # Check connectivity configuration
        if self.connectivity_probe_host:
            if self.connectivity_check_interval_seconds <= 0:
                issues.append("Connectivity check interval must be positive")
            if self.connectivity_probe_timeout_seconds <= 0:
                issues.append("Connectivity probe timeout must be positive")
            if not 0 < self.connectivity_probe_port < 65536:
                issues.append("Connectivity probe port is out of range")

        if self.cleanup_min_interval_hours < 0:
            issues.append("Cleanup interval cannot be negative")

        if self.task_reminder_lead_minutes < 0:
            issues.append("Task reminder lead time cannot be negative")

        if not 0 <= self.default_reminder_hour <= 23:
            issues.append("Default reminder hour must be between 0 and 23")
        if not 0 <= self.default_reminder_minute <= 59:
            issues.append("Default reminder minute must be between 0 and 59")

        return issues

    def get_connectivity_config(self) -> Dict[str, Any]:
        """Get connectivity probe configuration"""
        return {
            "enabled": bool(self.connectivity_probe_host),
            "host": self.connectivity_probe_host,
            "port": self.connectivity_probe_port,
            "interval_seconds": self.connectivity_check_interval_seconds,
            "timeout_seconds": self.connectivity_probe_timeout_seconds
        }

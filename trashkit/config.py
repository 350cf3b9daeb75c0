"""
Configuration module for trashkit.

Provides centralized configuration for the trash lifecycle, the trash query
engine and the audit trail.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union, get_args, get_origin

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class LogLevel(str, Enum):
    """Operational log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class TrashKitConfig(BaseModel):
    """Central configuration for the trash and audit subsystem.

    Configuration can be set programmatically, loaded from environment
    variables or read from a JSON/YAML file.

    Configuration Sources (in order of precedence):
        1. Programmatic settings (highest priority)
        2. Environment variables (TRASHKIT_ prefix)
        3. Configuration files (trashkit.yaml, config.json)
        4. Default values (lowest priority)

    Example:
        Basic configuration:

        >>> config = TrashKitConfig(
        ...     application_name="Event Platform",
        ...     default_page_size=50,
        ... )

        Loading from environment:

        >>> import os
        >>> os.environ['TRASHKIT_AUDIT_WORKERS'] = '4'
        >>> os.environ['TRASHKIT_AUDIT_REQUIRE_ACTOR'] = 'false'
        >>> config = TrashKitConfig.from_env()

        Loading from file:

        >>> config = TrashKitConfig.from_file('trashkit.yaml')

    Environment Variables:
        Every option can be set with the TRASHKIT_ prefix, for example:

        - TRASHKIT_DATABASE_URL
        - TRASHKIT_DEFAULT_PAGE_SIZE
        - TRASHKIT_FANOUT_CONCURRENCY
        - TRASHKIT_AUDIT_ENABLED
    """

    # General settings
    application_name: str = Field(
        "Event Platform", description="Name of the application for audit context"
    )
    environment: str = Field(
        "production", description="Environment (development, staging, production)"
    )
    log_level: LogLevel = Field(LogLevel.INFO, description="Operational log level")

    # Storage settings
    database_url: str = Field(
        "sqlite+aiosqlite:///./trashkit.db",
        description="Async SQLAlchemy database URL",
    )
    database_echo: bool = Field(False, description="Echo SQL statements")

    # Trash listing settings
    default_page_size: int = Field(
        20, description="Default page size for trash listings", gt=0
    )
    max_page_size: int = Field(
        200, description="Upper bound for trash and log page sizes", gt=0
    )
    fanout_concurrency: int = Field(
        4,
        description="Modules queried in parallel when listing all modules",
        gt=0,
        le=64,
    )

    # Audit trail settings
    audit_enabled: bool = Field(True, description="Enable audit trail logging")
    audit_require_actor: bool = Field(
        True, description="Skip audit entries for anonymous actions"
    )
    audit_workers: int = Field(
        2, description="Background workers writing audit entries", gt=0, le=32
    )
    audit_queue_size: int = Field(
        1000, description="Pending audit entries before new ones are dropped", gt=0
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        valid_environments = {"development", "staging", "production", "test"}
        if v.lower() not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(sorted(valid_environments))}"
            )
        return v.lower()

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Ensure the URL names an async driver."""
        if "+" not in v.split("://", 1)[0]:
            raise ValueError(
                "database_url must name an async driver, "
                "e.g. sqlite+aiosqlite:// or postgresql+asyncpg://"
            )
        return v

    @model_validator(mode="after")
    def validate_page_sizes(self) -> "TrashKitConfig":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size cannot exceed max_page_size")
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_env(cls, prefix: str = "TRASHKIT_") -> "TrashKitConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        import os

        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var in os.environ:
                value = os.environ[env_var]

                field_type = field_info.annotation

                # Handle Optional types
                if get_origin(field_type) is Union:
                    args = get_args(field_type)
                    field_type = next(
                        (arg for arg in args if arg is not type(None)), str
                    )

                try:
                    if field_type == bool:
                        config_dict[field_name] = value.lower() in (
                            "true",
                            "1",
                            "yes",
                            "on",
                        )
                    elif field_type == int:
                        config_dict[field_name] = int(value)
                    elif isinstance(field_type, type) and issubclass(field_type, Enum):
                        config_dict[field_name] = field_type(value.upper())
                    else:
                        config_dict[field_name] = value
                except (ValueError, TypeError):
                    # Leave the raw string for pydantic to report
                    config_dict[field_name] = value

        return cls.model_validate(config_dict)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "TrashKitConfig":
        """
        Load configuration from a JSON or YAML file.

        Args:
            path: Path to a .json, .yaml or .yml file

        Returns:
            Configuration instance

        Raises:
            ValueError: If the file extension is not supported
        """
        path = Path(path)
        text = path.read_text(encoding="utf-8")

        if path.suffix == ".json":
            data = json.loads(text)
        elif path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text) or {}
        else:
            raise ValueError(f"Unsupported configuration file type: {path.suffix}")

        return cls.model_validate(data)

    def get_audit_config(self) -> Dict[str, Any]:
        """Get audit trail configuration."""
        return {
            "enabled": self.audit_enabled,
            "require_actor": self.audit_require_actor,
            "workers": self.audit_workers,
            "queue_size": self.audit_queue_size,
        }


# Global configuration instance
_config: Optional[TrashKitConfig] = None


def get_config() -> TrashKitConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        try:
            _config = TrashKitConfig.from_env()
        except ValueError:
            # Fall back to defaults when the environment is malformed
            _config = TrashKitConfig.model_validate({})

    return _config


def set_config(config: TrashKitConfig) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> TrashKitConfig:
    """
    Configure trashkit with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = TrashKitConfig(**kwargs)
    else:
        config_dict = _config.to_dict()
        config_dict.update(kwargs)
        _config = TrashKitConfig(**config_dict)

    return _config

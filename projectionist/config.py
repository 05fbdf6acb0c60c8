"""Projector configuration using pydantic-settings."""

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings


class ProjectorConfiguration(BaseSettings):
    """Runtime settings for a Projector.

    All settings can be configured via environment variables with the
    PROJECTIONIST_ prefix. For example:
    - PROJECTIONIST_NAME=read-models
    - PROJECTIONIST_LOG_LEVEL=INFO

    Attributes:
        name: Identifies the projector (and so the stream it follows) in log
            records. Useful when one process runs several projectors.
        log_level: Level at which every dispatched message is logged.
            Case-insensitive name of a standard logging level.

    Example:
        >>> config = ProjectorConfiguration(log_level="info")
        >>> config.level == logging.INFO
        True
    """

    name: str = "projector"
    log_level: str = "DEBUG"

    model_config = {"env_prefix": "PROJECTIONIST_"}

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def level(self) -> int:
        """Numeric logging level for dispatched messages."""
        return getattr(logging, self.log_level)

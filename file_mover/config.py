"""Configuration management for the File Mover Service.

Settings come from a ``.env`` file in the application directory (the
process working directory unless told otherwise), with process
environment variables taking precedence.  A default ``.env`` is written
on first start so the service always has something to edit.
"""

import logging
from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

ENV_FILE_NAME = ".env"

DEFAULT_ENV_CONTENT = """SRC=./src
DEST=./dest
FILE_NAME=example.txt
"""


class ConfigError(Exception):
    """Raised when the service cannot be configured from its environment."""


class Settings(BaseSettings):
    """Service settings loaded from environment variables and the .env file."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILE_NAME,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Required
    src: str = Field(min_length=1)
    dest: str = Field(min_length=1)
    file_name: str = Field(min_length=1)  # only checked for presence

    # Tuning
    log_level: str = "INFO"
    poll_interval: float = Field(default=1.0, gt=0)  # seconds
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)  # seconds

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, value: str) -> str:
        name = value.strip().upper()
        if not isinstance(logging.getLevelName(name), int):
            raise ValueError(f"unknown log level: {value!r}")
        return name

    def source_dir(self, base: Path) -> Path:
        """Return the source folder, resolving relative paths against *base*."""
        return _resolve(self.src, base)

    def destination_dir(self, base: Path) -> Path:
        """Return the destination folder, resolving relative paths against *base*."""
        return _resolve(self.dest, base)


def _resolve(value: str, base: Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base / path
    return path


def get_env_path(app_dir: Path) -> Path:
    """Return the path to the .env file inside *app_dir*."""
    return app_dir / ENV_FILE_NAME


def ensure_env_file(path: Path) -> bool:
    """Write the default .env at *path* if none exists. Return True if created."""
    if path.exists():
        return False
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(DEFAULT_ENV_CONTENT, encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Error creating .env file {path}: {exc}") from exc
    logger.info(".env file created with default values at %s", path)
    return True


def load_settings(path: Path) -> Settings:
    """Ensure *path* exists, then load and validate settings from it."""
    ensure_env_file(path)
    try:
        settings = Settings(_env_file=path)
    except ValidationError as exc:
        invalid = sorted({str(err["loc"][0]).upper() for err in exc.errors() if err["loc"]})
        raise ConfigError(
            f"Invalid settings in {path}: {', '.join(invalid) or 'unknown'} "
            "(SRC, DEST, and FILE_NAME must be defined)"
        ) from exc
    logger.info("Configuration loaded from %s", path)
    return settings

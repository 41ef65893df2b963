"""
Client settings using Pydantic for type-safe configuration management.

Settings are read from ``REGAUTH_*`` environment variables by default and
can also be loaded from a YAML file with environment variable interpolation.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from regauth import __version__
from regauth.exceptions import ConfigurationError
from regauth.utils.logging_config import LOG_LEVELS, configure_logging

_ENV_REFERENCE = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _default_config_dir() -> Path:
    """Docker CLI convention: ``$DOCKER_CONFIG`` or ``~/.docker``."""
    docker_config = os.environ.get("DOCKER_CONFIG")
    if docker_config:
        return Path(docker_config)
    return Path.home() / ".docker"


class ClientSettings(BaseSettings):
    """Settings for a credential client.

    The default store location lives here rather than in a module-level
    global so that each client (and each test) can be pointed at its own
    directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="REGAUTH_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    config_dir: Path = Field(
        default_factory=_default_config_dir,
        description="Directory holding the default credential store",
    )
    config_file: str = Field(default="config.json", description="Default credential store filename")
    login_timeout: float | None = Field(
        default=30.0, gt=0, description="Default deadline in seconds for a login handshake"
    )
    helper_timeout: float = Field(
        default=10.0, gt=0, description="Deadline in seconds for external credential helper calls"
    )
    insecure_registries: list[str] = Field(
        default_factory=list, description="Registries reached over plain HTTP"
    )
    ca_file: Path | None = Field(default=None, description="CA bundle used to verify registry TLS")
    user_agent: str = Field(default=f"regauth/{__version__}", description="HTTP User-Agent header")
    log_level: str = Field(default="INFO", description="Minimum structlog level")
    json_logs: bool = Field(default=True, description="Render log events as JSON lines")

    @field_validator("config_file")
    @classmethod
    def validate_config_file(cls, value: str) -> str:
        """Reject filenames that would escape the config directory."""
        if not value or Path(value).name != value:
            raise ValueError(f"config_file must be a bare filename, got: {value!r}")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def default_store_path(self) -> Path:
        """Get the default credential store path."""
        return self.config_dir.expanduser() / self.config_file

    def setup_logging(self) -> None:
        """Configure structlog from ``log_level`` and ``json_logs``.

        Left to the application: creating a client never reconfigures
        logging on its own.
        """
        configure_logging(self.log_level, json_logs=self.json_logs)

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> ClientSettings:
        """Build settings from a YAML file.

        ``${VAR}`` and ``${VAR:-default}`` references are replaced with
        environment values before parsing. Keys absent from the file keep
        their environment or built-in defaults.

        Raises:
            ConfigurationError: If the file is missing or unreadable, a
                required variable is unset, the YAML is malformed, or a
                value fails validation
        """
        config_file = Path(config_path)
        try:
            raw = config_file.read_text()
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found: {config_path}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {config_path}: {e.strerror or e}") from e

        try:
            expanded = cls._interpolate_env_vars(raw)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in {config_path}: {e}") from e

        try:
            data = yaml.safe_load(expanded)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if data is None:
            data = {}
        elif not isinstance(data, dict):
            raise ConfigurationError(f"{config_path} must contain a YAML object at the top level")

        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Failed to validate settings in {config_path}: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Replace ``${NAME}`` and ``${NAME:-fallback}`` outside comment lines.

        Raises:
            ValueError: If ``NAME`` is unset and has no fallback
        """

        def substitute(match: re.Match[str]) -> str:
            name, fallback = match.group(1), match.group(2)
            value = os.getenv(name)
            if value is not None:
                return value
            if fallback is not None:
                return fallback
            raise ValueError(f"Environment variable {name} is not set")

        lines = []
        for line in content.split("\n"):
            if not line.lstrip().startswith("#"):
                line = _ENV_REFERENCE.sub(substitute, line)
            lines.append(line)
        return "\n".join(lines)

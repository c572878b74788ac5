"""
Configuration settings with environment variable loading.

Every setting has a development default; override via environment
variables or a .env file.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


@dataclass(frozen=True)
class ServerConfig:
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 3000

    def __post_init__(self):
        if not self.host:
            raise ConfigurationError("HOST must not be empty")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"PORT must be between 1 and 65535, got {self.port}")


@dataclass(frozen=True)
class StorageConfig:
    """Persistent storage configuration."""
    database_path: Path = field(default_factory=lambda: Path("data/tasks.db"))

    def __post_init__(self):
        object.__setattr__(self, 'database_path', Path(self.database_path))


@dataclass(frozen=True)
class CorsConfig:
    """Cross-origin request configuration."""
    enabled: bool = False
    origins: tuple = ("*",)

    def __post_init__(self):
        if self.enabled and not self.origins:
            raise ConfigurationError("CORS_ORIGIN is required when CORS_ENABLED=true")


@dataclass(frozen=True)
class Settings:
    """
    Application settings container.

    All configuration is loaded from environment variables.
    """
    server: ServerConfig
    storage: StorageConfig
    cors: CorsConfig
    environment: str = "development"
    log_level: str = "INFO"

    def __post_init__(self):
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}"
            )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def __repr__(self) -> str:
        return (
            f"Settings(\n"
            f"  server={self.server},\n"
            f"  storage={self.storage},\n"
            f"  cors={self.cors},\n"
            f"  environment={self.environment!r}\n"
            f")"
        )


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Load settings from environment variables.

    Optionally loads from a .env file first.

    Args:
        env_file: Optional path to .env file

    Returns:
        Configured Settings instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    if env_file and env_file.exists():
        _load_env_file(env_file)
    elif Path(".env").exists():
        _load_env_file(Path(".env"))

    try:
        server = ServerConfig(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
        )

        storage = StorageConfig(
            database_path=Path(os.getenv("DATABASE_PATH", "data/tasks.db")),
        )

        origins = tuple(
            origin.strip()
            for origin in os.getenv("CORS_ORIGIN", "*").split(",")
            if origin.strip()
        )
        cors = CorsConfig(
            enabled=os.getenv("CORS_ENABLED", "false").lower() == "true",
            origins=origins,
        )

        settings = Settings(
            server=server,
            storage=storage,
            cors=cors,
            environment=os.getenv("APP_ENV", "development").lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

        logger.info("Configuration loaded successfully")
        logger.debug(f"Settings: {settings}")

        return settings

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e


def _load_env_file(path: Path) -> None:
    """
    Load environment variables from a file.

    Handles KEY=value, quoted values, comments and empty lines.
    Variables already set in the environment take precedence.
    """
    logger.debug(f"Loading environment from {path}")

    with open(path) as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()

            if not line or line.startswith("#"):
                continue

            if "=" not in line:
                logger.warning(f"Invalid line {line_num} in {path}: no '=' found")
                continue

            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip()

            if value.startswith('"') and value.endswith('"'):
                value = value[1:-1]
            elif value.startswith("'") and value.endswith("'"):
                value = value[1:-1]

            if key not in os.environ:
                os.environ[key] = value

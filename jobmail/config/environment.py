"""Environment variable loading and validation."""

import os
from typing import Optional

from .exceptions import ConfigurationError

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class EnvironmentConfig:
    """Environment variable configuration holder."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        ollama_host: Optional[str] = None,
        maildir_path: Optional[str] = None,
        log_level: Optional[str] = None,
        worker_concurrency: Optional[int] = None,
        min_similarity: Optional[float] = None,
        environment: Optional[str] = None,
    ):
        """Initialize environment configuration."""
        self.database_url = database_url or "sqlite:///./data/jobmail.db"
        self.ollama_host = (ollama_host or "http://localhost:11434").rstrip("/")
        self.maildir_path = maildir_path
        self.log_level = log_level
        self.worker_concurrency = worker_concurrency or 3
        self.min_similarity = min_similarity
        self.environment = environment or "local"


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    All variables are optional:
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/jobmail.db)
    - OLLAMA_HOST: Base URL of the model server (default: http://localhost:11434)
    - MAILDIR_PATH: Maildir directory scanned for incoming messages
    - LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - WORKER_CONCURRENCY: Default workers per task kind (1-64, default 3)
    - MIN_SIMILARITY: Blacklist similarity threshold override (-1.0 to 1.0)
    - ENVIRONMENT: Environment label attached to logs (default: local)

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If any variable is present but invalid
    """
    errors = []

    log_level = os.getenv("LOG_LEVEL")
    if log_level and log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(
            f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}"
        )

    worker_concurrency = None
    concurrency_str = os.getenv("WORKER_CONCURRENCY")
    if concurrency_str:
        try:
            worker_concurrency = int(concurrency_str)
            if not 1 <= worker_concurrency <= 64:
                errors.append(
                    f"Invalid WORKER_CONCURRENCY: {worker_concurrency}. Must be between 1 and 64."
                )
        except ValueError:
            errors.append(
                f"Invalid WORKER_CONCURRENCY: '{concurrency_str}'. Must be a valid integer."
            )

    min_similarity = None
    similarity_str = os.getenv("MIN_SIMILARITY")
    if similarity_str:
        try:
            min_similarity = float(similarity_str)
            if not -1.0 <= min_similarity <= 1.0:
                errors.append(
                    f"Invalid MIN_SIMILARITY: {min_similarity}. Must be between -1.0 and 1.0."
                )
        except ValueError:
            errors.append(f"Invalid MIN_SIMILARITY: '{similarity_str}'. Must be a number.")

    ollama_host = os.getenv("OLLAMA_HOST")
    if ollama_host and not ollama_host.startswith(("http://", "https://")):
        errors.append(f"Invalid OLLAMA_HOST: '{ollama_host}'. Must start with http:// or https://")

    maildir_path = os.getenv("MAILDIR_PATH")
    if maildir_path and not os.path.isdir(os.path.expanduser(maildir_path)):
        errors.append(f"MAILDIR_PATH does not exist or is not a directory: '{maildir_path}'")

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and adjust the values",
                "Unset variables you do not need; every variable has a default",
            ],
        )

    return EnvironmentConfig(
        database_url=os.getenv("DATABASE_URL"),
        ollama_host=ollama_host,
        maildir_path=maildir_path,
        log_level=log_level.upper() if log_level else None,
        worker_concurrency=worker_concurrency,
        min_similarity=min_similarity,
        environment=os.getenv("ENVIRONMENT"),
    )

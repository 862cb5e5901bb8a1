"""Enumerations shared by the configuration, logging and bootstrap layers.

MFA domain enumerations (methods, verification results, counter windows)
live in ``localite_mfa.mfa.domain.enums``.
"""

from enum import Enum


class Environment(Enum):
    """Deployment environment, read from ``ENVIRONMENT``."""

    DEVELOPMENT = "dev"
    TESTING = "test"
    STAGING = "staging"
    PRODUCTION = "prod"

    @property
    def is_production(self) -> bool:
        return self is Environment.PRODUCTION


class LogLevel(Enum):
    """Log level name paired with its stdlib ``logging`` number."""

    DEBUG = ("DEBUG", 10)
    INFO = ("INFO", 20)
    WARNING = ("WARNING", 30)
    ERROR = ("ERROR", 40)
    CRITICAL = ("CRITICAL", 50)

    def __init__(self, level_name: str, priority: int):
        self.level_name = level_name
        self.priority = priority

    @classmethod
    def from_string(cls, name: str) -> "LogLevel":
        """Parse ``"debug"``, ``"INFO"`` and so on; ``WARN`` is accepted."""
        wanted = name.strip().upper()
        if wanted == "WARN":
            wanted = "WARNING"
        for level in cls:
            if level.level_name == wanted:
                return level
        raise ValueError(f"Invalid log level: {name}")

    def to_logging_level(self) -> int:
        return self.priority


class LogFormat(Enum):
    JSON = "json"
    CONSOLE = "console"
    PLAIN = "plain"


class StoreBackendType(Enum):
    """Where MFA records and attempt counters are kept."""

    MEMORY = "memory"  # one process only
    REDIS = "redis"

    @property
    def is_shared(self) -> bool:
        """Whether several workers see the same counters."""
        return self is StoreBackendType.REDIS


class SMSProvider(Enum):
    """SMS delivery channel selected by ``SMS_PROVIDER``."""

    HTTP = "http"
    SIMULATED = "simulated"
    MOCK = "mock"

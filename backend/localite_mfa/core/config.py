"""MFA configuration management following pure Python principles.

The configuration system handles environment variables, validation and type
conversion, and provides structured access to every MFA setting.

Architecture:
- EnvironmentLoader: Environment variable loading with typed getters
- TOTPConfig: Authenticator-app parameters
- SMSConfig: SMS challenge and delivery gateway parameters
- BackupCodeConfig: Recovery code generation parameters
- AttemptLimitConfig: Attempt-limiting windows and caps
- StoreConfig: Key-value store connection settings
- MFASettings: Main configuration class aggregating all sections
"""

import os
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any

from localite_mfa.core.enums import (
    Environment,
    LogFormat,
    LogLevel,
    SMSProvider,
    StoreBackendType,
)
from localite_mfa.core.errors import ConfigurationError
from localite_mfa.core.logging import LogConfig

# =====================================================================================
# VALUE VALIDATION
# =====================================================================================


def _check_required(value: Any, key: str, required: bool) -> bool:
    if value is None:
        if required:
            raise ConfigurationError(f"{key} is required", config_key=key)
        return False
    return True


def validate_string(
    value: Any, key: str, required: bool = False, min_length: int | None = None
) -> str | None:
    if not _check_required(value, key, required):
        return None
    value = str(value)
    if min_length is not None and len(value) < min_length:
        raise ConfigurationError(
            f"{key} must be at least {min_length} characters", config_key=key
        )
    return value


def validate_integer(
    value: Any,
    key: str,
    required: bool = False,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int | None:
    if not _check_required(value, key, required):
        return None
    try:
        val = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be an integer", config_key=key) from e
    if min_value is not None and val < min_value:
        raise ConfigurationError(f"{key} must be >= {min_value}", config_key=key)
    if max_value is not None and val > max_value:
        raise ConfigurationError(f"{key} must be <= {max_value}", config_key=key)
    return val


def validate_float(
    value: Any,
    key: str,
    required: bool = False,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float | None:
    if not _check_required(value, key, required):
        return None
    try:
        val = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be a number", config_key=key) from e
    if min_value is not None and val < min_value:
        raise ConfigurationError(f"{key} must be >= {min_value}", config_key=key)
    if max_value is not None and val > max_value:
        raise ConfigurationError(f"{key} must be <= {max_value}", config_key=key)
    return val


def validate_boolean(value: Any, key: str, required: bool = False) -> bool | None:
    if not _check_required(value, key, required):
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes", "on")
    return bool(value)


def validate_url(value: Any, key: str, required: bool = False) -> str | None:
    if not _check_required(value, key, required):
        return None
    if not str(value).startswith(("http://", "https://", "redis://", "rediss://")):
        raise ConfigurationError(f"{key} must be a valid URL", config_key=key)
    return str(value)


def validate_enum(
    value: Any, enum_class: type[Enum], key: str, required: bool = False
) -> Enum | None:
    if not _check_required(value, key, required):
        return None
    if isinstance(value, enum_class):
        return value
    for member in enum_class:
        if str(value).lower() in (str(member.value).lower(), member.name.lower()):
            return member
    allowed = ", ".join(str(member.value) for member in enum_class)
    raise ConfigurationError(
        f"{key} must be one of: {allowed}", config_key=key
    )


# =====================================================================================
# ENVIRONMENT LOADER
# =====================================================================================


class EnvironmentLoader:
    """
    Environment variable loader with type conversion and validation.

    Values from the optional ``.env`` file never override variables that are
    already present in the process environment.
    """

    def __init__(self, env_file: str = ".env"):
        """
        Initialize environment loader.

        Args:
            env_file: Optional environment file to load
        """
        self.env_file = env_file
        self._load_env_file()

    def _load_env_file(self) -> None:
        """Load environment variables from file if it exists."""
        if not os.path.exists(self.env_file):
            return

        try:
            with open(self.env_file, encoding="utf-8") as f:
                for raw_line in f:
                    line = raw_line.strip()

                    # Skip empty lines and comments
                    if not line or line.startswith("#") or "=" not in line:
                        continue

                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip()

                    if (value.startswith('"') and value.endswith('"')) or (
                        value.startswith("'") and value.endswith("'")
                    ):
                        value = value[1:-1]

                    if key not in os.environ:
                        os.environ[key] = value

        except OSError as e:
            raise ConfigurationError(
                f"Failed to load environment file {self.env_file}: {e}"
            ) from e

    def get_string(
        self, key: str, default: str | None = None, required: bool = False, **kwargs
    ) -> str | None:
        """Get string value from environment."""
        value = os.environ.get(key, default)
        return validate_string(value, key, required, **kwargs)

    def get_integer(
        self, key: str, default: int | None = None, required: bool = False, **kwargs
    ) -> int | None:
        """Get integer value from environment."""
        value = os.environ.get(key, default)
        return validate_integer(value, key, required, **kwargs)

    def get_float(
        self, key: str, default: float | None = None, required: bool = False, **kwargs
    ) -> float | None:
        """Get float value from environment."""
        value = os.environ.get(key, default)
        return validate_float(value, key, required, **kwargs)

    def get_boolean(
        self, key: str, default: bool | None = None, required: bool = False
    ) -> bool | None:
        """Get boolean value from environment."""
        value = os.environ.get(key, default)
        return validate_boolean(value, key, required)

    def get_enum(
        self,
        key: str,
        enum_class: type[Enum],
        default: Enum | None = None,
        required: bool = False,
    ) -> Enum | None:
        """Get enum value from environment."""
        value = os.environ.get(key, default.value if default else None)
        return validate_enum(value, enum_class, key, required)

    def get_url(
        self, key: str, default: str | None = None, required: bool = False
    ) -> str | None:
        """Get URL value from environment."""
        value = os.environ.get(key, default)
        return validate_url(value, key, required)


# =====================================================================================
# MFA CONFIGURATION SECTIONS
# =====================================================================================


@dataclass
class TOTPConfig:
    """Authenticator-app (RFC 6238) parameters."""

    issuer: str = "Localite"
    digits: int = 6
    interval: int = 30
    valid_window: int = 1
    max_attempts: int = 3
    qr_format: str = "svg"

    def __post_init__(self):
        if not self.issuer:
            raise ConfigurationError("TOTP issuer cannot be empty", config_key="issuer")
        if self.digits not in (6, 8):
            raise ConfigurationError("TOTP digits must be 6 or 8", config_key="digits")
        if self.interval < 15:
            raise ConfigurationError(
                "TOTP interval must be at least 15 seconds", config_key="interval"
            )
        if self.valid_window < 0:
            raise ConfigurationError(
                "TOTP valid window cannot be negative", config_key="valid_window"
            )
        if self.qr_format not in ("svg", "png"):
            raise ConfigurationError(
                "QR format must be 'svg' or 'png'", config_key="qr_format"
            )


@dataclass
class SMSConfig:
    """SMS challenge lifetime, throttling and delivery gateway settings."""

    code_length: int = 6
    code_expiry_seconds: int = 300
    resend_interval_seconds: int = 60
    max_attempts: int = 3
    daily_send_limit: int = 10
    delivery_timeout_seconds: float = 10.0
    message_template: str = "Your Localite verification code is: {code}. Valid for {minutes} minutes."

    provider: SMSProvider = SMSProvider.SIMULATED
    gateway_url: str | None = None
    gateway_api_key: str | None = None
    sender_id: str = "Localite"

    simulated_delay_seconds: float = 1.0
    simulated_failure_rate: float = 0.05

    def __post_init__(self):
        if self.code_length < 4:
            raise ConfigurationError(
                "SMS code length must be at least 4", config_key="code_length"
            )
        if self.resend_interval_seconds >= self.code_expiry_seconds:
            raise ConfigurationError(
                "Resend interval must be shorter than code expiry",
                config_key="resend_interval_seconds",
            )
        if self.delivery_timeout_seconds <= 0:
            raise ConfigurationError(
                "Delivery timeout must be positive",
                config_key="delivery_timeout_seconds",
            )
        if not 0.0 <= self.simulated_failure_rate <= 1.0:
            raise ConfigurationError(
                "Simulated failure rate must be between 0 and 1",
                config_key="simulated_failure_rate",
            )
        if self.provider == SMSProvider.HTTP and not self.gateway_url:
            raise ConfigurationError(
                "Gateway URL required when using the HTTP SMS provider",
                config_key="gateway_url",
            )

    @property
    def code_expiry_minutes(self) -> int:
        return max(1, self.code_expiry_seconds // 60)


@dataclass
class BackupCodeConfig:
    """Recovery code batch parameters."""

    code_length: int = 8
    code_count: int = 10
    usage_limit: int = 1

    def __post_init__(self):
        if self.code_length < 6:
            raise ConfigurationError(
                "Backup code length must be at least 6", config_key="code_length"
            )
        if not 1 <= self.code_count <= 50:
            raise ConfigurationError(
                "Backup code count must be between 1 and 50", config_key="code_count"
            )


@dataclass
class AttemptLimitConfig:
    """Short-window and daily attempt limiting."""

    short_window_ttl: int = 3600
    daily_window_ttl: int = 86400
    default_daily_limit: int = 20
    sms_daily_limit: int = 10

    def __post_init__(self):
        if self.short_window_ttl <= 0 or self.daily_window_ttl <= 0:
            raise ConfigurationError("Counter TTLs must be positive")
        if self.short_window_ttl > self.daily_window_ttl:
            raise ConfigurationError(
                "Short window cannot outlive the daily window",
                config_key="short_window_ttl",
            )


@dataclass
class StoreConfig:
    """Key-value store connection settings."""

    backend_type: StoreBackendType = StoreBackendType.MEMORY
    redis_url: str | None = None
    redis_password: str | None = None
    redis_db: int = 0
    redis_pool_size: int = 10
    redis_timeout: int = 5
    key_prefix: str = "mfa:"
    cas_max_retries: int = 5

    def __post_init__(self):
        if self.backend_type == StoreBackendType.REDIS and not self.redis_url:
            raise ConfigurationError(
                "Redis URL required when using Redis backend", config_key="redis_url"
            )
        if not self.key_prefix:
            raise ConfigurationError(
                "Key prefix cannot be empty", config_key="key_prefix"
            )
        if self.cas_max_retries < 1:
            raise ConfigurationError(
                "Compare-and-set retries must be at least 1",
                config_key="cas_max_retries",
            )


# =====================================================================================
# SETTINGS
# =====================================================================================


class MFASettings:
    """
    Main MFA settings.

    Usage Example:
        settings = MFASettings()

        issuer = settings.totp.issuer
        redis_url = settings.store.redis_url
    """

    def __init__(self, env_file: str = ".env"):
        self.env_loader = EnvironmentLoader(env_file)

        self._load_application_config()
        self._load_totp_config()
        self._load_sms_config()
        self._load_backup_code_config()
        self._load_attempt_limit_config()
        self._load_store_config()
        self._load_logging_config()
        self._validate_production()

    def _load_application_config(self) -> None:
        self.environment = self.env_loader.get_enum(
            "ENVIRONMENT", Environment, Environment.DEVELOPMENT
        )

    def _load_totp_config(self) -> None:
        self.totp = TOTPConfig(
            issuer=self.env_loader.get_string("MFA_ISSUER", "Localite", min_length=1),
            digits=self.env_loader.get_integer("MFA_TOTP_DIGITS", 6),
            interval=self.env_loader.get_integer("MFA_TOTP_INTERVAL", 30, min_value=15),
            valid_window=self.env_loader.get_integer(
                "MFA_TOTP_VALID_WINDOW", 1, min_value=0, max_value=5
            ),
            max_attempts=self.env_loader.get_integer(
                "MFA_TOTP_MAX_ATTEMPTS", 3, min_value=1
            ),
            qr_format=self.env_loader.get_string("MFA_TOTP_QR_FORMAT", "svg"),
        )

    def _load_sms_config(self) -> None:
        self.sms = SMSConfig(
            code_length=self.env_loader.get_integer("MFA_SMS_CODE_LENGTH", 6),
            code_expiry_seconds=self.env_loader.get_integer(
                "MFA_SMS_CODE_EXPIRY", 300, min_value=60
            ),
            resend_interval_seconds=self.env_loader.get_integer(
                "MFA_SMS_RESEND_INTERVAL", 60, min_value=1
            ),
            max_attempts=self.env_loader.get_integer(
                "MFA_SMS_MAX_ATTEMPTS", 3, min_value=1
            ),
            daily_send_limit=self.env_loader.get_integer(
                "MFA_SMS_DAILY_LIMIT", 10, min_value=1
            ),
            delivery_timeout_seconds=self.env_loader.get_float(
                "MFA_SMS_DELIVERY_TIMEOUT", 10.0
            ),
            provider=self.env_loader.get_enum(
                "SMS_PROVIDER", SMSProvider, SMSProvider.SIMULATED
            ),
            gateway_url=self.env_loader.get_url("SMS_GATEWAY_URL"),
            gateway_api_key=self.env_loader.get_string("SMS_GATEWAY_API_KEY"),
            sender_id=self.env_loader.get_string("SMS_SENDER_ID", "Localite"),
            simulated_delay_seconds=self.env_loader.get_float(
                "SMS_SIMULATED_DELAY", 1.0, min_value=0.0
            ),
            simulated_failure_rate=self.env_loader.get_float(
                "SMS_SIMULATED_FAILURE_RATE", 0.05
            ),
        )

    def _load_backup_code_config(self) -> None:
        self.backup_codes = BackupCodeConfig(
            code_length=self.env_loader.get_integer("MFA_BACKUP_CODE_LENGTH", 8),
            code_count=self.env_loader.get_integer("MFA_BACKUP_CODE_COUNT", 10),
            usage_limit=self.env_loader.get_integer(
                "MFA_BACKUP_CODE_USAGE_LIMIT", 1, min_value=1
            ),
        )

    def _load_attempt_limit_config(self) -> None:
        self.attempt_limits = AttemptLimitConfig(
            short_window_ttl=self.env_loader.get_integer("MFA_ATTEMPT_TTL", 3600),
            daily_window_ttl=self.env_loader.get_integer("MFA_DAILY_ATTEMPT_TTL", 86400),
            default_daily_limit=self.env_loader.get_integer(
                "MFA_DAILY_ATTEMPT_LIMIT", 20, min_value=1
            ),
            sms_daily_limit=self.sms.daily_send_limit,
        )

    def _load_store_config(self) -> None:
        self.store = StoreConfig(
            backend_type=self.env_loader.get_enum(
                "MFA_STORE_BACKEND", StoreBackendType, StoreBackendType.MEMORY
            ),
            redis_url=self.env_loader.get_url("REDIS_URL"),
            redis_password=self.env_loader.get_string("REDIS_PASSWORD"),
            redis_db=self.env_loader.get_integer("REDIS_DB", 0, min_value=0),
            redis_pool_size=self.env_loader.get_integer(
                "REDIS_POOL_SIZE", 10, min_value=1
            ),
            redis_timeout=self.env_loader.get_integer("REDIS_TIMEOUT", 5, min_value=1),
            key_prefix=self.env_loader.get_string("MFA_KEY_PREFIX", "mfa:", min_length=1),
            cas_max_retries=self.env_loader.get_integer(
                "MFA_CAS_MAX_RETRIES", 5, min_value=1
            ),
        )

    def _validate_production(self) -> None:
        if not self.environment.is_production:
            return
        if not self.store.backend_type.is_shared:
            raise ConfigurationError(
                "Production requires a shared store; attempt limits would be per worker",
                config_key="MFA_STORE_BACKEND",
            )
        if self.sms.provider == SMSProvider.MOCK:
            raise ConfigurationError(
                "The mock SMS provider cannot be used in production",
                config_key="SMS_PROVIDER",
            )

    def _load_logging_config(self) -> None:
        try:
            level = LogLevel.from_string(self.env_loader.get_string("LOG_LEVEL", "INFO"))
        except ValueError as e:
            raise ConfigurationError(str(e), config_key="LOG_LEVEL") from e

        self.logging = LogConfig(
            level=level,
            format=self.env_loader.get_enum("LOG_FORMAT", LogFormat, LogFormat.JSON),
            environment=self.environment,
        )

    def to_dict(self, include_secrets: bool = False) -> dict[str, Any]:
        """
        Convert settings to dictionary.

        Args:
            include_secrets: Whether to include secret values
        """
        data = {
            "environment": self.environment.value,
            "totp_issuer": self.totp.issuer,
            "totp_interval": self.totp.interval,
            "sms_provider": self.sms.provider.value,
            "sms_code_expiry": self.sms.code_expiry_seconds,
            "sms_daily_limit": self.sms.daily_send_limit,
            "backup_code_count": self.backup_codes.code_count,
            "store_backend": self.store.backend_type.value,
            "key_prefix": self.store.key_prefix,
            "logging": self.logging.to_dict(),
        }

        if include_secrets:
            data.update(
                {
                    "redis_url": self.store.redis_url,
                    "sms_gateway_api_key": self.sms.gateway_api_key,
                }
            )

        return data


# =====================================================================================
# FACTORY FUNCTIONS
# =====================================================================================


@lru_cache
def get_settings(env_file: str = ".env") -> MFASettings:
    """
    Get cached settings instance.

    Args:
        env_file: Environment file to load
    """
    return MFASettings(env_file)


__all__ = [
    "AttemptLimitConfig",
    "BackupCodeConfig",
    "EnvironmentLoader",
    "MFASettings",
    "SMSConfig",
    "StoreConfig",
    "TOTPConfig",
    "get_settings",
]

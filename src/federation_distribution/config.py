import logging
import os
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# ZIP cannot represent timestamps before 1980.
_MIN_ZIP_YEAR = 1980


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    # --- Required Variables ---
    efgs_base_url: str
    distribution_bucket: str
    service_name: str
    environment: str

    # --- Gateway Client ---
    efgs_timeout_seconds: float
    efgs_client_cert_path: str | None
    efgs_client_key_path: str | None

    # --- Retry Policy for Transport Errors ---
    efgs_max_retries: int
    efgs_retry_base_delay_ms: int
    efgs_retry_max_delay_ms: int

    # --- Assembly & Publishing ---
    output_root: str
    distribution_prefix: str
    zip_epoch: datetime
    kms_key_id: str | None

    # --- Runtime ---
    log_level: str
    timeout_guard_threshold_seconds: int

    # --- Derived Properties ---
    @property
    def timeout_guard_threshold_ms(self) -> int:
        return self.timeout_guard_threshold_seconds * 1000

    @property
    def zip_date_time(self) -> tuple[int, int, int, int, int, int]:
        epoch = self.zip_epoch
        return (epoch.year, epoch.month, epoch.day, epoch.hour, epoch.minute, epoch.second)

    @property
    def client_cert(self) -> tuple[str, str] | None:
        if self.efgs_client_cert_path and self.efgs_client_key_path:
            return (self.efgs_client_cert_path, self.efgs_client_key_path)
        return None

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            # --- Handle required string variables ---
            efgs_base_url = os.environ["EFGS_BASE_URL"].rstrip("/")
            distribution_bucket = os.environ["DISTRIBUTION_BUCKET_NAME"]
            service_name = os.environ["SERVICE_NAME"]
            environment = os.environ["ENVIRONMENT"]

            if not efgs_base_url.startswith(("http://", "https://")):
                raise ValueError("EFGS_BASE_URL must be an http(s) URL.")

            # --- Gateway client settings ---
            efgs_timeout_seconds = float(os.getenv("EFGS_TIMEOUT_SECONDS", "10"))
            if efgs_timeout_seconds <= 0:
                raise ValueError("EFGS_TIMEOUT_SECONDS must be a positive number.")

            efgs_client_cert_path = os.getenv("EFGS_CLIENT_CERT_PATH") or None
            efgs_client_key_path = os.getenv("EFGS_CLIENT_KEY_PATH") or None
            if bool(efgs_client_cert_path) != bool(efgs_client_key_path):
                raise ValueError(
                    "EFGS_CLIENT_CERT_PATH and EFGS_CLIENT_KEY_PATH must be set together."
                )

            # --- Retry policy ---
            efgs_max_retries = int(os.getenv("EFGS_MAX_RETRIES", "3"))
            if efgs_max_retries < 0:
                raise ValueError("EFGS_MAX_RETRIES must be a non-negative integer.")

            efgs_retry_base_delay_ms = int(os.getenv("EFGS_RETRY_BASE_DELAY_MS", "500"))
            if efgs_retry_base_delay_ms < 0:
                raise ValueError(
                    "EFGS_RETRY_BASE_DELAY_MS must be a non-negative integer."
                )

            efgs_retry_max_delay_ms = int(os.getenv("EFGS_RETRY_MAX_DELAY_MS", "5000"))
            if efgs_retry_max_delay_ms < efgs_retry_base_delay_ms:
                raise ValueError(
                    "EFGS_RETRY_MAX_DELAY_MS must not be lower than EFGS_RETRY_BASE_DELAY_MS."
                )

            # --- Assembly settings ---
            output_root = os.getenv("OUTPUT_ROOT", "/tmp/distribution")
            distribution_prefix = os.getenv("DISTRIBUTION_PREFIX", "version/v1").strip("/")

            zip_epoch = datetime.fromisoformat(
                os.getenv("ZIP_EPOCH", "1980-01-01T00:00:00")
            )
            if zip_epoch.year < _MIN_ZIP_YEAR:
                raise ValueError("ZIP_EPOCH must not be earlier than 1980-01-01.")

            kms_key_id = os.getenv("KMS_KEY_ID") or None

            # --- Handle special-case variables like log level ---
            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            allowed_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
            if log_level not in allowed_log_levels:
                raise ValueError(
                    f"LOG_LEVEL must be one of {allowed_log_levels}, not '{log_level}'"
                )

            timeout_guard_threshold_seconds = int(
                os.getenv("TIMEOUT_GUARD_THRESHOLD_SECONDS", "10")
            )
            if timeout_guard_threshold_seconds <= 0:
                raise ValueError(
                    "TIMEOUT_GUARD_THRESHOLD_SECONDS must be a positive integer."
                )

        except KeyError as e:
            raise ConfigurationError(
                f"Missing required environment variable: {e.args[0]}"
            ) from e
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        return cls(
            efgs_base_url=efgs_base_url,
            distribution_bucket=distribution_bucket,
            service_name=service_name,
            environment=environment,
            efgs_timeout_seconds=efgs_timeout_seconds,
            efgs_client_cert_path=efgs_client_cert_path,
            efgs_client_key_path=efgs_client_key_path,
            efgs_max_retries=efgs_max_retries,
            efgs_retry_base_delay_ms=efgs_retry_base_delay_ms,
            efgs_retry_max_delay_ms=efgs_retry_max_delay_ms,
            output_root=output_root,
            distribution_prefix=distribution_prefix,
            zip_epoch=zip_epoch,
            kms_key_id=kms_key_id,
            log_level=log_level,
            timeout_guard_threshold_seconds=timeout_guard_threshold_seconds,
        )


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Loads the application configuration from environment variables.
    The result is cached using lru_cache, so the environment is only read once
    on the first call. This avoids import-time side effects.
    """
    logger.info("Loading application configuration from environment...")
    return AppConfig.load_from_env()

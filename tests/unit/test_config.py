# tests/unit/test_config.py

from datetime import datetime

import pytest

from federation_distribution.config import get_config
from federation_distribution.exceptions import ConfigurationError

_OPTIONAL_VARS = [
    "EFGS_TIMEOUT_SECONDS",
    "EFGS_CLIENT_CERT_PATH",
    "EFGS_CLIENT_KEY_PATH",
    "EFGS_MAX_RETRIES",
    "EFGS_RETRY_BASE_DELAY_MS",
    "EFGS_RETRY_MAX_DELAY_MS",
    "OUTPUT_ROOT",
    "DISTRIBUTION_PREFIX",
    "ZIP_EPOCH",
    "KMS_KEY_ID",
    "LOG_LEVEL",
    "TIMEOUT_GUARD_THRESHOLD_SECONDS",
]


@pytest.fixture(autouse=True)
def clear_config_cache():
    """
    Clear the lru_cache for get_config around each test so every test reads
    its own monkeypatched environment.
    """
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def mock_required_env(monkeypatch):
    """Sets only the required variables and removes every optional one."""
    monkeypatch.setenv("EFGS_BASE_URL", "https://efgs.example.test/")
    monkeypatch.setenv("DISTRIBUTION_BUCKET_NAME", "test-dist-bucket")
    monkeypatch.setenv("SERVICE_NAME", "test-service")
    monkeypatch.setenv("ENVIRONMENT", "test")
    for name in _OPTIONAL_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_valid_env(mock_required_env, monkeypatch):
    """Sets a full, valid environment for a single test."""
    monkeypatch.setenv("EFGS_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("EFGS_CLIENT_CERT_PATH", "/certs/client.pem")
    monkeypatch.setenv("EFGS_CLIENT_KEY_PATH", "/certs/client.key")
    monkeypatch.setenv("EFGS_MAX_RETRIES", "5")
    monkeypatch.setenv("EFGS_RETRY_BASE_DELAY_MS", "100")
    monkeypatch.setenv("EFGS_RETRY_MAX_DELAY_MS", "1000")
    monkeypatch.setenv("OUTPUT_ROOT", "/tmp/out")
    monkeypatch.setenv("DISTRIBUTION_PREFIX", "/version/v2/")
    monkeypatch.setenv("ZIP_EPOCH", "2020-06-15T12:30:45")
    monkeypatch.setenv("KMS_KEY_ID", "alias/dist")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("TIMEOUT_GUARD_THRESHOLD_SECONDS", "5")


def test_get_config_happy_path(mock_valid_env):
    """Tests that configuration loads correctly when all env vars are set."""
    config = get_config()

    assert config.efgs_base_url == "https://efgs.example.test"
    assert config.distribution_bucket == "test-dist-bucket"
    assert config.service_name == "test-service"
    assert config.environment == "test"
    assert config.efgs_timeout_seconds == 2.5
    assert config.efgs_max_retries == 5
    assert config.efgs_retry_base_delay_ms == 100
    assert config.efgs_retry_max_delay_ms == 1000
    assert config.output_root == "/tmp/out"
    assert config.distribution_prefix == "version/v2"
    assert config.zip_epoch == datetime(2020, 6, 15, 12, 30, 45)
    assert config.kms_key_id == "alias/dist"
    assert config.log_level == "DEBUG"
    # Derived properties
    assert config.client_cert == ("/certs/client.pem", "/certs/client.key")
    assert config.zip_date_time == (2020, 6, 15, 12, 30, 45)
    assert config.timeout_guard_threshold_ms == 5_000


def test_get_config_uses_defaults(mock_required_env):
    """Tests that optional variables fall back to their default values."""
    config = get_config()

    assert config.efgs_timeout_seconds == 10.0
    assert config.client_cert is None
    assert config.efgs_max_retries == 3
    assert config.efgs_retry_base_delay_ms == 500
    assert config.efgs_retry_max_delay_ms == 5000
    assert config.output_root == "/tmp/distribution"
    assert config.distribution_prefix == "version/v1"
    assert config.zip_date_time == (1980, 1, 1, 0, 0, 0)
    assert config.kms_key_id is None
    assert config.log_level == "INFO"
    assert config.timeout_guard_threshold_seconds == 10


def test_get_config_is_cached(mock_required_env, monkeypatch):
    first = get_config()
    monkeypatch.setenv("SERVICE_NAME", "changed")

    assert get_config() is first


@pytest.mark.parametrize(
    "missing_var",
    ["EFGS_BASE_URL", "DISTRIBUTION_BUCKET_NAME", "SERVICE_NAME", "ENVIRONMENT"],
)
def test_get_config_raises_on_missing_variable(mock_required_env, monkeypatch, missing_var):
    monkeypatch.delenv(missing_var)

    with pytest.raises(ConfigurationError, match=missing_var):
        get_config()


@pytest.mark.parametrize(
    "var_name, invalid_value",
    [
        ("EFGS_BASE_URL", "ftp://efgs.example.test"),
        ("EFGS_TIMEOUT_SECONDS", "0"),
        ("EFGS_TIMEOUT_SECONDS", "fast"),
        ("EFGS_CLIENT_CERT_PATH", "/certs/only-cert.pem"),
        ("EFGS_MAX_RETRIES", "-1"),
        ("EFGS_RETRY_BASE_DELAY_MS", "-5"),
        ("EFGS_RETRY_MAX_DELAY_MS", "100"),
        ("ZIP_EPOCH", "1970-01-01T00:00:00"),
        ("ZIP_EPOCH", "yesterday"),
        ("LOG_LEVEL", "VERBOSE"),
        ("TIMEOUT_GUARD_THRESHOLD_SECONDS", "0"),
    ],
)
def test_get_config_raises_on_invalid_value(mock_required_env, monkeypatch, var_name, invalid_value):
    monkeypatch.setenv(var_name, invalid_value)

    with pytest.raises(ConfigurationError) as exc_info:
        get_config()

    assert exc_info.value.error_code == "CONFIGURATION_ERROR"

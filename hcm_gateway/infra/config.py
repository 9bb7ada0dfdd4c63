"""Configuration management with secrets support."""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from hcm_gateway.infra.error_handler import ConfigError

# Load .env file from project root; existing environment variables take precedence
project_root = Path(__file__).parent.parent.parent
env_file = project_root / ".env"
load_dotenv(dotenv_path=env_file, override=False)

AUTH_MODES = ("oauth", "basic")
CA_BUNDLE_MODES = ("append", "replace")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    """Read an environment variable, stripping quotes added by shells or .env files."""
    value = os.getenv(key)
    if value is None:
        return default
    value = value.strip().strip("\"'")
    return value if value else default


def _env_secret(key: str) -> Optional[str]:
    """Read a secret given either directly or as a ``<KEY>_REF`` reference."""
    from hcm_gateway.infra.secrets import get_secret
    return get_secret(_env(f"{key}_REF", ""), fallback=_env(key))


class Config:
    """Gateway configuration read from the environment.

    Reading never fails; ``validate()`` reports every missing or invalid value
    at once so startup can abort before serving a request.
    """

    def __init__(self):
        self._errors: List[str] = []

        # Oracle HCM REST API
        self.HCM_BASE_URL: Optional[str] = _env("HCM_BASE_URL")
        self.HCM_API_VERSION: str = _env("HCM_API_VERSION", "11.13.18.05")
        self.REST_FRAMEWORK_VERSION: str = _env("REST_FRAMEWORK_VERSION", "9")

        # Authentication
        self.HCM_AUTH_MODE: str = (_env("HCM_AUTH_MODE", "oauth")).lower()
        self.HCM_TOKEN_URL: Optional[str] = _env("HCM_TOKEN_URL")
        self.HCM_CLIENT_ID: Optional[str] = _env("HCM_CLIENT_ID")
        self.HCM_CLIENT_SECRET: Optional[str] = _env_secret("HCM_CLIENT_SECRET")
        self.HCM_TOKEN_SCOPE: Optional[str] = _env("HCM_TOKEN_SCOPE")
        self.HCM_USERNAME: Optional[str] = _env("HCM_USERNAME")
        self.HCM_PASSWORD: Optional[str] = _env_secret("HCM_PASSWORD")
        self.HCM_TOKEN_SAFETY_MARGIN: float = self._float("HCM_TOKEN_SAFETY_MARGIN", 60.0)
        self.HCM_TOKEN_MAX_ATTEMPTS: int = self._int("HCM_TOKEN_MAX_ATTEMPTS", 3)

        # TLS
        self.HCM_CA_BUNDLE: Optional[str] = _env("HCM_CA_BUNDLE")
        self.HCM_CA_BUNDLE_MODE: str = (_env("HCM_CA_BUNDLE_MODE", "append")).lower()

        # Timeouts and retry policy
        self.HCM_REQUEST_TIMEOUT: float = self._float("HCM_REQUEST_TIMEOUT", 30.0)
        self.HCM_TOTAL_DEADLINE: float = self._float("HCM_TOTAL_DEADLINE", 90.0)
        self.HCM_MAX_ATTEMPTS: int = self._int("HCM_MAX_ATTEMPTS", 3)
        self.HCM_BACKOFF_INITIAL: float = self._float("HCM_BACKOFF_INITIAL", 0.5)
        self.HCM_BACKOFF_MAX: float = self._float("HCM_BACKOFF_MAX", 8.0)
        self.HCM_RETRY_UNSAFE_ON_5XX: bool = self._bool("HCM_RETRY_UNSAFE_ON_5XX", False)
        self.HCM_MAX_CONNECTIONS: int = self._int("HCM_MAX_CONNECTIONS", 20)

        # Application
        self.LOG_LEVEL: str = (_env("LOG_LEVEL", "INFO")).upper()
        self.HOST: str = _env("HOST", "0.0.0.0")
        self.PORT: int = self._int("PORT", 8080)
        self.MCP_JSON_RESPONSE: bool = self._bool("MCP_JSON_RESPONSE", False)
        self.OTEL_EXPORTER_OTLP_ENDPOINT: Optional[str] = _env("OTEL_EXPORTER_OTLP_ENDPOINT")

    def _int(self, key: str, default: int) -> int:
        raw = _env(key)
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError:
            self._errors.append(f"{key} must be an integer, got {raw!r}")
            return default

    def _float(self, key: str, default: float) -> float:
        raw = _env(key)
        if raw is None:
            return default
        try:
            return float(raw)
        except ValueError:
            self._errors.append(f"{key} must be a number, got {raw!r}")
            return default

    def _bool(self, key: str, default: bool) -> bool:
        raw = _env(key)
        if raw is None:
            return default
        return raw.lower() in ("1", "true", "yes", "on")

    @property
    def hcm_resources_url(self) -> str:
        """Root of the versioned HCM REST resources."""
        base = (self.HCM_BASE_URL or "").rstrip("/")
        return f"{base}/hcmRestApi/resources/{self.HCM_API_VERSION}"

    def validate(self) -> None:
        """
        Check required values and value ranges.

        Raises:
            ConfigError: Listing every problem found
        """
        errors = list(self._errors)

        if not self.HCM_BASE_URL:
            errors.append("HCM_BASE_URL must be set")
        elif not self.HCM_BASE_URL.startswith(("https://", "http://")):
            errors.append("HCM_BASE_URL must be an http(s) URL")

        if self.HCM_AUTH_MODE not in AUTH_MODES:
            errors.append(f"HCM_AUTH_MODE must be one of {', '.join(AUTH_MODES)}")
        elif self.HCM_AUTH_MODE == "oauth":
            for key in ("HCM_TOKEN_URL", "HCM_CLIENT_ID", "HCM_CLIENT_SECRET"):
                if not getattr(self, key):
                    errors.append(f"{key} must be set when HCM_AUTH_MODE=oauth")
        else:
            for key in ("HCM_USERNAME", "HCM_PASSWORD"):
                if not getattr(self, key):
                    errors.append(f"{key} must be set when HCM_AUTH_MODE=basic")

        if self.HCM_CA_BUNDLE_MODE not in CA_BUNDLE_MODES:
            errors.append(f"HCM_CA_BUNDLE_MODE must be one of {', '.join(CA_BUNDLE_MODES)}")
        if self.HCM_CA_BUNDLE_MODE == "replace" and not self.HCM_CA_BUNDLE:
            errors.append("HCM_CA_BUNDLE must be set when HCM_CA_BUNDLE_MODE=replace")

        if self.HCM_MAX_ATTEMPTS < 1:
            errors.append("HCM_MAX_ATTEMPTS must be at least 1")
        if self.HCM_TOKEN_MAX_ATTEMPTS < 1:
            errors.append("HCM_TOKEN_MAX_ATTEMPTS must be at least 1")
        if self.HCM_BACKOFF_INITIAL <= 0:
            errors.append("HCM_BACKOFF_INITIAL must be positive")
        else:
            # Retry delays must keep growing: the last one may not reach the cap
            for key in ("HCM_MAX_ATTEMPTS", "HCM_TOKEN_MAX_ATTEMPTS"):
                attempts = getattr(self, key)
                if attempts > 1 and self.HCM_BACKOFF_INITIAL * 2 ** (attempts - 2) > self.HCM_BACKOFF_MAX:
                    errors.append(f"HCM_BACKOFF_MAX is too small for {key}={attempts}")
        if self.HCM_REQUEST_TIMEOUT <= 0 or self.HCM_TOTAL_DEADLINE <= 0:
            errors.append("HCM_REQUEST_TIMEOUT and HCM_TOTAL_DEADLINE must be positive")
        if self.LOG_LEVEL not in LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        if not 0 < self.PORT < 65536:
            errors.append("PORT must be between 1 and 65535")

        if errors:
            raise ConfigError("Invalid configuration: " + "; ".join(errors))


_config: Optional[Config] = None


def get_config() -> Config:
    """Return the process-wide configuration, reading the environment once."""
    global _config
    if _config is None:
        _config = Config()
    return _config

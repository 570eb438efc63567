"""Configuration management with validation.

All settings come from environment variables and are validated once at
startup, so a misconfigured operator fails before touching Grafana.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from .grafana import SSO_PROVIDER


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RECONCILE_INTERVAL_SECONDS = 60
MIN_RECONCILE_INTERVAL_SECONDS = 10
MAX_RECONCILE_INTERVAL_SECONDS = 3600

DEFAULT_MAX_CONCURRENT_RECONCILES = 4
MAX_CONCURRENT_RECONCILES = 64

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MAX_REQUEST_TIMEOUT_SECONDS = 300

DEFAULT_CREDENTIALS_FILE = "/etc/orgmapper/credentials"
DEFAULT_TENANTS_DIR = "/tenants"
STATUS_DIR_NAME = ".status"

# Security constraints
MAX_TENANT_FILE_SIZE_BYTES = 256 * 1024  # 256KB max tenant manifest

VALID_PROVIDER_PATTERN = r"^[a-z][a-z0-9_]{0,63}$"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError listing every problem at once.
    """

    # Required fields
    grafana_url: str

    # Paths
    credentials_file: Path = field(default_factory=lambda: Path(DEFAULT_CREDENTIALS_FILE))
    tenants_dir: Path = field(default_factory=lambda: Path(DEFAULT_TENANTS_DIR))
    status_dir: Path | None = None

    sso_provider: str = SSO_PROVIDER

    # Timing
    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES

    # Behavior
    dry_run: bool = False

    # Logging
    json_logging: bool = True
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        import re

        errors: list[str] = []

        if not self.grafana_url:
            errors.append("GRAFANA_URL is required")
        elif not re.match(r"^https?://[^/\s]+", self.grafana_url):
            errors.append(f"GRAFANA_URL must be an http(s) URL: {self.grafana_url}")

        if not re.match(VALID_PROVIDER_PATTERN, self.sso_provider):
            errors.append(
                f"SSO_PROVIDER must match pattern {VALID_PROVIDER_PATTERN}: {self.sso_provider}"
            )

        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if not 1 <= self.request_timeout_seconds <= MAX_REQUEST_TIMEOUT_SECONDS:
            errors.append(
                f"REQUEST_TIMEOUT must be between 1 and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if not 1 <= self.max_concurrent_reconciles <= MAX_CONCURRENT_RECONCILES:
            errors.append(
                f"MAX_CONCURRENT_RECONCILES must be between 1 and {MAX_CONCURRENT_RECONCILES}"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if not self.tenants_dir.is_dir():
            errors.append(f"Tenants directory does not exist: {self.tenants_dir}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def effective_status_dir(self) -> Path:
        """Directory holding persisted tenant status."""
        return self.status_dir or self.tenants_dir / STATUS_DIR_NAME

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            GRAFANA_URL: Grafana root URL, optionally with a sub-path (required)
            GRAFANA_CREDENTIALS_FILE: Token or basic-auth JSON file
                (default: /etc/orgmapper/credentials)
            SSO_PROVIDER: SSO settings key to manage (default: generic_oauth)
            TENANTS_DIR: Directory of Tenant YAML manifests (default: /tenants)
            STATUS_DIR: Directory for persisted status (default: TENANTS_DIR/.status)
            RECONCILE_INTERVAL: Seconds between reconciliation passes (default: 60)
            REQUEST_TIMEOUT: Grafana request timeout in seconds (default: 30)
            MAX_CONCURRENT_RECONCILES: Tenants reconciled in parallel (default: 4)
            DRY_RUN: If "true", only observe without writing (default: false)
            ENABLE_JSON_LOGGING: Emit JSON log lines (default: true)
            LOG_LEVEL: Root log level (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        status_dir = os.environ.get("STATUS_DIR")

        return cls(
            grafana_url=os.environ.get("GRAFANA_URL", ""),
            credentials_file=Path(
                os.environ.get("GRAFANA_CREDENTIALS_FILE", DEFAULT_CREDENTIALS_FILE)
            ),
            tenants_dir=Path(os.environ.get("TENANTS_DIR", DEFAULT_TENANTS_DIR)),
            status_dir=Path(status_dir) if status_dir else None,
            sso_provider=os.environ.get("SSO_PROVIDER", SSO_PROVIDER),
            reconcile_interval_seconds=get_int(
                "RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            request_timeout_seconds=get_int("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            max_concurrent_reconciles=get_int(
                "MAX_CONCURRENT_RECONCILES", DEFAULT_MAX_CONCURRENT_RECONCILES
            ),
            dry_run=get_bool("DRY_RUN", False),
            json_logging=get_bool("ENABLE_JSON_LOGGING", True),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )

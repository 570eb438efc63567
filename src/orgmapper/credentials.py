"""Grafana credential loading.

Credentials are read from a mounted file (typically a Kubernetes Secret
volume), never from environment variables. The file holds either:

- a bare API/service-account token, or
- JSON ``{"username": "...", "password": "..."}`` for basic auth.

SECURITY INVARIANTS:
1. Inline credential environment variables are rejected at startup
2. Credential files are size-limited before reading
3. Credential values never appear in repr() or log output
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Environment variables that would carry credentials inline
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "GRAFANA_API_KEY",
    "GRAFANA_TOKEN",
    "GRAFANA_PASSWORD",
)

MAX_CREDENTIALS_FILE_SIZE_BYTES = 64 * 1024


class CredentialError(Exception):
    """Raised when credentials are missing, malformed or supplied inline."""

    pass


@dataclass(frozen=True)
class Credentials:
    """Grafana API credentials: a token, or a username/password pair."""

    token: str = field(default="", repr=False)
    username: str = ""
    password: str = field(default="", repr=False)

    @property
    def is_basic_auth(self) -> bool:
        return bool(self.username and self.password)

    def __post_init__(self) -> None:
        if not self.token and not self.is_basic_auth:
            raise CredentialError("credentials must contain a token or a username and password")


def parse_credentials(raw: bytes) -> Credentials:
    """Parse raw credential bytes.

    JSON with non-empty "username" and "password" selects basic auth.
    Anything else is treated as a bearer token, surrounding whitespace removed.

    Raises:
        CredentialError: If the content is empty.
    """
    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        data = None

    if isinstance(data, dict):
        username = data.get("username")
        password = data.get("password")
        if isinstance(username, str) and isinstance(password, str) and username and password:
            return Credentials(username=username, password=password)

    try:
        token = raw.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise CredentialError("credentials are not valid UTF-8") from e
    if not token:
        raise CredentialError("credentials are empty")
    return Credentials(token=token)


def load_credentials(path: Path) -> Credentials:
    """Load credentials from a file.

    Raises:
        CredentialError: If the file is missing, too large, or empty.
    """
    try:
        size = path.stat().st_size
    except OSError as e:
        raise CredentialError(f"cannot read credentials file {path}: {e}") from e

    if size > MAX_CREDENTIALS_FILE_SIZE_BYTES:
        raise CredentialError(
            f"credentials file {path} exceeds {MAX_CREDENTIALS_FILE_SIZE_BYTES} bytes"
        )

    try:
        raw = path.read_bytes()
    except OSError as e:
        raise CredentialError(f"cannot read credentials file {path}: {e}") from e

    credentials = parse_credentials(raw)
    logger.info(
        "Loaded Grafana credentials",
        extra={
            "credentials_file": str(path),
            "auth_type": "basic" if credentials.is_basic_auth else "token",
        },
    )
    return credentials


def reject_inline_credentials() -> None:
    """Fail if credentials were supplied through environment variables.

    Raises:
        CredentialError: If any forbidden variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Inline credentials detected in environment",
                extra={"security_event": "credential_detected", "env_var": env_var},
            )
            raise CredentialError(
                f"{env_var} is set; mount credentials as a file and point "
                "GRAFANA_CREDENTIALS_FILE at it instead"
            )

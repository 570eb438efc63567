"""Grafana SSO settings access and org_mapping synchronization.

Grafana stores the generic OAuth provider configuration as one settings
object. orgMapping is one key among many provider-specific keys (clientId,
scopes, role attribute paths, ...) that this module does not understand and
must never drop. Every write is therefore read-modify-write:

    settings = GET /api/v1/sso-settings/<provider>   (404 -> {})
    settings["orgMapping"] = build_org_mapping(all tenants)
    PUT /api/v1/sso-settings/<provider>  {"provider": ..., "settings": settings}

There is no locking: concurrent writers race and the last one wins. Because
each writer recomputes the document from the complete tenant set, a lost
write is repaired by the next reconciliation of the overwritten tenant.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Protocol
from urllib.parse import urlsplit

import httpx

from .credentials import Credentials
from .org_mapping import TenantMapping, build_org_mapping

logger = logging.getLogger(__name__)

SSO_PROVIDER = "generic_oauth"
ORG_MAPPING_KEY = "orgMapping"

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0

# Truncate error bodies in exception messages
MAX_ERROR_BODY_CHARS = 500


class ExternalAPIError(Exception):
    """Raised when a call to the Grafana API fails.

    Covers transport errors, authentication failures and validation
    rejections. status_code is None when no HTTP response was received.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(ExternalAPIError):
    """Raised when the SSO provider has never been configured (HTTP 404)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)


class MalformedSettingsError(ExternalAPIError):
    """Raised when Grafana answers with a settings payload that is not an object."""


class SSOClient(Protocol):
    """The subset of the Grafana SSO settings API used by this package."""

    async def get_provider_settings(self, provider: str) -> dict[str, Any]: ...

    async def update_provider_settings(self, provider: str, settings: dict[str, Any]) -> None: ...


class GrafanaSSOClient:
    """Async client for Grafana's /api/v1/sso-settings endpoints.

    The client wraps an httpx.AsyncClient whose base_url already points at
    the Grafana API root (see new_client). Ownership of the underlying
    client follows the async context manager protocol.
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def __aenter__(self) -> GrafanaSSOClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def get_provider_settings(self, provider: str = SSO_PROVIDER) -> dict[str, Any]:
        """Fetch the settings object for a provider.

        Raises:
            NotFoundError: If the provider has not been configured.
            ExternalAPIError: On any other failure, including a payload whose
                settings are not a JSON object.
        """
        response = await self._request("GET", f"v1/sso-settings/{provider}")
        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundError(f"SSO provider '{provider}' is not configured")
        _raise_for_status(response, f"cannot get SSO settings for '{provider}'")

        try:
            payload = response.json()
        except ValueError as e:
            raise ExternalAPIError(
                f"SSO settings response for '{provider}' is not JSON",
                status_code=response.status_code,
            ) from e

        settings = payload.get("settings") if isinstance(payload, dict) else None
        if not isinstance(settings, dict):
            raise MalformedSettingsError(
                f"SSO settings for '{provider}' is not a map",
                status_code=response.status_code,
            )
        return settings

    async def update_provider_settings(
        self, provider: str, settings: dict[str, Any]
    ) -> None:
        """Replace the full settings object for a provider.

        Raises:
            ExternalAPIError: If Grafana rejects the update or is unreachable.
        """
        body = {"provider": provider, "settings": settings}
        response = await self._request("PUT", f"v1/sso-settings/{provider}", json=body)
        _raise_for_status(response, f"cannot update SSO settings for '{provider}'")

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        logger.debug("Grafana API request", extra={"method": method, "path": path})
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ExternalAPIError(f"{method} {path} failed: {e}") from e


def _raise_for_status(response: httpx.Response, message: str) -> None:
    if response.is_success:
        return
    detail = response.text[:MAX_ERROR_BODY_CHARS]
    raise ExternalAPIError(
        f"{message}: HTTP {response.status_code}: {detail}",
        status_code=response.status_code,
    )


def base_path(path: str) -> str:
    """Ensure an API base path ends with /api."""
    path = path.rstrip("/")
    if not path:
        return "/api"
    if path.endswith("/api"):
        return path
    return path + "/api"


def api_base_url(grafana_url: str) -> str:
    """Turn a Grafana URL into the API root used as httpx base_url.

    Raises:
        ValueError: If the URL has no scheme or host.
    """
    parts = urlsplit(grafana_url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"cannot parse grafana URL: {grafana_url!r}")
    return f"{parts.scheme}://{parts.netloc}{base_path(parts.path)}/"


def new_client(
    grafana_url: str,
    credentials: Credentials,
    *,
    timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    transport: httpx.AsyncBaseTransport | None = None,
) -> GrafanaSSOClient:
    """Create a Grafana SSO client.

    Basic auth is used when the credentials carry a username and password,
    a bearer token otherwise.

    Args:
        grafana_url: Grafana root URL, optionally with a sub-path.
        credentials: Parsed credentials.
        timeout: Per-request timeout in seconds.
        transport: Optional transport override, used by tests.

    Raises:
        ValueError: If the URL cannot be parsed.
    """
    headers = {"Accept": "application/json"}
    auth: httpx.Auth | None = None
    if credentials.is_basic_auth:
        auth = httpx.BasicAuth(credentials.username, credentials.password)
    else:
        headers["Authorization"] = f"Bearer {credentials.token}"

    http = httpx.AsyncClient(
        base_url=api_base_url(grafana_url),
        headers=headers,
        auth=auth,
        timeout=httpx.Timeout(timeout),
        transport=transport,
    )
    return GrafanaSSOClient(http)


async def get_or_init_settings(
    client: SSOClient, provider: str = SSO_PROVIDER
) -> dict[str, Any]:
    """Fetch provider settings, starting from an empty object if unconfigured."""
    try:
        return await client.get_provider_settings(provider)
    except NotFoundError:
        logger.info(
            "SSO provider not configured yet, starting from empty settings",
            extra={"provider": provider},
        )
        return {}


async def sync_org_mapping(
    client: SSOClient,
    tenants: Iterable[TenantMapping],
    provider: str = SSO_PROVIDER,
) -> None:
    """Recompute orgMapping from all tenants and write it to Grafana.

    All settings keys other than orgMapping are written back unchanged.

    Raises:
        ExternalAPIError: If fetching (other than not-found) or updating fails.
    """
    settings = await get_or_init_settings(client, provider)
    org_mapping = build_org_mapping(tenants)
    settings[ORG_MAPPING_KEY] = org_mapping
    await client.update_provider_settings(provider, settings)


def read_org_mapping(settings: dict[str, Any]) -> str:
    """Extract the orgMapping value, treating a missing or non-string value as empty."""
    value = settings.get(ORG_MAPPING_KEY, "")
    return value if isinstance(value, str) else ""


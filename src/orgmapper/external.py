"""Per-tenant external state machine.

A Tenant is a "virtual" resource: the Tenant record itself is the source of
truth and there is no per-tenant object in Grafana. What Grafana holds is a
single org_mapping string aggregated from every tenant, so one tenant's
external effect depends on all the others. Each mutation therefore lists
all tenants and rewrites the whole document.

States reported by observe():

    Absent           resource_exists=False (never created, or being deleted)
    ExistsNotSynced  resource_exists=True,  resource_up_to_date=False
    Synced           resource_exists=True,  resource_up_to_date=True

Failure policy:

    create   sync failure is fatal (no tenant is marked created until
             Grafana has accepted the mapping)
    update   sync failure is logged; the next observe detects drift
    delete   sync failure is logged; deletion is never blocked by Grafana
    observe  drift-check failure is logged; local state decides
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .grafana import (
    SSO_PROVIDER,
    ExternalAPIError,
    MalformedSettingsError,
    NotFoundError,
    SSOClient,
    read_org_mapping,
    sync_org_mapping,
)
from .models import Tenant, TenantObservation
from .org_mapping import build_org_mapping, org_mapping_contains
from .store import StoreError, TenantStore, sort_tenants

logger = logging.getLogger(__name__)


class ConflictError(Exception):
    """Raised when another tenant already uses the same tenantId."""

    def __init__(self, tenant_id: str) -> None:
        super().__init__(f"tenant with this tenantId already exists: {tenant_id}")
        self.tenant_id = tenant_id


class TypeMismatchError(TypeError):
    """Raised when the managed resource is not a Tenant."""

    def __init__(self, obj: Any) -> None:
        super().__init__(f"managed resource is not a Tenant: {type(obj).__name__}")


class ResourceState(str, Enum):
    """Reconciliation state of one tenant."""

    ABSENT = "Absent"
    EXISTS_NOT_SYNCED = "ExistsNotSynced"
    SYNCED = "Synced"


@dataclass(frozen=True)
class ExternalObservation:
    """Result of observe()."""

    resource_exists: bool = False
    resource_up_to_date: bool = False

    @property
    def state(self) -> ResourceState:
        if not self.resource_exists:
            return ResourceState.ABSENT
        if self.resource_up_to_date:
            return ResourceState.SYNCED
        return ResourceState.EXISTS_NOT_SYNCED


def _as_tenant(obj: Any) -> Tenant:
    if not isinstance(obj, Tenant):
        raise TypeMismatchError(obj)
    return obj


def lists_equal(a: Sequence[str] | None, b: Sequence[str] | None) -> bool:
    """Compare two string lists, treating None and empty as equivalent."""
    if not a and not b:
        return True
    return list(a or ()) == list(b or ())


def is_up_to_date(tenant: Tenant) -> bool:
    """Compare spec.forProvider against status.atProvider field by field."""
    spec = tenant.params
    obs = tenant.observation

    if spec.tenant_id != obs.tenant_id:
        return False
    if spec.org_id != obs.org_id:
        return False
    if spec.retention != obs.retention:
        return False
    return all(
        lists_equal(getattr(spec, name), getattr(obs, name))
        for name in ("admins", "viewer_groups", "editor_groups", "admin_groups")
    )


def sync_status(tenant: Tenant, now: datetime | None = None) -> None:
    """Copy spec fields into status and stamp lastUpdated."""
    tenant.status.at_provider = TenantObservation.from_parameters(tenant.params, now)


class TenantExternal:
    """Observes, creates, updates and deletes Tenants against Grafana.

    Methods mutate the Tenant passed in (external name, status); persisting
    those changes is the caller's job.
    """

    def __init__(
        self,
        store: TenantStore,
        sso: SSOClient,
        *,
        provider: str = SSO_PROVIDER,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._sso = sso
        self._provider = provider
        self._clock = clock or (lambda: datetime.now(UTC))

    async def observe(self, obj: Any) -> ExternalObservation:
        tenant = _as_tenant(obj)

        # No external name: the resource has not been created yet
        if not tenant.external_name:
            return ExternalObservation(resource_exists=False)

        # Being deleted: drop the tenant from the mapping, then report it gone
        # so the record can be finalized regardless of Grafana's state
        if tenant.is_deleting:
            try:
                await self.sync_org_mapping(exclude=tenant)
            except (ExternalAPIError, StoreError) as e:
                logger.info(
                    "Failed to sync Grafana org mapping during delete",
                    extra={"tenant": tenant.name, "error": str(e)},
                )
            return ExternalObservation(resource_exists=False)

        up_to_date = is_up_to_date(tenant)

        # Drift is only checked once local state is consistent. Errors are
        # ignored so an unreachable Grafana cannot cause endless resyncs.
        if up_to_date:
            try:
                drifted = await self.is_grafana_drifted(tenant)
            except ExternalAPIError as e:
                logger.debug(
                    "Failed to check Grafana drift",
                    extra={"tenant": tenant.name, "error": str(e)},
                )
            else:
                if drifted:
                    logger.info(
                        "Grafana org_mapping drift detected, triggering resync",
                        extra={"tenant": tenant.name, "org_id": tenant.params.org_id},
                    )
                    up_to_date = False

        return ExternalObservation(resource_exists=True, resource_up_to_date=up_to_date)

    async def create(self, obj: Any) -> None:
        """Register a tenant in Grafana.

        Raises:
            TypeMismatchError: If obj is not a Tenant.
            ConflictError: If another tenant has the same tenantId.
            StoreError: If tenants cannot be listed.
            ExternalAPIError: If Grafana does not accept the mapping.
        """
        tenant = _as_tenant(obj)

        self.validate_unique_tenant_id(tenant)

        observation = TenantObservation.from_parameters(tenant.params, self._clock())

        # Must succeed before the tenant counts as created
        await self.sync_org_mapping(include=tenant)

        tenant.external_name = tenant.params.tenant_id
        tenant.status.at_provider = observation
        logger.info(
            "Tenant created",
            extra={
                "tenant": tenant.name,
                "tenant_id": tenant.params.tenant_id,
                "org_id": tenant.params.org_id,
            },
        )

    async def update(self, obj: Any) -> None:
        """Resync status and Grafana. Grafana failures do not fail the update."""
        tenant = _as_tenant(obj)

        sync_status(tenant, self._clock())

        try:
            await self.sync_org_mapping(include=tenant)
        except (ExternalAPIError, StoreError) as e:
            logger.info(
                "Failed to sync Grafana org mapping",
                extra={"tenant": tenant.name, "error": str(e)},
            )

    async def delete(self, obj: Any) -> None:
        """Remove a tenant from the mapping. Grafana failures do not block deletion."""
        tenant = _as_tenant(obj)

        try:
            await self.sync_org_mapping(exclude=tenant)
        except (ExternalAPIError, StoreError) as e:
            logger.info(
                "Failed to sync Grafana org mapping during delete",
                extra={"tenant": tenant.name, "error": str(e)},
            )

    async def sync_org_mapping(
        self, *, include: Tenant | None = None, exclude: Tenant | None = None
    ) -> None:
        """List all tenants, build org_mapping and write it to Grafana.

        The included tenant replaces its listed copy (matched by uid), or is
        added if the listing does not have it yet. The excluded tenant and
        every tenant carrying a deletion marker are left out of the mapping.

        Raises:
            StoreError: If tenants cannot be listed.
            ExternalAPIError: If Grafana rejects the update.
        """
        tenants = self._store.list()
        if include is not None:
            tenants = sort_tenants([t for t in tenants if t.uid != include.uid] + [include])
        mappings = [
            t.params.to_mapping()
            for t in tenants
            if not t.is_deleting and (exclude is None or t.uid != exclude.uid)
        ]
        logger.debug(
            "Syncing Grafana org mapping",
            extra={"org_mapping": build_org_mapping(mappings), "tenant_count": len(mappings)},
        )
        await sync_org_mapping(self._sso, mappings, self._provider)

    def validate_unique_tenant_id(self, tenant: Tenant) -> None:
        """Check that no other tenant has the same tenantId.

        Raises:
            ConflictError: On a duplicate.
            StoreError: If tenants cannot be listed.
        """
        for other in self._store.list():
            if other.uid == tenant.uid:
                continue
            if other.params.tenant_id == tenant.params.tenant_id:
                raise ConflictError(tenant.params.tenant_id)

    async def is_grafana_drifted(self, tenant: Tenant) -> bool:
        """Check whether the tenant is missing from Grafana's org_mapping.

        Tenants without viewer or editor groups are never reported as drifted.

        Raises:
            ExternalAPIError: If settings cannot be fetched (other than not-found
                or malformed).
        """
        params = tenant.params
        if not params.viewer_groups and not params.editor_groups:
            return False

        try:
            settings = await self._sso.get_provider_settings(self._provider)
        except (NotFoundError, MalformedSettingsError):
            # SSO not configured yet, or not usable: needs to be set up
            return True

        return not org_mapping_contains(read_org_mapping(settings), params.org_id)

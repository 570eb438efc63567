"""Reconciliation loop driving TenantExternal for every tenant.

Each pass:
1. List all tenants from the store
2. Reconcile every tenant concurrently (bounded by a semaphore):
   - deleting:        observe, delete if it was created, finalize
   - absent:          create, persist status
   - exists, drifted: update, persist status
   - synced:          nothing
3. Drop tenants whose manifests disappeared (orphaned status)
4. Sleep until the next interval or shutdown

There is no retry inside a pass. A failed tenant is retried on the next
pass; since every write recomputes the full mapping, any write lost to a
concurrent peer is repaired the same way.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .config import Config
from .external import (
    ConflictError,
    ExternalObservation,
    ResourceState,
    TenantExternal,
    TypeMismatchError,
)
from .grafana import ExternalAPIError
from .models import Tenant
from .store import StoreError, TenantStore

logger = logging.getLogger(__name__)


class ReconcileAction(str, Enum):
    """What a reconciliation did (or, in dry-run mode, would do)."""

    NONE = "none"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    FORGET = "forget"


@dataclass
class ReconcileResult:
    """Result of reconciling a single tenant."""

    tenant: str
    action: ReconcileAction = ReconcileAction.NONE
    state: ResourceState | None = None
    dry_run: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None


class Reconciler:
    """Periodic reconciler for all tenants in a store.

    The reconciler owns scheduling only: observe/create/update/delete
    semantics live in TenantExternal and persistence in the TenantStore.
    """

    def __init__(self, config: Config, store: TenantStore, external: TenantExternal) -> None:
        self._config = config
        self._store = store
        self._external = external
        self._semaphore = asyncio.Semaphore(config.max_concurrent_reconciles)
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> Config:
        return self._config

    async def run(self) -> None:
        """Run reconciliation passes at the configured interval until shutdown."""
        logger.info(
            "Starting reconciler",
            extra={
                "tenants_dir": str(self._config.tenants_dir),
                "interval_seconds": self._config.reconcile_interval_seconds,
                "max_concurrent": self._config.max_concurrent_reconciles,
                "dry_run": self._config.dry_run,
            },
        )

        while not self._shutdown_event.is_set():
            await self.reconcile_all()

            # Wait for next cycle or shutdown
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self._config.reconcile_interval_seconds,
                )
            except TimeoutError:
                pass

        logger.info("Reconciler shutdown complete")

    def shutdown(self) -> None:
        """Signal the reconciler to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def reconcile_all(self) -> list[ReconcileResult]:
        """Run one pass over every tenant.

        Returns:
            One result per tenant (and per orphan handled). A listing failure
            yields a single failed result for the pseudo-tenant "*".
        """
        try:
            tenants = self._store.list()
        except StoreError as e:
            result = ReconcileResult(tenant="*", error=e, end_time=datetime.now(UTC))
            self._log_result(result)
            return [result]

        results = list(await asyncio.gather(*(self._bounded(t) for t in tenants)))
        results.extend(await self._handle_orphans())

        failed = sum(1 for r in results if not r.success)
        logger.info(
            "Reconciliation pass complete",
            extra={
                "tenants": len(tenants),
                "changed": sum(1 for r in results if r.action != ReconcileAction.NONE),
                "failed": failed,
            },
        )
        return results

    async def _bounded(self, tenant: Tenant) -> ReconcileResult:
        async with self._semaphore:
            return await self.reconcile_tenant(tenant)

    async def reconcile_tenant(self, tenant: Tenant) -> ReconcileResult:
        """Reconcile a single tenant. Errors are captured in the result."""
        result = ReconcileResult(tenant=tenant.name, dry_run=self._config.dry_run)
        try:
            if self._config.dry_run:
                await self._plan(tenant, result)
            else:
                await self._reconcile(tenant, result)
        except (ConflictError, ExternalAPIError, StoreError, TypeMismatchError) as e:
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during reconciliation", extra={"tenant": tenant.name})
            result.error = e
        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    async def _reconcile(self, tenant: Tenant, result: ReconcileResult) -> None:
        observation = await self._external.observe(tenant)
        result.state = observation.state

        if tenant.is_deleting:
            # Deleting tenants always observe as absent
            if tenant.external_name:
                await self._external.delete(tenant)
            self._store.finalize(tenant)
            result.action = ReconcileAction.DELETE
            return

        if not observation.resource_exists:
            await self._external.create(tenant)
            self._store.set_observation(tenant)
            result.action = ReconcileAction.CREATE
            return

        if not observation.resource_up_to_date:
            await self._external.update(tenant)
            self._store.set_observation(tenant)
            result.action = ReconcileAction.UPDATE

    async def _plan(self, tenant: Tenant, result: ReconcileResult) -> None:
        # observe() writes to Grafana for deleting tenants, so plan those without it
        if tenant.is_deleting:
            result.state = ResourceState.ABSENT
            result.action = ReconcileAction.DELETE
            return

        observation: ExternalObservation = await self._external.observe(tenant)
        result.state = observation.state
        if not observation.resource_exists:
            result.action = ReconcileAction.CREATE
        elif not observation.resource_up_to_date:
            result.action = ReconcileAction.UPDATE

    async def _handle_orphans(self) -> list[ReconcileResult]:
        """Resync without tenants whose records vanished, then forget them."""
        try:
            orphans = self._store.orphans()
        except StoreError as e:
            logger.warning("Cannot list orphaned tenant status", extra={"error": str(e)})
            return []
        if not orphans:
            return []

        results = [
            ReconcileResult(tenant=name, action=ReconcileAction.FORGET, dry_run=self._config.dry_run)
            for name in orphans
        ]
        if not self._config.dry_run:
            try:
                await self._external.sync_org_mapping()
                for name in orphans:
                    self._store.forget(name)
            except (ExternalAPIError, StoreError) as e:
                # Keep the orphans so the next pass retries
                for result in results:
                    result.error = e

        for result in results:
            result.end_time = datetime.now(UTC)
            self._log_result(result)
        return results

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "tenant": result.tenant,
            "action": result.action.value,
            "state": result.state.value if result.state else None,
            "dry_run": result.dry_run,
            "duration_seconds": result.duration_seconds,
        }

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            logger.error("Reconciliation failed", extra=extra)
        elif result.action != ReconcileAction.NONE:
            logger.info("Reconciliation result", extra=extra)
        else:
            logger.debug("Reconciliation result", extra=extra)

"""Tenant storage.

The reconciler only needs a narrow view of where tenants live: list them
all, fetch one, persist the observed status of one, and finalize one whose
deletion has been handled. Each call is consistent on its own; nothing is
consistent across calls.

Two backends are provided:

- InMemoryTenantStore: for embedding and tests.
- FileTenantStore: Tenant manifests in a directory (e.g. synced by
  git-sync), with status persisted beside them in a separate directory so
  manifests are never rewritten by the operator.

Both return tenants sorted by (tenantId, uid). The org_mapping document is
order-sensitive, so a stable listing keeps the document byte-identical
across reconciliations.

SECURITY: Manifest files are size-checked before reading and parsed with
yaml.safe_load only.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

import yaml
from pydantic import ValidationError

from .config import MAX_TENANT_FILE_SIZE_BYTES, STATUS_DIR_NAME
from .models import KIND, Tenant, TenantObservation

logger = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml")


class StoreError(Exception):
    """Raised when tenants cannot be listed or status cannot be persisted."""

    pass


class TenantLoadError(StoreError):
    """Raised when a single manifest cannot be loaded or fails validation."""

    pass


class TenantStore(Protocol):
    """Access to Tenant records."""

    def list(self) -> list[Tenant]: ...

    def get(self, name: str) -> Tenant | None: ...

    def set_observation(self, tenant: Tenant) -> None: ...

    def finalize(self, tenant: Tenant) -> None: ...

    def orphans(self) -> list[str]: ...

    def forget(self, name: str) -> None: ...


def sort_tenants(tenants: list[Tenant]) -> list[Tenant]:
    return sorted(tenants, key=lambda t: (t.params.tenant_id, t.uid))


class InMemoryTenantStore:
    """Tenants held in a dict keyed by name.

    Every read returns deep copies, so callers only change stored state
    through set_observation and finalize.
    """

    def __init__(self, tenants: list[Tenant] | None = None) -> None:
        self._tenants: dict[str, Tenant] = {}
        for tenant in tenants or []:
            self.put(tenant)

    def put(self, tenant: Tenant) -> None:
        """Create or replace a tenant (desired state and status)."""
        self._tenants[tenant.name] = tenant.model_copy(deep=True)

    def remove(self, name: str) -> None:
        self._tenants.pop(name, None)

    def list(self) -> list[Tenant]:
        return sort_tenants([t.model_copy(deep=True) for t in self._tenants.values()])

    def get(self, name: str) -> Tenant | None:
        tenant = self._tenants.get(name)
        return tenant.model_copy(deep=True) if tenant is not None else None

    def set_observation(self, tenant: Tenant) -> None:
        stored = self._tenants.get(tenant.name)
        if stored is None:
            raise StoreError(f"tenant '{tenant.name}' not found")
        stored.metadata.annotations = dict(tenant.metadata.annotations)
        stored.status = tenant.status.model_copy(deep=True)

    def finalize(self, tenant: Tenant) -> None:
        self._tenants.pop(tenant.name, None)

    def orphans(self) -> list[str]:
        return []

    def forget(self, name: str) -> None:
        pass


def load_manifest(path: Path) -> Tenant:
    """Load and validate one Tenant manifest.

    Raises:
        TenantLoadError: If the file is too large, unparseable, not a Tenant,
            or fails validation.
    """
    # SECURITY: Check file size before reading to prevent DoS
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise TenantLoadError(f"Cannot stat tenant file {path}: {e}") from e

    if file_size > MAX_TENANT_FILE_SIZE_BYTES:
        raise TenantLoadError(
            f"Tenant file {path} exceeds maximum size "
            f"({file_size} > {MAX_TENANT_FILE_SIZE_BYTES} bytes)"
        )

    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (OSError, UnicodeDecodeError) as e:
        raise TenantLoadError(f"Cannot read tenant file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise TenantLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise TenantLoadError(f"Tenant file {path} must contain a mapping")

    kind = raw.get("kind", KIND)
    if kind != KIND:
        raise TenantLoadError(f"Tenant file {path} has kind '{kind}', expected '{KIND}'")

    try:
        return Tenant.model_validate(raw)
    except ValidationError as e:
        raise TenantLoadError(f"Tenant validation failed for {path}:\n{e}") from e


class FileTenantStore:
    """Tenants stored as YAML manifests in a directory.

    Layout:
        <tenants_dir>/<anything>.yaml    Tenant manifests (desired state)
        <status_dir>/<metadata.name>.yaml  persisted external name + status

    A status file whose manifest has disappeared is an orphan: the tenant was
    deleted without going through a deletion marker.
    """

    def __init__(self, tenants_dir: Path, status_dir: Path | None = None) -> None:
        self._tenants_dir = tenants_dir
        self._status_dir = status_dir or tenants_dir / STATUS_DIR_NAME
        self._paths: dict[str, Path] = {}

    @property
    def tenants_dir(self) -> Path:
        return self._tenants_dir

    @property
    def status_dir(self) -> Path:
        return self._status_dir

    def _manifest_paths(self) -> list[Path]:
        try:
            entries = sorted(self._tenants_dir.iterdir())
        except OSError as e:
            raise StoreError(f"Cannot list tenants in {self._tenants_dir}: {e}") from e
        return [
            p
            for p in entries
            if p.suffix in MANIFEST_SUFFIXES and not p.name.startswith(".") and p.is_file()
        ]

    def _status_path(self, name: str) -> Path:
        path = self._status_dir / f"{name}.yaml"
        if path.resolve().parent != self._status_dir.resolve():
            raise StoreError(f"Tenant name '{name}' is not a valid status file name")
        return path

    def _load_status(self, tenant: Tenant) -> None:
        path = self._status_path(tenant.name)
        if not path.exists():
            return
        try:
            with path.open(encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
            if raw.get("uid") not in (None, tenant.uid):
                # Status left behind by an earlier tenant with the same name
                logger.warning(
                    "Ignoring status written for a different tenant uid",
                    extra={"tenant": tenant.name, "status_uid": raw.get("uid")},
                )
                return
            if raw.get("externalName"):
                tenant.external_name = raw["externalName"]
            if raw.get("atProvider"):
                tenant.status.at_provider = TenantObservation.model_validate(raw["atProvider"])
        except (OSError, yaml.YAMLError, ValidationError, AttributeError) as e:
            # Corrupt status reads as "not yet synchronized"; the next cycle rewrites it
            logger.warning(
                "Ignoring unreadable tenant status",
                extra={"tenant": tenant.name, "path": str(path), "error": str(e)},
            )

    def _scan(self) -> dict[str, Tenant]:
        tenants: dict[str, Tenant] = {}
        paths: dict[str, Path] = {}
        for path in self._manifest_paths():
            try:
                tenant = load_manifest(path)
            except TenantLoadError as e:
                logger.warning(
                    "Skipping invalid tenant manifest",
                    extra={"path": str(path), "error": str(e)},
                )
                continue
            if tenant.name in tenants:
                logger.warning(
                    "Skipping tenant manifest with duplicate metadata.name",
                    extra={"path": str(path), "tenant": tenant.name},
                )
                continue
            self._load_status(tenant)
            tenants[tenant.name] = tenant
            paths[tenant.name] = path
        self._paths = paths
        return tenants

    def list(self) -> list[Tenant]:
        return sort_tenants(list(self._scan().values()))

    def get(self, name: str) -> Tenant | None:
        return self._scan().get(name)

    def set_observation(self, tenant: Tenant) -> None:
        data: dict[str, Any] = {
            "name": tenant.name,
            "uid": tenant.uid,
            "externalName": tenant.external_name,
            "atProvider": tenant.observation.model_dump(
                mode="json", by_alias=True, exclude_none=True
            ),
        }
        path = self._status_path(tenant.name)
        try:
            self._status_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._status_dir, prefix=".", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, sort_keys=False)
            os.replace(tmp_name, path)
        except OSError as e:
            raise StoreError(f"Cannot write status for tenant '{tenant.name}': {e}") from e

    def finalize(self, tenant: Tenant) -> None:
        """Remove the manifest and status of a tenant whose deletion was handled."""
        if tenant.name not in self._paths:
            self._scan()
        manifest = self._paths.pop(tenant.name, None)
        try:
            if manifest is not None:
                manifest.unlink(missing_ok=True)
            self._status_path(tenant.name).unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot finalize tenant '{tenant.name}': {e}") from e

    def orphans(self) -> list[str]:
        """Names with persisted status but no manifest."""
        if not self._status_dir.is_dir():
            return []
        known = set(self._scan())
        return sorted(
            p.stem
            for p in self._status_dir.glob("*.yaml")
            if not p.name.startswith(".") and p.stem not in known
        )

    def forget(self, name: str) -> None:
        try:
            self._status_path(name).unlink(missing_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot remove status for '{name}': {e}") from e

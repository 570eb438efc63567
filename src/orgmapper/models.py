"""Pydantic models for Tenant resources.

A Tenant follows the Kubernetes managed-resource layout:

    apiVersion: tenant.orgmapper.io/v1alpha1
    kind: Tenant
    metadata:
      name: acme
    spec:
      forProvider:
        tenantId: acme
        orgId: org-1
        viewerGroups: [team-a]
        retention:
          logs: 30d
    status:
      atProvider: {...}

spec.forProvider is the desired state, owned by whoever writes the manifest.
status.atProvider is the last synchronized snapshot, owned by the reconciler.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .org_mapping import TenantMapping

API_VERSION = "tenant.orgmapper.io/v1alpha1"
KIND = "Tenant"

# Annotation recording that the tenant has been created in Grafana
EXTERNAL_NAME_ANNOTATION = "orgmapper.io/external-name"

# metadata.name doubles as a file name in the status directory, so it is
# restricted to a Kubernetes DNS-1123 subdomain
VALID_NAME_PATTERN = r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$"
MAX_NAME_LENGTH = 253

# Namespace for deriving stable uids from manifest names
UID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_DNS, "orgmapper.io")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class _Model(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        alias_generator=_camel,
        populate_by_name=True,
    )


class RetentionPolicy(_Model):
    """Data retention durations per signal type.

    Values are opaque strings such as "30d"; they are passed through to
    status and never parsed here.
    """

    logs: str = ""
    metrics: str = ""
    traces: str = ""
    profiles: str = ""


class TenantParameters(_Model):
    """Desired state of a tenant (spec.forProvider)."""

    tenant_id: Annotated[str, Field(min_length=1)]
    org_id: Annotated[str, Field(min_length=1)]
    admins: list[str] | None = None
    viewer_groups: list[str] | None = None
    editor_groups: list[str] | None = None
    admin_groups: list[str] | None = None
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)

    def to_mapping(self) -> TenantMapping:
        """Project the fields that feed the org_mapping document."""
        return TenantMapping(
            org_id=self.org_id,
            viewer_groups=tuple(self.viewer_groups or ()),
            editor_groups=tuple(self.editor_groups or ()),
            admin_groups=tuple(self.admin_groups or ()),
        )


class TenantObservation(_Model):
    """Last synchronized state of a tenant (status.atProvider)."""

    tenant_id: str = ""
    org_id: str = ""
    admins: list[str] | None = None
    viewer_groups: list[str] | None = None
    editor_groups: list[str] | None = None
    admin_groups: list[str] | None = None
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)
    last_updated: str = ""

    @classmethod
    def from_parameters(
        cls, params: TenantParameters, now: datetime | None = None
    ) -> TenantObservation:
        """Snapshot desired state, stamped with the given (or current) time."""
        stamp = (now or datetime.now(UTC)).strftime("%Y-%m-%dT%H:%M:%SZ")
        return cls(
            tenant_id=params.tenant_id,
            org_id=params.org_id,
            admins=_copy(params.admins),
            viewer_groups=_copy(params.viewer_groups),
            editor_groups=_copy(params.editor_groups),
            admin_groups=_copy(params.admin_groups),
            retention=params.retention.model_copy(),
            last_updated=stamp,
        )


def _copy(values: list[str] | None) -> list[str] | None:
    return list(values) if values is not None else None


class TenantSpec(_Model):
    for_provider: TenantParameters


class TenantStatus(_Model):
    at_provider: TenantObservation = Field(default_factory=TenantObservation)


class ObjectMeta(_Model):
    name: Annotated[str, Field(max_length=MAX_NAME_LENGTH, pattern=VALID_NAME_PATTERN)]
    uid: str = ""
    annotations: dict[str, str] = Field(default_factory=dict)
    deletion_timestamp: datetime | None = None

    @model_validator(mode="after")
    def default_uid(self) -> ObjectMeta:
        if not self.uid:
            self.uid = str(uuid.uuid5(UID_NAMESPACE, self.name))
        return self


class Tenant(_Model):
    """A Tenant managed resource."""

    api_version: str = API_VERSION
    kind: str = KIND
    metadata: ObjectMeta
    spec: TenantSpec
    status: TenantStatus = Field(default_factory=TenantStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def uid(self) -> str:
        return self.metadata.uid

    @property
    def params(self) -> TenantParameters:
        return self.spec.for_provider

    @property
    def observation(self) -> TenantObservation:
        return self.status.at_provider

    @property
    def external_name(self) -> str:
        return self.metadata.annotations.get(EXTERNAL_NAME_ANNOTATION, "")

    @external_name.setter
    def external_name(self, value: str) -> None:
        self.metadata.annotations[EXTERNAL_NAME_ANNOTATION] = value

    @property
    def is_deleting(self) -> bool:
        """Whether the tenant carries a deletion marker."""
        return self.metadata.deletion_timestamp is not None

    def to_manifest(self) -> dict[str, Any]:
        """Serialize using the camelCase manifest field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def new_tenant(
    name: str,
    tenant_id: str,
    org_id: str,
    *,
    admins: list[str] | None = None,
    viewer_groups: list[str] | None = None,
    editor_groups: list[str] | None = None,
    admin_groups: list[str] | None = None,
    retention: RetentionPolicy | None = None,
    uid: str = "",
) -> Tenant:
    """Build a Tenant without going through a manifest."""
    return Tenant(
        metadata=ObjectMeta(name=name, uid=uid),
        spec=TenantSpec(
            for_provider=TenantParameters(
                tenant_id=tenant_id,
                org_id=org_id,
                admins=admins,
                viewer_groups=viewer_groups,
                editor_groups=editor_groups,
                admin_groups=admin_groups,
                retention=retention or RetentionPolicy(),
            )
        ),
    )

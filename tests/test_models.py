"""Tests for Tenant models."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from orgmapper.models import (
    EXTERNAL_NAME_ANNOTATION,
    RetentionPolicy,
    Tenant,
    TenantObservation,
    TenantParameters,
    new_tenant,
)
from orgmapper.org_mapping import TenantMapping


def manifest(**for_provider: object) -> dict:
    params = {"tenantId": "acme", "orgId": "org-1"}
    params.update(for_provider)
    return {
        "apiVersion": "tenant.orgmapper.io/v1alpha1",
        "kind": "Tenant",
        "metadata": {"name": "acme"},
        "spec": {"forProvider": params},
    }


class TestTenantParameters:
    """Tests for TenantParameters."""

    def test_camel_case_aliases(self) -> None:
        """Manifest fields use camelCase."""
        params = TenantParameters.model_validate(
            {
                "tenantId": "acme",
                "orgId": "1",
                "viewerGroups": ["v"],
                "editorGroups": ["e"],
                "adminGroups": ["a"],
                "retention": {"logs": "30d"},
            }
        )
        assert params.tenant_id == "acme"
        assert params.viewer_groups == ["v"]
        assert params.admin_groups == ["a"]
        assert params.retention.logs == "30d"
        assert params.retention.metrics == ""

    def test_required_ids(self) -> None:
        """tenantId and orgId must be non-empty."""
        with pytest.raises(ValidationError):
            TenantParameters.model_validate({"tenantId": "", "orgId": "1"})
        with pytest.raises(ValidationError):
            TenantParameters.model_validate({"tenantId": "acme"})

    def test_to_mapping(self) -> None:
        """Only org and group fields feed the mapping."""
        params = TenantParameters(
            tenant_id="acme", org_id="1", admins=["bob"], viewer_groups=["v"]
        )
        assert params.to_mapping() == TenantMapping(
            org_id="1", viewer_groups=("v",), editor_groups=(), admin_groups=()
        )


class TestTenantObservation:
    """Tests for TenantObservation."""

    def test_from_parameters(self) -> None:
        """Desired state is copied and stamped."""
        params = TenantParameters(
            tenant_id="acme",
            org_id="1",
            viewer_groups=["v"],
            retention=RetentionPolicy(traces="7d"),
        )
        now = datetime(2024, 5, 1, 12, 30, 0, tzinfo=UTC)

        obs = TenantObservation.from_parameters(params, now)

        assert obs.tenant_id == "acme"
        assert obs.org_id == "1"
        assert obs.viewer_groups == ["v"]
        assert obs.editor_groups is None
        assert obs.retention.traces == "7d"
        assert obs.last_updated == "2024-05-01T12:30:00Z"

    def test_from_parameters_copies_lists(self) -> None:
        """Changing desired state later does not change the snapshot."""
        params = TenantParameters(tenant_id="acme", org_id="1", viewer_groups=["v"])
        obs = TenantObservation.from_parameters(params)

        params.viewer_groups.append("w")

        assert obs.viewer_groups == ["v"]


class TestTenant:
    """Tests for the Tenant resource."""

    def test_from_manifest(self) -> None:
        """A manifest parses into a Tenant with an empty status."""
        tenant = Tenant.model_validate(manifest(viewerGroups=["team-a"]))

        assert tenant.name == "acme"
        assert tenant.params.viewer_groups == ["team-a"]
        assert tenant.observation.tenant_id == ""
        assert tenant.external_name == ""
        assert tenant.is_deleting is False

    def test_uid_defaults_to_stable_value(self) -> None:
        """The uid is derived from the name when not given."""
        first = Tenant.model_validate(manifest())
        second = Tenant.model_validate(manifest())
        other = new_tenant("other", "acme", "org-1")

        assert first.uid
        assert first.uid == second.uid
        assert first.uid != other.uid

    @pytest.mark.parametrize("name", ["../peer", "team/a", "Acme", "-acme", "acme.", "", "a" * 254])
    def test_invalid_name_rejected(self, name: str) -> None:
        """metadata.name must be a DNS-1123 subdomain."""
        data = manifest()
        data["metadata"]["name"] = name

        with pytest.raises(ValidationError):
            Tenant.model_validate(data)

    @pytest.mark.parametrize("name", ["acme", "a", "team-a.prod", "0rg"])
    def test_valid_name_accepted(self, name: str) -> None:
        data = manifest()
        data["metadata"]["name"] = name

        assert Tenant.model_validate(data).name == name

    def test_explicit_uid_kept(self) -> None:
        """An explicit uid is not overwritten."""
        assert new_tenant("acme", "acme", "1", uid="u-1").uid == "u-1"

    def test_external_name_annotation(self) -> None:
        """external_name reads and writes the annotation."""
        tenant = new_tenant("acme", "acme", "1")
        tenant.external_name = "acme"

        assert tenant.metadata.annotations[EXTERNAL_NAME_ANNOTATION] == "acme"
        assert tenant.external_name == "acme"

    def test_deletion_marker(self) -> None:
        """A deletionTimestamp marks the tenant as deleting."""
        data = manifest()
        data["metadata"]["deletionTimestamp"] = "2024-05-01T00:00:00Z"

        assert Tenant.model_validate(data).is_deleting is True

    def test_to_manifest_uses_aliases(self) -> None:
        """Serialized tenants use camelCase field names."""
        tenant = new_tenant("acme", "acme", "1", viewer_groups=["v"])

        data = tenant.to_manifest()

        assert data["spec"]["forProvider"]["tenantId"] == "acme"
        assert data["spec"]["forProvider"]["viewerGroups"] == ["v"]
        assert "editorGroups" not in data["spec"]["forProvider"]
        assert Tenant.model_validate(data) == tenant

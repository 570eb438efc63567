"""Tests for org_mapping document encoding."""

import pytest

from orgmapper.org_mapping import (
    MappingEntry,
    Role,
    TenantMapping,
    build_org_mapping,
    escape_colon,
    iter_entries,
    org_mapping_contains,
    parse_entry,
    parse_org_mapping,
    split_entries,
    unescape_colon,
)


class TestBuildOrgMapping:
    """Tests for build_org_mapping."""

    def test_empty_input(self) -> None:
        """No tenants produce the empty string."""
        assert build_org_mapping([]) == ""

    def test_tenant_without_groups(self) -> None:
        """Tenants without groups contribute no entries."""
        assert build_org_mapping([TenantMapping(org_id="1")]) == ""

    def test_single_viewer_group(self) -> None:
        """One viewer group yields one entry."""
        tenants = [TenantMapping(org_id="org-1", viewer_groups=["team-a"])]
        assert build_org_mapping(tenants) == "team-a:org-1:Viewer"

    def test_role_order_within_tenant(self) -> None:
        """Viewer groups come first, then editor groups, then admin groups."""
        tenants = [
            TenantMapping(
                org_id="2",
                viewer_groups=["v1", "v2"],
                editor_groups=["e1"],
                admin_groups=["a1"],
            )
        ]
        assert build_org_mapping(tenants) == "v1:2:Viewer,v2:2:Viewer,e1:2:Editor,a1:2:Admin"

    def test_tenants_in_input_order(self) -> None:
        """Entries follow the order tenants are given in."""
        tenants = [
            TenantMapping(org_id="2", viewer_groups=["b"]),
            TenantMapping(org_id="1", editor_groups=["a"]),
        ]
        assert build_org_mapping(tenants) == "b:2:Viewer,a:1:Editor"

    def test_deterministic(self) -> None:
        """The same input always produces the same document."""
        tenants = [
            TenantMapping(org_id="1", viewer_groups=["x", "y"]),
            TenantMapping(org_id="3", admin_groups=["z"]),
        ]
        assert build_org_mapping(tenants) == build_org_mapping(list(tenants))

    def test_colon_in_subject_is_escaped(self) -> None:
        """Colons in group names are escaped, orgId and role are not."""
        tenants = [TenantMapping(org_id="5", viewer_groups=["aad:group:ops"])]
        assert build_org_mapping(tenants) == "aad\\:group\\:ops:5:Viewer"

    def test_duplicate_groups_kept(self) -> None:
        """Groups are emitted as declared, duplicates included."""
        tenants = [TenantMapping(org_id="1", viewer_groups=["a", "a"])]
        assert build_org_mapping(tenants) == "a:1:Viewer,a:1:Viewer"


class TestEscaping:
    """Tests for subject escaping."""

    @pytest.mark.parametrize("subject", ["plain", "a:b", "::", "urn:ms:group:1234", ""])
    def test_escape_round_trip(self, subject: str) -> None:
        """unescape_colon reverses escape_colon."""
        assert unescape_colon(escape_colon(subject)) == subject

    def test_escaped_subject_survives_document_split(self) -> None:
        """Splitting on unescaped commas and parsing gives the original subjects back."""
        subjects = ["urn:group:a", "b", "c:d"]
        document = build_org_mapping([TenantMapping(org_id="9", viewer_groups=subjects)])

        parsed = parse_org_mapping(document)

        assert [e.subject for e in parsed] == subjects
        assert all(e.org_id == "9" for e in parsed)


class TestParsing:
    """Tests for split_entries and parse_entry."""

    def test_split_trims_and_skips_empty(self) -> None:
        """Whitespace is trimmed and empty entries are dropped."""
        assert split_entries(" a:1:Viewer , ,b:2:Editor,") == ["a:1:Viewer", "b:2:Editor"]

    def test_split_empty_document(self) -> None:
        """An empty document has no entries."""
        assert split_entries("") == []

    def test_split_keeps_escaped_comma(self) -> None:
        """An escaped comma does not separate entries."""
        assert split_entries("a\\,b:1:Viewer") == ["a\\,b:1:Viewer"]

    def test_parse_entry(self) -> None:
        """A well-formed entry parses into its three fields."""
        entry = parse_entry("grp\\:x:7:Admin")
        assert entry == MappingEntry(subject="grp:x", org_id="7", role=Role.ADMIN)
        assert entry.render() == "grp\\:x:7:Admin"

    def test_parse_entry_wrong_field_count(self) -> None:
        """Entries without exactly three fields are rejected."""
        with pytest.raises(ValueError) as exc_info:
            parse_entry("a:1")
        assert "subject:orgId:Role" in str(exc_info.value)

    def test_parse_entry_unknown_role(self) -> None:
        """Unknown roles are rejected."""
        with pytest.raises(ValueError) as exc_info:
            parse_entry("a:1:Owner")
        assert "Owner" in str(exc_info.value)

    def test_parse_built_document(self) -> None:
        """A built document parses back into the entries it was built from."""
        tenants = [
            TenantMapping(org_id="1", viewer_groups=["team:a"], admin_groups=["ops"]),
            TenantMapping(org_id="2", editor_groups=["b"]),
        ]

        assert parse_org_mapping(build_org_mapping(tenants)) == list(iter_entries(tenants))

    def test_parse_document_rejects_bad_entry(self) -> None:
        with pytest.raises(ValueError):
            parse_org_mapping("a:1:Viewer,broken")

    def test_iter_entries_skips_none_groups(self) -> None:
        """Missing group lists yield nothing."""
        tenant = TenantMapping(org_id="1", viewer_groups=None, editor_groups=["e"])  # type: ignore[arg-type]
        assert [e.render() for e in iter_entries([tenant])] == ["e:1:Editor"]


class TestOrgMappingContains:
    """Tests for org_mapping_contains."""

    def test_self_referential_viewer_entry(self) -> None:
        """The orgId:orgId:Viewer entry is recognized."""
        assert org_mapping_contains("x:2:Editor, 3:3:Viewer", "3") is True

    def test_group_entry_is_not_enough(self) -> None:
        """Group-derived entries for the org do not count."""
        document = build_org_mapping([TenantMapping(org_id="3", viewer_groups=["team"])])
        assert org_mapping_contains(document, "3") is False

    def test_other_roles_do_not_match(self) -> None:
        """Only the Viewer role matches."""
        assert org_mapping_contains("3:3:Editor,3:3:Admin", "3") is False

    def test_empty_document(self) -> None:
        """Nothing is contained in an empty document."""
        assert org_mapping_contains("", "1") is False

    def test_encoded_tenant_with_matching_group(self) -> None:
        """A tenant whose viewer group equals its orgId is found in its own encoding."""
        document = build_org_mapping([TenantMapping(org_id="4", viewer_groups=["4"])])
        assert org_mapping_contains(document, "4") is True

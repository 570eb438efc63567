"""Grafana org_mapping document encoding.

Grafana's generic OAuth provider takes a single comma-separated string that
maps group claims to organizations and roles:

    <subject>:<orgId>:<Role>[,<subject>:<orgId>:<Role>...]

The colon is both the field delimiter and a legal character in group claim
names, so literal colons inside the subject are escaped as ``\\:``. The orgId
and role are never escaped.

Everything in this module is pure: no I/O, no logging, no failure modes for
well-typed input.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum

ENTRY_SEPARATOR = ","
FIELD_SEPARATOR = ":"
ESCAPE = "\\"


class Role(str, Enum):
    """Grafana organization roles."""

    VIEWER = "Viewer"
    EDITOR = "Editor"
    ADMIN = "Admin"


@dataclass(frozen=True)
class TenantMapping:
    """The fields of a tenant that produce org_mapping entries."""

    org_id: str
    viewer_groups: Sequence[str] = field(default_factory=tuple)
    editor_groups: Sequence[str] = field(default_factory=tuple)
    admin_groups: Sequence[str] = field(default_factory=tuple)


@dataclass(frozen=True)
class MappingEntry:
    """A single subject -> organization -> role entry."""

    subject: str
    org_id: str
    role: Role

    def render(self) -> str:
        """Render the entry in org_mapping form, escaping the subject."""
        return f"{escape_colon(self.subject)}:{self.org_id}:{self.role.value}"


def escape_colon(value: str) -> str:
    """Escape literal colons for use as an org_mapping subject."""
    return value.replace(FIELD_SEPARATOR, ESCAPE + FIELD_SEPARATOR)


def unescape_colon(value: str) -> str:
    """Reverse escape_colon."""
    return value.replace(ESCAPE + FIELD_SEPARATOR, FIELD_SEPARATOR)


def iter_entries(tenants: Iterable[TenantMapping]) -> Iterable[MappingEntry]:
    """Yield entries for tenants in input order.

    Per tenant: every viewer group, then editor groups, then admin groups,
    each in declared order.
    """
    for tenant in tenants:
        for role, groups in (
            (Role.VIEWER, tenant.viewer_groups),
            (Role.EDITOR, tenant.editor_groups),
            (Role.ADMIN, tenant.admin_groups),
        ):
            for group in groups or ():
                yield MappingEntry(subject=group, org_id=tenant.org_id, role=role)


def build_org_mapping(tenants: Iterable[TenantMapping]) -> str:
    """Produce the org_mapping value for a set of tenants.

    Tenants without any groups contribute nothing, so an empty input (or one
    where no tenant declares groups) yields the empty string.
    """
    return ENTRY_SEPARATOR.join(entry.render() for entry in iter_entries(tenants))


def _split_unescaped(value: str, separator: str) -> list[str]:
    """Split on separator occurrences not preceded by the escape character.

    Escape sequences are kept verbatim in the returned parts.
    """
    parts: list[str] = []
    current: list[str] = []
    escaped = False
    for char in value:
        if escaped:
            current.append(char)
            escaped = False
        elif char == ESCAPE:
            current.append(char)
            escaped = True
        elif char == separator:
            parts.append("".join(current))
            current = []
        else:
            current.append(char)
    parts.append("".join(current))
    return parts


def split_entries(document: str) -> list[str]:
    """Split an org_mapping document into trimmed, non-empty raw entries."""
    if not document:
        return []
    return [
        part.strip()
        for part in _split_unescaped(document, ENTRY_SEPARATOR)
        if part.strip()
    ]


def parse_entry(entry: str) -> MappingEntry:
    """Parse one raw entry back into a MappingEntry.

    The subject may contain escaped colons; orgId and role are taken from the
    last two unescaped fields.

    Raises:
        ValueError: If the entry does not have three fields or the role is unknown.
    """
    fields = _split_unescaped(entry.strip(), FIELD_SEPARATOR)
    if len(fields) != 3:
        raise ValueError(f"Invalid org_mapping entry (expected subject:orgId:Role): {entry!r}")
    subject, org_id, role = fields
    try:
        parsed_role = Role(role)
    except ValueError as e:
        valid = [r.value for r in Role]
        raise ValueError(f"Invalid org_mapping role {role!r}, must be one of {valid}") from e
    return MappingEntry(subject=unescape_colon(subject), org_id=org_id, role=parsed_role)


def parse_org_mapping(document: str) -> list[MappingEntry]:
    """Parse a whole org_mapping document."""
    return [parse_entry(entry) for entry in split_entries(document)]


def org_mapping_contains(document: str, org_id: str) -> bool:
    """Check whether the document holds the default viewer entry for org_id.

    The entry looked for is the self-referential ``<orgId>:<orgId>:Viewer``.
    build_org_mapping never emits that entry for group-based tenants, so a
    tenant whose only entries come from its groups reads as missing here.
    """
    wanted = f"{org_id}:{org_id}:{Role.VIEWER.value}"
    return any(entry == wanted for entry in split_entries(document))

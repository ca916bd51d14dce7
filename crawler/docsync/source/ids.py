"""
Collation-aware ordering of repository object identifiers.

Repository object ids are GUIDs such as "{AAAAAAAA-BBBB-CCCC-DDDD-EEEEEEEEEEEE}".
Change queries resume with "time > t OR (time = t AND id > uuid)", so ties on
the modification time are broken by however the backing database orders the
id column. The merge engine must break ties the same way, or a resumed
traversal could skip or repeat records that share a timestamp.

Invariants:
    - id_sort_key is a total order for any fixed DatabaseType
    - GUID text is compared case-insensitively and without braces
    - Non-GUID identifiers fall back to plain text ordering
"""

from __future__ import annotations

import re
from enum import Enum

_GUID_RE = re.compile(
    r"^\{?([0-9A-Fa-f]{8})-([0-9A-Fa-f]{4})-([0-9A-Fa-f]{4})-"
    r"([0-9A-Fa-f]{4})-([0-9A-Fa-f]{12})\}?$"
)


class DatabaseType(Enum):
    """Database engines that back a repository object store."""

    DB2 = "db2"
    MSSQL = "mssql"
    ORACLE = "oracle"


def _reverse_hex_bytes(group: str) -> str:
    return "".join(group[i : i + 2] for i in range(len(group) - 2, -1, -2))


def id_sort_key(object_id: str, database_type: DatabaseType | None = None) -> tuple[int, str]:
    """Return a sort key for an object id under a database collation.

    SQL Server orders uniqueidentifier values by the last group first, then
    the fourth group, then the third, second and first groups with their
    bytes reversed (those groups are stored little-endian). The other
    databases order the canonical hex text.

    Args:
        object_id: Object identifier, usually a braced GUID
        database_type: Collation to follow; None behaves like text ordering

    Returns:
        Tuple usable as a sort key. GUIDs sort before non-GUID ids.
    """
    match = _GUID_RE.match(object_id.strip())
    if not match:
        return (1, object_id)

    a, b, c, d, e = (group.upper() for group in match.groups())
    if database_type == DatabaseType.MSSQL:
        return (0, e + d + _reverse_hex_bytes(c) + _reverse_hex_bytes(b) + _reverse_hex_bytes(a))
    return (0, a + b + c + d + e)


def normalize_id(object_id: str) -> str:
    """Return the canonical braced upper-case form of a GUID id."""
    match = _GUID_RE.match(object_id.strip())
    if not match:
        return object_id
    return "{" + "-".join(group.upper() for group in match.groups()) + "}"

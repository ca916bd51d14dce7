"""
Access control resolution for folder ACL documents.

This module turns the access entries captured for a folder into the
effective allow/deny principal sets that are sent to the index:
- Principal and access entry types
- Filtering entries to the rights that make content viewable
- Source precedence (direct entries override inherited ones)

Invariants:
    - Only entries sharing a bit with the viewable rights mask are relevant
    - A principal with any DIRECT entry keeps only its DIRECT entries
    - TEMPLATE entries aggregate together with PARENT entries
    - Each principal appears at most once per effective set

How to change safely:
    - Changing VIEW_RIGHTS changes what every indexed folder exposes
    - Keep output ordering deterministic (first-seen order)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum, IntFlag
from typing import Any

logger = logging.getLogger(__name__)


class AccessRight(IntFlag):
    """Access right bits as reported by the repository."""

    NONE = 0
    READ = 1
    WRITE = 2
    VIEW_CONTENT = 128
    DELETE = 65536
    READ_ACL = 131072
    WRITE_ACL = 262144


VIEW_RIGHTS = AccessRight.READ | AccessRight.VIEW_CONTENT


class PrincipalType(Enum):
    """Kind of security principal."""

    USER = "user"
    GROUP = "group"


class AccessType(Enum):
    """Whether an entry grants or denies its rights."""

    ALLOW = "allow"
    DENY = "deny"


class PermissionSource(Enum):
    """Where an access entry came from."""

    DIRECT = "direct"
    PARENT = "parent"
    TEMPLATE = "template"


@dataclass(frozen=True)
class Principal:
    """A user or group named in an access entry.

    Attributes:
        name: Principal name as known to the repository
        type: USER or GROUP
    """

    name: str
    type: PrincipalType

    def __str__(self) -> str:
        return f"{self.type.value}:{self.name}"

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "type": self.type.value}


@dataclass(frozen=True)
class AccessEntry:
    """One captured access control entry.

    Attributes:
        principal: Who the entry applies to
        access_type: ALLOW or DENY
        source: DIRECT, PARENT or TEMPLATE
        rights_mask: Rights the entry grants or denies
    """

    principal: Principal
    access_type: AccessType
    source: PermissionSource
    rights_mask: int

    def is_viewable(self, view_rights: int = VIEW_RIGHTS) -> bool:
        """Whether the entry grants or denies at least one viewable right."""
        return bool(self.rights_mask & view_rights)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccessEntry:
        """Create from dictionary."""
        return cls(
            principal=Principal(
                name=data["name"],
                type=PrincipalType(data.get("principal_type", PrincipalType.USER.value)),
            ),
            access_type=AccessType(data["access_type"]),
            source=PermissionSource(data.get("source", PermissionSource.DIRECT.value)),
            rights_mask=int(data.get("rights_mask", VIEW_RIGHTS)),
        )


@dataclass(frozen=True)
class EffectiveAcl:
    """Resolved principal sets for one folder.

    Attributes:
        allow_users: Users granted view access
        deny_users: Users denied view access
        allow_groups: Groups granted view access
        deny_groups: Groups denied view access
    """

    allow_users: tuple[Principal, ...] = ()
    deny_users: tuple[Principal, ...] = ()
    allow_groups: tuple[Principal, ...] = ()
    deny_groups: tuple[Principal, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.allow_users or self.deny_users or self.allow_groups or self.deny_groups)


class AclResolver:
    """Computes effective ACLs from access entries.

    Thread safety:
        This class is stateless and thread-safe.

    Example:
        >>> resolver = AclResolver()
        >>> acl = resolver.resolve(entries)
        >>> [p.name for p in acl.allow_users]
        ['alice']
    """

    def __init__(self, view_rights: int = VIEW_RIGHTS) -> None:
        self.view_rights = view_rights

    def relevant_entries(self, entries: Iterable[AccessEntry]) -> list[AccessEntry]:
        """Drop entries that do not touch any viewable right."""
        relevant = []
        for entry in entries:
            if entry.is_viewable(self.view_rights):
                relevant.append(entry)
            else:
                logger.debug(
                    "Ignoring access entry without view rights",
                    extra={"principal": str(entry.principal), "rights_mask": entry.rights_mask},
                )
        return relevant

    def resolve(self, entries: Iterable[AccessEntry]) -> EffectiveAcl:
        """Resolve access entries into an effective ACL.

        Args:
            entries: Entries captured for one folder, in repository order

        Returns:
            EffectiveAcl with duplicate-free, first-seen ordered tuples
        """
        relevant = self.relevant_entries(entries)

        direct_principals = {
            entry.principal for entry in relevant if entry.source == PermissionSource.DIRECT
        }

        buckets: dict[tuple[AccessType, PrincipalType], dict[Principal, None]] = {
            (access_type, principal_type): {}
            for access_type in AccessType
            for principal_type in PrincipalType
        }

        for entry in relevant:
            if entry.source != PermissionSource.DIRECT and entry.principal in direct_principals:
                continue
            buckets[(entry.access_type, entry.principal.type)][entry.principal] = None

        return EffectiveAcl(
            allow_users=tuple(buckets[(AccessType.ALLOW, PrincipalType.USER)]),
            deny_users=tuple(buckets[(AccessType.DENY, PrincipalType.USER)]),
            allow_groups=tuple(buckets[(AccessType.ALLOW, PrincipalType.GROUP)]),
            deny_groups=tuple(buckets[(AccessType.DENY, PrincipalType.GROUP)]),
        )


# Default ACL resolver instance
_default_resolver: AclResolver | None = None


def get_acl_resolver() -> AclResolver:
    """Get the default ACL resolver instance."""
    global _default_resolver
    if _default_resolver is None:
        _default_resolver = AclResolver()
    return _default_resolver

"""
Document events emitted by the traversals.

Events are a closed set of frozen variants:
- AddDocument: content to (re)index, fetched lazily from the object store
- DeleteDocument: a version series to remove from the index
- AclDocument: the resolved access control list of one folder

Invariants:
    - Events are immutable once emitted
    - to_dict() output is JSON-serializable and stable for equal events
    - Folder ACL document ids always end with SEC_FOLDER_POSTFIX
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Union

from ..acl import EffectiveAcl, Principal
from ..checkpoint.codec import format_time
from ..source.base import ChangeKind, DocumentContent, ObjectStore

SEC_FOLDER_POSTFIX = "-FLDR"


class ActionType(Enum):
    """What the index should do with an event."""

    ADD = "add"
    DELETE = "delete"


class AclInheritanceType(Enum):
    """How a folder ACL combines with the ACLs below it."""

    CHILD_OVERRIDES = "child-overrides"
    PARENT_OVERRIDES = "parent-overrides"
    AND_BOTH_PERMIT = "and-both-permit"
    LEAF_NODE = "leaf-node"


@dataclass(frozen=True)
class AddDocument:
    """A new or modified document.

    Attributes:
        doc_id: Object id used to fetch content
        version_series_id: Version series the index keys the document by
        modify_time: Modification time that ordered the event
        display_url: Link shown in search results, if configured
    """

    doc_id: str
    version_series_id: str | None
    modify_time: datetime
    display_url: str | None = None

    action = ActionType.ADD

    @property
    def index_id(self) -> str:
        return self.version_series_id or self.doc_id

    def fetch(self, object_store: ObjectStore) -> DocumentContent:
        """Fetch content and metadata through the object store.

        Raises:
            DocumentNotFoundError: If the object has since been removed
        """
        return object_store.fetch_document(self.doc_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "doc_id": self.doc_id,
            "version_series_id": self.version_series_id,
            "modify_time": format_time(self.modify_time),
            "display_url": self.display_url,
        }


@dataclass(frozen=True)
class DeleteDocument:
    """A version series to remove from the index.

    Attributes:
        version_series_id: Version series to delete
        modify_time: Time the deletion was observed
        source_kind: DELETION_EVENT or CUSTOM_DELETE
    """

    version_series_id: str
    modify_time: datetime
    source_kind: ChangeKind = ChangeKind.DELETION_EVENT

    action = ActionType.DELETE

    @property
    def index_id(self) -> str:
        return self.version_series_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "version_series_id": self.version_series_id,
            "modify_time": format_time(self.modify_time),
            "source": self.source_kind.value,
        }


@dataclass(frozen=True)
class AclDocument:
    """Resolved ACL of one folder.

    Attributes:
        doc_id: Folder id + SEC_FOLDER_POSTFIX
        folder_id: Folder the ACL belongs to
        folder_name: Folder name
        modify_time: Folder modification time
        acl: Effective allow/deny principal sets
        child_document_ids: Documents filed in the folder
        inheritance_type: Always CHILD_OVERRIDES for folder ACLs
        inherit_from: Parent ACL document id; folder ACLs are self-contained
    """

    doc_id: str
    folder_id: str
    folder_name: str
    modify_time: datetime
    acl: EffectiveAcl
    child_document_ids: tuple[str, ...] = ()
    inheritance_type: AclInheritanceType = AclInheritanceType.CHILD_OVERRIDES
    inherit_from: str | None = None

    action = ActionType.ADD

    @classmethod
    def for_folder(
        cls,
        folder_id: str,
        folder_name: str,
        modify_time: datetime,
        acl: EffectiveAcl,
        child_document_ids: tuple[str, ...] = (),
    ) -> AclDocument:
        return cls(
            doc_id=f"{folder_id}{SEC_FOLDER_POSTFIX}",
            folder_id=folder_id,
            folder_name=folder_name,
            modify_time=modify_time,
            acl=acl,
            child_document_ids=child_document_ids,
        )

    @property
    def index_id(self) -> str:
        return self.doc_id

    @property
    def allow_users(self) -> tuple[Principal, ...]:
        return self.acl.allow_users

    @property
    def deny_users(self) -> tuple[Principal, ...]:
        return self.acl.deny_users

    @property
    def allow_groups(self) -> tuple[Principal, ...]:
        return self.acl.allow_groups

    @property
    def deny_groups(self) -> tuple[Principal, ...]:
        return self.acl.deny_groups

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "doc_id": self.doc_id,
            "folder_id": self.folder_id,
            "folder_name": self.folder_name,
            "modify_time": format_time(self.modify_time),
            "inheritance_type": self.inheritance_type.value,
            "inherit_from": self.inherit_from,
            "allow_users": [p.to_dict() for p in self.acl.allow_users],
            "deny_users": [p.to_dict() for p in self.acl.deny_users],
            "allow_groups": [p.to_dict() for p in self.acl.allow_groups],
            "deny_groups": [p.to_dict() for p in self.acl.deny_groups],
            "child_document_ids": list(self.child_document_ids),
        }


DocumentEvent = Union[AddDocument, DeleteDocument, AclDocument]

"""
Traversals that turn repository changes into document events.

- DocumentList merges add, deletion event and custom delete batches
- TraversalManager fetches those batches from a change source
- SecurityFolderTraverser walks folders and emits folder ACL documents

Both traversals share the pull protocol: next_document() returns an event,
raises SkippedDocumentError for an intentionally dropped record, and returns
None at end-of-sequence; checkpoint() is valid after any of these.
"""

from .document_list import DocumentList, Step, build_document_list, compare_records, emit
from .documents import (
    SEC_FOLDER_POSTFIX,
    AclDocument,
    AclInheritanceType,
    ActionType,
    AddDocument,
    DeleteDocument,
    DocumentEvent,
)
from .manager import TraversalManager
from .security import SecurityFolderDocumentList, SecurityFolderTraverser

__all__ = [
    # Events
    "SEC_FOLDER_POSTFIX",
    "AclDocument",
    "AclInheritanceType",
    "ActionType",
    "AddDocument",
    "DeleteDocument",
    "DocumentEvent",
    # Content traversal
    "DocumentList",
    "Step",
    "build_document_list",
    "compare_records",
    "emit",
    "TraversalManager",
    # Security traversal
    "SecurityFolderDocumentList",
    "SecurityFolderTraverser",
]

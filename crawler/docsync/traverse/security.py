"""
Security folder traversal.

The SecurityFolderTraverser walks the folder hierarchy and emits one
AclDocument per folder carrying the folder's effective allow/deny
principals.

Traversal:
    1. Fetch one root-level batch after the FOLDER slot (the root cursor)
    2. Walk the roots in order; each root's sub-tree is walked breadth-first
    3. For each folder: resolve its ACL, emit an AclDocument, enqueue its
       direct sub-folders in repository order, and record it as the last
       folder of the walk
    4. When a root's sub-tree has drained, advance the FOLDER slot to the
       root position and clear the walk

Resuming:
    The checkpoint names the root being walked and the last folder
    consumed under it. A list seeded with that root replays the sub-tree
    structure up to that folder without reading permissions, then carries
    on from the pending queue.

Invariants:
    - Each folder id is visited at most once per document list
    - The FOLDER slot only moves past a root once its sub-tree is walked,
      so a later batch never skips an unvisited root
    - A folder whose permissions cannot be read still enqueues its
      sub-folders and is recorded in the walk before the error is raised
    - The FOLDER slot and the walk are the only state this traversal touches

How to change safely:
    - The queue is explicit; do not replace it with recursion, deep trees
      would exhaust the stack
    - Resume depends on sub_folders() returning a stable order
    - ACL semantics live in acl.py, not here
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator

from ..acl import AclResolver, get_acl_resolver
from ..checkpoint.codec import Checkpoint, CheckpointSlot, FolderWalk, Position
from ..errors import RepositoryDocumentError, RepositoryError, SkippedDocumentError
from ..source.base import Folder, FolderSource
from ..source.ids import DatabaseType
from .documents import SEC_FOLDER_POSTFIX, AclDocument

logger = logging.getLogger(__name__)


class SecurityFolderDocumentList:
    """Root-by-root, breadth-first sequence of folder ACL documents.

    Pull protocol is the same as DocumentList: next_document() returns an
    AclDocument or None at end-of-sequence, and checkpoint() reflects every
    folder consumed so far.
    """

    def __init__(
        self,
        root_folders: list[Folder],
        checkpoint: Checkpoint,
        acl_resolver: AclResolver,
        database_type: DatabaseType | None = None,
    ) -> None:
        self._roots: deque[Folder] = deque(root_folders)
        self._queue: deque[Folder] = deque()
        self._root: Folder | None = None
        self._visited: set[str] = set()
        self._checkpoint = checkpoint
        self._resolver = acl_resolver
        self._database_type = database_type
        self._emitted = 0
        self._failed = 0
        self._replayed = 0

        logger.info("Number of root folders discovered: %d", len(root_folders))

    def next_document(self) -> AclDocument | None:
        """Visit the next folder.

        Raises:
            RepositoryDocumentError: The folder's permissions could not be read
        """
        while True:
            while self._queue:
                folder = self._queue.popleft()
                if folder.id in self._visited:
                    logger.debug("Folder already visited", extra={"folder_id": folder.id})
                    continue
                self._visited.add(folder.id)
                return self._visit(folder)

            self._finish_root()
            if not self._roots:
                return None
            self._start_root(self._roots.popleft())

    def _start_root(self, root: Folder) -> None:
        self._root = root
        walk = self._checkpoint.folder_walk
        if walk is not None and walk.root_id == root.id:
            self._queue = self._replay(root, walk.folder_id)
        else:
            self._queue = deque([root])

    def _replay(self, root: Folder, last_folder_id: str) -> deque[Folder]:
        """Rebuild the pending queue of a walk interrupted after a folder.

        Folders up to and including ``last_folder_id`` are marked visited
        without reading their permissions. If the folder is no longer in the
        sub-tree the whole sub-tree is walked again.
        """
        queue: deque[Folder] = deque([root])
        seen: set[str] = set()
        while queue:
            folder = queue.popleft()
            if folder.id in seen or folder.id in self._visited:
                continue
            seen.add(folder.id)
            queue.extend(folder.sub_folders())
            if folder.id == last_folder_id:
                self._visited.update(seen)
                self._replayed += len(seen)
                logger.info(
                    "Resuming folder walk",
                    extra={"root_id": root.id, "folder_id": last_folder_id, "replayed": len(seen)},
                )
                return queue

        logger.warning(
            "Last walked folder not found under root, walking it again",
            extra={"root_id": root.id, "folder_id": last_folder_id},
        )
        return deque([root])

    def _finish_root(self) -> None:
        if self._root is None:
            return
        position = Position(time=self._root.modify_time, uuid=self._root.id)
        self._checkpoint = self._checkpoint.advance(
            CheckpointSlot.FOLDER, position, self._database_type
        ).with_folder_walk(None)
        logger.debug("Root folder walked", extra={"root_id": self._root.id})
        self._root = None

    def _visit(self, folder: Folder) -> AclDocument:
        failure: RepositoryError | None = None
        try:
            entries = folder.permissions()
        except RepositoryError as e:
            failure = e
            entries = []

        sub_folders = list(folder.sub_folders())
        self._queue.extend(sub_folders)
        self._checkpoint = self._checkpoint.with_folder_walk(
            FolderWalk(root_id=self._root.id, folder_id=folder.id)
        )
        if not any(f.id not in self._visited for f in self._queue):
            self._queue.clear()
            self._finish_root()

        if failure is not None:
            self._failed += 1
            logger.error(
                "Unable to read folder permissions",
                extra={"folder_id": folder.id, "error": str(failure)},
            )
            raise RepositoryDocumentError(
                f"Unable to read permissions of folder {folder.id}: {failure}",
                doc_id=f"{folder.id}{SEC_FOLDER_POSTFIX}",
            ) from failure

        acl = self._resolver.resolve(entries)
        child_ids = tuple(folder.contained_documents())

        logger.debug(
            "Creating folder ACL document",
            extra={
                "folder_id": folder.id,
                "sub_folders": len(sub_folders),
                "documents": len(child_ids),
            },
        )
        self._emitted += 1
        return AclDocument.for_folder(
            folder_id=folder.id,
            folder_name=folder.name,
            modify_time=folder.modify_time,
            acl=acl,
            child_document_ids=child_ids,
        )

    def checkpoint(self) -> str:
        """Serialized checkpoint reflecting every folder consumed so far."""
        return self._checkpoint.serialize()

    @property
    def current_checkpoint(self) -> Checkpoint:
        return self._checkpoint

    @property
    def stats(self) -> dict[str, int]:
        return {
            "emitted": self._emitted,
            "replayed": self._replayed,
            "queued": len(self._queue),
            "failed": self._failed,
        }

    def __iter__(self) -> Iterator[AclDocument]:
        while True:
            try:
                document = self.next_document()
            except SkippedDocumentError as e:
                logger.debug(e.message)
                continue
            if document is None:
                return
            yield document


class SecurityFolderTraverser:
    """Builds folder ACL document lists from a folder source.

    Example:
        >>> traverser = SecurityFolderTraverser(repository, batch_hint=100)
        >>> docs = traverser.get_document_list(None)
        >>> acls = list(docs)
    """

    def __init__(
        self,
        folder_source: FolderSource,
        batch_hint: int = 100,
        acl_resolver: AclResolver | None = None,
        database_type: DatabaseType | None = None,
    ) -> None:
        self.folder_source = folder_source
        self.batch_hint = batch_hint
        self.acl_resolver = acl_resolver or get_acl_resolver()
        self.database_type = database_type

    def set_batch_hint(self, batch_hint: int) -> None:
        """Set the maximum number of root folders fetched per list."""
        if batch_hint < 1:
            raise ValueError(f"batch_hint must be positive, got {batch_hint}")
        self.batch_hint = batch_hint

    def start_traversal(self) -> SecurityFolderDocumentList:
        return self.get_document_list(None)

    def resume_traversal(self, checkpoint: str) -> SecurityFolderDocumentList:
        return self.get_document_list(checkpoint)

    def get_document_list(
        self, checkpoint: str | Checkpoint | None
    ) -> SecurityFolderDocumentList:
        """Fetch one root folder batch and prepare the traversal.

        Raises:
            CheckpointFormatError: If the checkpoint is malformed
            RepositoryError: If the root folder query fails
        """
        if not isinstance(checkpoint, Checkpoint):
            checkpoint = Checkpoint.parse(checkpoint)

        logger.info("Traversing security folders", extra={"batch_hint": self.batch_hint})
        root_folders = self.folder_source.find_folders(
            checkpoint.get(CheckpointSlot.FOLDER), self.batch_hint
        )
        return SecurityFolderDocumentList(
            list(root_folders),
            checkpoint,
            self.acl_resolver,
            database_type=self.database_type,
        )

"""
docsync - Incremental document repository connector for search indexing.

This package discovers content and permission changes in a document
repository and delivers them, in a globally consistent order, to a
search index:
- Added/modified documents, hard deletion events and custom delete
  query results are merged into one ordered event stream
- Folders are walked breadth-first and each yields an ACL document
- Every consumed record advances a resumable checkpoint

Architecture:
    ┌──────────────┐     ┌──────────────────┐     ┌──────────────┐
    │  Repository  │────▶│ TraversalManager │────▶│ DocumentList │
    │  (plug-in)   │     │ SecurityTraverser│     │ (merge/BFS)  │
    └──────────────┘     └──────────────────┘     └──────┬───────┘
                                                         │
                        ┌────────────────────────────────┤
                        ▼                                ▼
                 ┌─────────────┐                  ┌─────────────┐
                 │ Checkpoint  │                  │    Sink     │
                 │ (file / S3) │                  │   (Kafka)   │
                 └─────────────┘                  └─────────────┘

Invariants:
    - Events are emitted in (modify_time, id) order within a traversal
    - Checkpoint slots never regress
    - The checkpoint is persisted after the sink accepted each event
    - Unreleased deletions are never emitted

How to change safely:
    - Checkpoint JSON field names outlive releases; never rename them
    - Repository plug-ins depend on the protocols in source/base.py
"""

from ._version import __version__

__all__ = ["__version__"]

"""
docsync Test Suite.

This package contains:
- unit/: Unit tests (in-memory repository, fake Kafka and S3 clients)
- integration/: Runner and connector tests wired with in-memory collaborators
"""

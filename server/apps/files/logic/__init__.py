"""Business logic layer for files app.

This package contains all business logic of the storage service:
- Folder tree operations over materialized paths
- Lock ordering for operations touching several folders
- The upload pipeline: metadata first, bytes placed after commit
- The retention and recovery sweeper

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).
"""

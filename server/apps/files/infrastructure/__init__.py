"""Infrastructure layer for files app.

This package contains integrations with external systems:
- The blob store (S3/MinIO backed storage)
- Metadata extraction (content type, checksum, name rules)

Keep infrastructure concerns separate from business logic.
"""

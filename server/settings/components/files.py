"""Retention, recovery and listing settings for the files app."""

from server.settings.components import config

# Uploads stuck in PENDING/FAILED longer than this are checked for recovery.
# Rows still unresolved after twice this window are purged.
STORAGE_STALE_UPLOAD_MINUTES = config(
    'STORAGE_STALE_UPLOAD_MINUTES',
    cast=int,
    default=60,
)

# Soft-deleted rows are kept this long before they are hard-deleted.
STORAGE_DELETE_RETENTION_MINUTES = config(
    'STORAGE_DELETE_RETENTION_MINUTES',
    cast=int,
    default=30,
)

STORAGE_SWEEP_INTERVAL_SECONDS = config(
    'STORAGE_SWEEP_INTERVAL_SECONDS',
    cast=int,
    default=300,
)

# Folder listing pagination
STORAGE_LIST_DEFAULT_PAGE_SIZE = config(
    'STORAGE_LIST_DEFAULT_PAGE_SIZE',
    cast=int,
    default=200,
)
STORAGE_LIST_MAX_PAGE_SIZE = config(
    'STORAGE_LIST_MAX_PAGE_SIZE',
    cast=int,
    default=1000,
)

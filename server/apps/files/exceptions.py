"""Exceptions for files app.

The upstream request layer maps these to responses:
NotFoundError -> 404, ConflictError -> 409,
InvalidOperationError -> 400, StorageIOError and InternalError -> 500.
"""


class StorageServiceError(Exception):
    """Base class for errors raised by the files app."""


class NotFoundError(StorageServiceError):
    """Raised for missing rows, foreign rows and files not yet available.

    Files that are PENDING or FAILED are reported exactly like files
    that do not exist, so partially written content is never exposed.
    """


class ConflictError(StorageServiceError):
    """Raised when a sibling with the same name already exists."""

    def __init__(self, name: str) -> None:
        """Initialize ConflictError.

        Args:
            name: Folder or file name that collides.
        """
        self.name = name
        super().__init__(f"'{name}' already exists in this location")


class InvalidOperationError(StorageServiceError):
    """Raised for operations the tree cannot perform.

    Example: moving a folder into its own subtree.
    """


class InvalidInputError(InvalidOperationError):
    """Raised when a folder or file name is malformed."""


class StorageIOError(StorageServiceError):
    """Raised when uploaded bytes cannot be staged.

    The metadata row of the upload is left in FAILED state.
    """

    def __init__(self, file_id: int) -> None:
        """Initialize StorageIOError.

        Args:
            file_id: ID of the file row marked FAILED.
        """
        self.file_id = file_id
        super().__init__(f'Failed to stage upload for file {file_id}')


class InternalError(StorageServiceError):
    """Raised for unexpected failures at the service boundary."""

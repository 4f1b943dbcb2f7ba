"""Row lock ordering for operations that touch several folders.

Every operation that holds locks on more than one folder acquires
them in ascending id order, whatever order the caller names them in.
Two concurrent movers therefore always wait on the lower id first
and can never hold each other's second lock.
"""

import logging

from server.apps.files.exceptions import NotFoundError
from server.apps.files.models import Folder

logger = logging.getLogger(__name__)


def lock_folders(owner_id: int, *folder_ids: int) -> dict[int, Folder]:
    """Lock live folders of an owner in ascending id order.

    Rows are locked one ``SELECT ... FOR UPDATE`` at a time so the
    acquisition order does not depend on the query plan. Must run
    inside ``transaction.atomic()``.

    Args:
        owner_id: Owner of the folders.
        folder_ids: IDs to lock; duplicates are locked once.

    Returns:
        Locked folders keyed by id.

    Raises:
        NotFoundError: If a folder is missing, deleted or foreign.
    """
    locked: dict[int, Folder] = {}
    for folder_id in sorted(set(folder_ids)):
        try:
            locked[folder_id] = Folder.objects.select_for_update().get(
                id=folder_id,
                owner_id=owner_id,
                is_deleted=False,
            )
        except Folder.DoesNotExist as error:
            raise NotFoundError(f'Folder not found: {folder_id}') from error
        logger.debug('Locked folder %d', folder_id)
    return locked

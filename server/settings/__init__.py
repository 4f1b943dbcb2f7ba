"""Django settings for the storage service project.

Settings are split into components that are glued together
with ``django-split-settings``. Every component reads its values
from the environment (or ``config/.env``) through ``python-decouple``.
"""

from split_settings.tools import include

include(
    'components/common.py',
    'components/logging.py',
    'components/storages.py',
    'components/celery.py',
    'components/files.py',
)

"""Management command to run the storage sweeper once."""

import logging
from typing import Any, Final

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from server.apps.files.logic import sweeper

_PASSES: Final = ('recover', 'purge', 'reclaim')

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Recover stale uploads, purge dead ones and reclaim deleted rows."""

    help = 'Run the storage sweeper (recovery, purge and reclamation)'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be swept without changing anything',
        )
        parser.add_argument(
            '--only',
            choices=_PASSES,
            help='Run a single pass instead of the full sweep',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the sweep.

        Args:
            args: Positional arguments (unused).
            options: Command options.

        Raises:
            CommandError: If any pass failed.
        """
        dry_run = options['dry_run']
        only = options['only']
        now = timezone.now()

        self.stdout.write(f'Sweeping storage at {now}')

        if only is None:
            report = sweeper.run_sweep(now, dry_run=dry_run)
        else:
            report = sweeper.SweepReport()
            if only == 'recover':
                report.recovered = sweeper.recover_stale_uploads(now, dry_run=dry_run)
            elif only == 'purge':
                report.purged = sweeper.purge_stale_uploads(now, dry_run=dry_run)
            else:
                report.reclaimed = sweeper.reclaim_deleted(now, dry_run=dry_run)

        reclaimed = report.reclaimed
        counts = (
            f'{report.recovered} uploads recovered, '
            f'{report.purged} uploads purged, '
            f'{reclaimed.files} files and {reclaimed.folders} folders reclaimed'
        )
        if dry_run:
            self.stdout.write(f'Would sweep: {counts}')
        else:
            self.stdout.write(f'Swept: {counts}')
        if reclaimed.blobs_failed:
            self.stderr.write(
                f'{reclaimed.blobs_failed} blobs could not be deleted (orphaned)',
            )

        if report.failed_passes:
            logger.error('Sweep passes failed: %s', report.failed_passes)
            raise CommandError(
                f'Sweep passes failed: {", ".join(report.failed_passes)}',
            )

        self.stdout.write(self.style.SUCCESS('Sweep finished'))

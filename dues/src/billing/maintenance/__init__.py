"""Bulk maintenance jobs run from the CLI."""

from .batching import run_in_batches
from .duplicates import DuplicateReport, DuplicateResolver, duplicate_resolver
from .renewal_alignment import RenewalAlignmentMigrator, renewal_alignment_migrator
from .trial_cleanup import TrialCleanupService, trial_cleanup_service

__all__ = [
    'run_in_batches',
    'DuplicateReport',
    'DuplicateResolver',
    'duplicate_resolver',
    'RenewalAlignmentMigrator',
    'renewal_alignment_migrator',
    'TrialCleanupService',
    'trial_cleanup_service',
]

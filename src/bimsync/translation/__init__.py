"""
Derivative translation: job state and the polling tracker.
"""

from bimsync.translation.job import TERMINAL_STATES, JobState, TranslationJob
from bimsync.translation.tracker import DerivativeTranslationTracker, TranslationBackend

__all__ = [
    "JobState",
    "TERMINAL_STATES",
    "TranslationJob",
    "TranslationBackend",
    "DerivativeTranslationTracker",
]

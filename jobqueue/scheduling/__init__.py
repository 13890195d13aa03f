"""
Scheduling module.
Contains job reservation and the retry/backoff policy.
"""

from jobqueue.scheduling.backoff import RetryPolicy, backoff_delay
from jobqueue.scheduling.reservation import Reservation

__all__ = [
    "RetryPolicy",
    "backoff_delay",
    "Reservation",
]

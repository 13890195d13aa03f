"""
Type definitions for the job queue.
"""

from jobqueue.types.job import EnqueueOptions, PayloadEnvelope

__all__ = [
    "EnqueueOptions",
    "PayloadEnvelope",
]

"""
Worker module.
Contains job invocation and the worker runtime.
"""

from jobqueue.worker.invocation import invoke_job
from jobqueue.worker.main import Worker

__all__ = [
    "invoke_job",
    "Worker",
]

"""
Job invocation.

Runs a job's performable through its lifecycle hooks:

    before -> perform -> success -> after         (success)
    before -> error -> after                      (perform raised)
    error -> after                                (before raised)

Hooks are optional and may be plain or async functions. `after` always
runs last, also when the attempt raised. Handlers must be idempotent:
a crash between perform and the job's deletion re-runs the job.
"""

import logging

from jobqueue.db.models import Job
from jobqueue.payload.performable import call_hook, has_hook

logger = logging.getLogger(__name__)


async def invoke_job(job: Job) -> None:
    """
    Execute a job's performable with its hooks.

    Args:
        job: The job to invoke.

    Raises:
        DeserializationError: If the payload cannot be loaded.
        Exception: Whatever the before hook or perform raised, after the
            error hook has seen it.
    """
    performable = job.payload_object
    logger.debug("Invoking job", extra={"job_id": str(job.id), "job_name": job.name})

    try:
        try:
            if has_hook(performable, "before"):
                await call_hook(performable, "before", job)
            await call_hook(performable, "perform")
        except Exception as e:
            if has_hook(performable, "error"):
                await call_hook(performable, "error", job, e)
            raise
        else:
            if has_hook(performable, "success"):
                await call_hook(performable, "success", job)
    finally:
        if has_hook(performable, "after"):
            await call_hook(performable, "after", job)

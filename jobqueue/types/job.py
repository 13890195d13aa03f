"""
Job-related type definitions for internal use.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from jobqueue.constants import PayloadKind


class PayloadEnvelope(BaseModel):
    """
    Stored form of a performable.

    `type` is the registry name of the performable's class, `kind` says
    how to rebuild it and `attributes` holds its encoded state.
    """

    model_config = ConfigDict(extra="forbid")

    type: str = Field(min_length=1)
    kind: PayloadKind
    attributes: dict[str, Any] = Field(default_factory=dict)


class EnqueueOptions(BaseModel):
    """Options accepted by the mapping form of enqueue."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    payload_object: Any
    priority: int | None = None
    run_at: datetime | None = None
    queue: str | None = None

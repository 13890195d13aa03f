"""
Payload module.
Contains the performable registry, capability checks and the payload codec.
"""

from jobqueue.payload.codec import PayloadCodec, default_codec
from jobqueue.payload.performable import (
    DelayProxy,
    PerformableMethod,
    call_hook,
    has_hook,
    is_performable,
)
from jobqueue.payload.registry import (
    PerformableRegistry,
    performable_registry,
    register_performable,
)

__all__ = [
    "PayloadCodec",
    "default_codec",
    "DelayProxy",
    "PerformableMethod",
    "call_hook",
    "has_hook",
    "is_performable",
    "PerformableRegistry",
    "performable_registry",
    "register_performable",
]

"""
Performable capabilities.

A performable is any object with a `perform()` method. The lifecycle hooks
are optional and are looked up through the protocols below, so a missing
hook is simply skipped.

Hook signatures:
    before(job), after(job), success(job), error(job, exc), failure(job),
    enqueue(job), reschedule_at(now, attempts) -> datetime
"""

import inspect
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from jobqueue.errors import InvalidPerformableError
from jobqueue.payload.registry import register_performable


@runtime_checkable
class SupportsPerform(Protocol):
    def perform(self) -> Any: ...


@runtime_checkable
class SupportsBefore(Protocol):
    def before(self, job: Any) -> Any: ...


@runtime_checkable
class SupportsAfter(Protocol):
    def after(self, job: Any) -> Any: ...


@runtime_checkable
class SupportsSuccess(Protocol):
    def success(self, job: Any) -> Any: ...


@runtime_checkable
class SupportsError(Protocol):
    def error(self, job: Any, exc: BaseException) -> Any: ...


@runtime_checkable
class SupportsFailure(Protocol):
    def failure(self, job: Any) -> Any: ...


@runtime_checkable
class SupportsEnqueue(Protocol):
    def enqueue(self, job: Any) -> Any: ...


@runtime_checkable
class SupportsRescheduleAt(Protocol):
    def reschedule_at(self, now: datetime, attempts: int) -> datetime: ...


@runtime_checkable
class SupportsDisplayName(Protocol):
    display_name: str


HOOKS: dict[str, type] = {
    "before": SupportsBefore,
    "after": SupportsAfter,
    "success": SupportsSuccess,
    "error": SupportsError,
    "failure": SupportsFailure,
    "enqueue": SupportsEnqueue,
    "reschedule_at": SupportsRescheduleAt,
}


async def call_hook(obj: Any, name: str, *args: Any) -> Any:
    """Call a hook or perform, awaiting the result when it is awaitable."""
    result = getattr(obj, name)(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def is_performable(obj: Any) -> bool:
    """Check that an object can be performed."""
    return isinstance(obj, SupportsPerform) and callable(obj.perform)


def has_hook(obj: Any, name: str) -> bool:
    """Check that an object implements the named lifecycle hook."""
    protocol = HOOKS.get(name)
    if protocol is None:
        raise ValueError(f"Unknown hook: {name}")
    return isinstance(obj, protocol) and callable(getattr(obj, name))


@register_performable("PerformableMethod")
class PerformableMethod:
    """A method call on a target object, captured for later execution."""

    def __init__(
        self,
        target: Any,
        method_name: str,
        args: list[Any] | tuple[Any, ...] = (),
        kwargs: dict[str, Any] | None = None,
    ):
        if not callable(getattr(target, method_name, None)):
            raise InvalidPerformableError(
                f"{type(target).__name__} does not respond to {method_name}"
            )
        self.target = target
        self.method_name = method_name
        self.args = list(args)
        self.kwargs = dict(kwargs or {})

    @property
    def display_name(self) -> str:
        return f"{type(self.target).__name__}#{self.method_name}"

    def perform(self) -> Any:
        return getattr(self.target, self.method_name)(*self.args, **self.kwargs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PerformableMethod):
            return NotImplemented
        return (
            self.target == other.target
            and self.method_name == other.method_name
            and self.args == other.args
            and self.kwargs == other.kwargs
        )

    def __repr__(self) -> str:
        return f"PerformableMethod({self.display_name})"


class DelayProxy:
    """
    Turns method calls on a target into enqueued jobs.

    Usage:
        job = await store.delay(report, priority=3).generate(month=5)
    """

    def __init__(
        self,
        enqueue: Callable[..., Awaitable[Any]],
        target: Any,
        **options: Any,
    ):
        self._enqueue = enqueue
        self._target = target
        self._options = options

    def __getattr__(self, method_name: str) -> Callable[..., Awaitable[Any]]:
        if method_name.startswith("_"):
            raise AttributeError(method_name)

        async def enqueue_call(*args: Any, **kwargs: Any) -> Any:
            performable = PerformableMethod(self._target, method_name, args, kwargs)
            return await self._enqueue(performable, **self._options)

        return enqueue_call

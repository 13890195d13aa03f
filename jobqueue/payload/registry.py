"""
Performable type registry.

Payloads name their class by a stable string. The registry is the only
way such a name is turned back into a class: applications register their
performables at import time and anything else fails to load.
"""

import dataclasses
import logging
from typing import Callable, TypeVar

from jobqueue.constants import PayloadKind

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=type)


class PerformableRegistry:
    """Registry of classes that may appear in job payloads."""

    def __init__(self):
        self._types: dict[str, type] = {}
        self._names: dict[type, str] = {}

    def register(self, name: str | None = None) -> Callable[[T], T]:
        """
        Decorator to register a performable class.

        Args:
            name: Stable type name stored in payloads. Defaults to the
                class's qualified name.

        Returns:
            Decorator function.

        Example:
            @registry.register("reports.nightly")
            class NightlyReport:
                def perform(self):
                    ...
        """

        def decorator(cls: T) -> T:
            type_name = name or cls.__qualname__
            previous = self._types.get(type_name)
            if previous is not None and previous is not cls:
                logger.warning(
                    f"Replacing performable registered as {type_name}",
                    extra={"previous": repr(previous), "current": repr(cls)},
                )
                self._names.pop(previous, None)
            self._types[type_name] = cls
            self._names[cls] = type_name
            logger.debug(f"Registered performable type: {type_name}")
            return cls

        return decorator

    def get(self, name: str) -> type | None:
        """Get a registered class by name."""
        return self._types.get(name)

    def name_for(self, obj: object) -> str | None:
        """Get the registered name of an object's class."""
        return self._names.get(type(obj))

    @staticmethod
    def kind_for(cls: type) -> PayloadKind:
        """Dataclasses are rebuilt through their constructor, anything else from its state."""
        if dataclasses.is_dataclass(cls):
            return PayloadKind.RECORD
        return PayloadKind.OBJECT

    def names(self) -> list[str]:
        """List all registered type names."""
        return list(self._types.keys())


# Global registry instance
performable_registry = PerformableRegistry()


def register_performable(name: str | None = None) -> Callable[[T], T]:
    """Register a class in the global performable registry."""
    return performable_registry.register(name)

"""
Payload serialization.

A performable is stored as a JSON envelope:

    {"type": "SimpleJob", "kind": "object", "attributes": {...}}

Attribute values may be JSON scalars, lists, tuples, string-keyed dicts,
datetimes or other registered performables. Anything else, including
non-finite floats and dicts that use one of the codec's tag keys, is
refused at encode time so that nothing unloadable is ever persisted.
"""

import dataclasses
import json
import math
from datetime import datetime
from typing import Any

from jobqueue.constants import (
    PAYLOAD_DATETIME_KEY,
    PAYLOAD_KIND_KEY,
    PAYLOAD_TUPLE_KEY,
    PAYLOAD_TYPE_KEY,
    PayloadKind,
)
from jobqueue.errors import DeserializationError, SerializationError
from jobqueue.payload.registry import PerformableRegistry, performable_registry
from jobqueue.types.job import PayloadEnvelope

_SCALARS = (str, int, float, bool, type(None))
_RESERVED_KEYS = frozenset(
    {PAYLOAD_TYPE_KEY, PAYLOAD_KIND_KEY, PAYLOAD_DATETIME_KEY, PAYLOAD_TUPLE_KEY}
)


class PayloadCodec:
    """Encodes performables to text and back using a type registry."""

    def __init__(self, registry: PerformableRegistry):
        self._registry = registry

    def encode(self, performable: Any) -> str:
        """
        Serialize a performable.

        Args:
            performable: A registered performable instance.

        Returns:
            The JSON text to store.

        Raises:
            SerializationError: If the object or one of its attribute
                values cannot be represented.
        """
        envelope = self._envelope(performable)
        return envelope.model_dump_json()

    def decode(self, blob: str | bytes) -> Any:
        """
        Rebuild a performable from its stored form.

        Raises:
            DeserializationError: On any failure. The underlying error,
                if there is one, is chained as the cause.
        """
        try:
            if isinstance(blob, bytes):
                blob = blob.decode("utf-8")
            data = json.loads(blob)
            envelope = PayloadEnvelope.model_validate(data)
            return self._restore(envelope)
        except DeserializationError:
            raise
        except Exception as e:
            raise DeserializationError(
                f"Job failed to load: {type(e).__name__}: {e}. Payload: {blob!r}"
            ) from e

    def type_name(self, blob: str | bytes) -> str | None:
        """Best-effort read of the stored type name without rebuilding."""
        try:
            data = json.loads(blob)
        except (TypeError, ValueError):
            return None
        if isinstance(data, dict) and isinstance(data.get("type"), str):
            return data["type"]
        return None

    def _envelope(self, obj: Any) -> PayloadEnvelope:
        name = self._registry.name_for(obj)
        if name is None:
            raise SerializationError(
                f"{type(obj).__qualname__} is not a registered performable type"
            )
        kind = self._registry.kind_for(type(obj))
        if kind is PayloadKind.RECORD:
            state = {
                field.name: getattr(obj, field.name)
                for field in dataclasses.fields(obj)
                if field.init
            }
        else:
            try:
                state = vars(obj)
            except TypeError as e:
                raise SerializationError(
                    f"{type(obj).__qualname__} has no instance state to store"
                ) from e
        attributes = {key: self._dump_value(value) for key, value in state.items()}
        return PayloadEnvelope(type=name, kind=kind, attributes=attributes)

    def _dump_value(self, value: Any) -> Any:
        if isinstance(value, float) and not math.isfinite(value):
            raise SerializationError(f"Cannot store non-finite float {value!r} in a payload")
        if isinstance(value, _SCALARS):
            return value
        if isinstance(value, datetime):
            return {PAYLOAD_DATETIME_KEY: value.isoformat()}
        if isinstance(value, tuple):
            return {PAYLOAD_TUPLE_KEY: [self._dump_value(item) for item in value]}
        if isinstance(value, list):
            return [self._dump_value(item) for item in value]
        if isinstance(value, dict):
            if not all(isinstance(key, str) for key in value):
                raise SerializationError("Only string keys are supported in payload dicts")
            reserved = _RESERVED_KEYS.intersection(value)
            if reserved:
                raise SerializationError(
                    f"Payload dicts cannot use reserved keys: {', '.join(sorted(reserved))}"
                )
            return {key: self._dump_value(item) for key, item in value.items()}
        if self._registry.name_for(value) is not None:
            envelope = self._envelope(value)
            return {
                PAYLOAD_TYPE_KEY: envelope.type,
                PAYLOAD_KIND_KEY: envelope.kind.value,
                "attributes": envelope.attributes,
            }
        raise SerializationError(
            f"Cannot store value of type {type(value).__qualname__} in a payload"
        )

    def _load_value(self, value: Any) -> Any:
        if isinstance(value, list):
            return [self._load_value(item) for item in value]
        if not isinstance(value, dict):
            return value
        if PAYLOAD_TYPE_KEY in value:
            envelope = PayloadEnvelope(
                type=value[PAYLOAD_TYPE_KEY],
                kind=value.get(PAYLOAD_KIND_KEY, PayloadKind.OBJECT),
                attributes=value.get("attributes", {}),
            )
            return self._restore(envelope)
        if set(value) == {PAYLOAD_DATETIME_KEY}:
            return datetime.fromisoformat(value[PAYLOAD_DATETIME_KEY])
        if set(value) == {PAYLOAD_TUPLE_KEY}:
            return tuple(self._load_value(item) for item in value[PAYLOAD_TUPLE_KEY])
        return {key: self._load_value(item) for key, item in value.items()}

    def _restore(self, envelope: PayloadEnvelope) -> Any:
        cls = self._registry.get(envelope.type)
        if cls is None or self._registry.kind_for(cls) != envelope.kind:
            raise DeserializationError(
                f"Job failed to load: unknown {envelope.kind.value} type "
                f"'{envelope.type}'"
            )
        attributes = {
            key: self._load_value(value) for key, value in envelope.attributes.items()
        }
        if envelope.kind is PayloadKind.RECORD:
            return cls(**attributes)
        obj = cls.__new__(cls)
        obj.__dict__.update(attributes)
        return obj


default_codec = PayloadCodec(performable_registry)

"""
Serialization utilities for perfwatch dataclasses.

Provides SerializableMixin for consistent JSON export of samples, alerts
and snapshots. Handles common patterns:
- Datetime → ISO format
- Epoch-second timestamps → ISO format (via _custom_serializers)
- Enum → value
- Nested dataclasses → recursive to_dict()

Usage:
    @dataclass
    class Sample(SerializableMixin):
        name: str
        timestamp: float

        _custom_serializers = {"timestamp": epoch_to_iso}

    Sample("cpu", 1700000000.0).to_dict()
    # {"name": "cpu", "timestamp": "2023-11-14T22:13:20+00:00"}
"""

from __future__ import annotations

from dataclasses import fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict


def epoch_to_iso(value: float | None) -> str | None:
    """Render epoch seconds as a UTC ISO-8601 string."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def serialize_value(value: Any) -> Any:
    """Recursively serialize a value for JSON export.

    Handles:
    - None → None
    - datetime → ISO format string (with UTC if no timezone)
    - Enum → value
    - Dataclass → to_dict() when available, else field-wise
    - List/tuple → recursive serialization of items
    - Dict → recursive serialization of values
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        if hasattr(value, "to_dict"):
            return value.to_dict()
        return dataclass_to_dict(value)
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    return value


class SerializableMixin:
    """Mixin providing consistent serialization for dataclasses.

    Configuration:
    - _exclude_fields: Tuple of field names to exclude from serialization
    - _custom_serializers: Dict mapping field names to custom serializer functions
    """

    _exclude_fields: ClassVar[tuple[str, ...]] = ()
    _custom_serializers: ClassVar[Dict[str, Any]] = {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary with consistent datetime/enum handling.

        Raises:
            TypeError: If the class is not a dataclass
        """
        if not is_dataclass(self):
            raise TypeError(f"{self.__class__.__name__} must be a dataclass")

        result: Dict[str, Any] = {}
        for f in fields(self):
            if f.name in self._exclude_fields or f.name.startswith("_"):
                continue
            value = getattr(self, f.name)
            serializer = self._custom_serializers.get(f.name)
            result[f.name] = serializer(value) if serializer else serialize_value(value)
        return result


def dataclass_to_dict(obj: Any) -> Dict[str, Any]:
    """Serialize any dataclass instance, mixin or not.

    Raises:
        TypeError: If obj is not a dataclass instance
    """
    if not is_dataclass(obj) or isinstance(obj, type):
        raise TypeError(f"{type(obj).__name__} is not a dataclass")

    return {
        f.name: serialize_value(getattr(obj, f.name))
        for f in fields(obj)
        if not f.name.startswith("_")
    }


__all__ = [
    "SerializableMixin",
    "serialize_value",
    "dataclass_to_dict",
    "epoch_to_iso",
]

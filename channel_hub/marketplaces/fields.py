from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FieldType(str, Enum):
    TEXT = "text"
    LONG_TEXT = "long-text"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    DECIMAL = "decimal"
    LIST = "list"
    DATE = "date"
    MEDIA = "media"


# marketplace-native type tags -> canonical value type
_NATIVE_TYPES: dict[str, FieldType] = {
    "TEXT": FieldType.TEXT,
    "STRING": FieldType.TEXT,
    "LINK": FieldType.TEXT,
    "LONG_TEXT": FieldType.LONG_TEXT,
    "BOOLEAN": FieldType.BOOLEAN,
    "INTEGER": FieldType.INTEGER,
    "INT": FieldType.INTEGER,
    "DECIMAL": FieldType.DECIMAL,
    "NUMERIC": FieldType.DECIMAL,
    "LIST": FieldType.LIST,
    "LIST_MULTIPLE_VALUES": FieldType.LIST,
    "DATE": FieldType.DATE,
    "MEDIA": FieldType.MEDIA,
}


def normalize_field_type(native: str | None) -> FieldType:
    if not native:
        return FieldType.TEXT
    return _NATIVE_TYPES.get(str(native).strip().upper(), FieldType.TEXT)


@dataclass(frozen=True)
class DiscoveredField:
    """One attribute as discovered (or declared) for a marketplace, already canonical."""
    code: str
    label: str
    field_type: FieldType = FieldType.TEXT
    required: bool = False
    description: str | None = None
    category: str | None = None
    value_list_code: str | None = None
    validation_rules: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class DiscoveredValueList:
    code: str
    name: str
    values: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    description: str | None = None


def static_field(code: str, label: str, native_type: str, required: bool = False, **kw: Any) -> DiscoveredField:
    """Catalog entry for fixed-schema marketplaces; keeps the native tag in metadata."""
    return DiscoveredField(
        code=code,
        label=label,
        field_type=normalize_field_type(native_type),
        required=required,
        metadata={"native_type": native_type, "source": "static_catalog"},
        **kw,
    )

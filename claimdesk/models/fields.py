"""Field descriptor data models and value coercion."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

# In-memory value of a field, one variant per FieldKind
FieldValue = Union[str, float, int, date, bool, None]


class FieldKind(Enum):
    """Input kind of a field; values are the tokens stored in form_data metadata."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    MULTILINE_TEXT = "textarea"
    SINGLE_SELECT = "select"
    BOOLEAN = "checkbox"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "FieldKind":
        """Resolve a stored token, falling back to TEXT for unknown kinds."""
        if isinstance(raw, FieldKind):
            return raw
        try:
            return cls(raw)
        except ValueError:
            return cls.TEXT


@dataclass
class FieldDescriptor:
    """
    Metadata describing one data field of a claim.

    Attributes:
        name: Unique key of the field within a claim
        label: Default display label
        kind: Input kind
        required: Whether a value must be supplied on submission
        options: Ordered choices (single-select only)
        is_custom: True for fields created at runtime
        section_id: Section the field belongs to, when known
    """
    name: str
    label: str
    kind: FieldKind = FieldKind.TEXT
    required: bool = False
    options: List[str] = field(default_factory=list)
    is_custom: bool = False
    section_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "label": self.label,
            "type": self.kind.value,
            "required": self.required,
            "is_custom": self.is_custom,
            "section_id": self.section_id,
        }
        if self.options:
            data["options"] = list(self.options)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldDescriptor":
        """
        Build a descriptor from stored metadata.

        Accepts both the current keys and the older camelCase/`section`
        keys found in previously saved claims.
        """
        return cls(
            name=str(data["name"]),
            label=str(data.get("label") or data["name"]),
            kind=FieldKind.parse(data.get("type") or data.get("kind")),
            required=bool(data.get("required", False)),
            options=list(data.get("options") or []),
            is_custom=bool(data.get("is_custom", data.get("isCustom", False))),
            section_id=data.get("section_id") or data.get("sectionId") or data.get("section"),
        )


def is_empty(value: Any) -> bool:
    """True when a stored value should be treated as not filled in."""
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    return str(value).strip() == ""


def coerce_value(kind: FieldKind, raw: Any) -> FieldValue:
    """
    Convert a stored (JSON) value into its typed in-memory form.

    Args:
        kind: Kind of the field the value belongs to
        raw: Value as found in form_data

    Returns:
        str for text kinds, int/float for numbers, date for dates,
        bool for booleans, or None when empty or unparseable
    """
    if kind is FieldKind.BOOLEAN:
        if isinstance(raw, bool):
            return raw
        if raw is None:
            return False
        return str(raw).strip().lower() in ("true", "yes", "1", "on")

    if is_empty(raw):
        return None

    if kind is FieldKind.NUMBER:
        if isinstance(raw, (int, float)):
            return raw
        try:
            number = float(str(raw).replace(",", "").strip())
        except ValueError:
            return None
        return int(number) if number.is_integer() else number

    if kind is FieldKind.DATE:
        if isinstance(raw, datetime):
            return raw.date()
        if isinstance(raw, date):
            return raw
        try:
            return date.fromisoformat(str(raw).strip()[:10])
        except ValueError:
            return None

    return str(raw)


def serialize_value(kind: FieldKind, value: Any) -> Any:
    """
    Convert a typed value back into its JSON storage form.

    Dates become ISO strings, booleans stay booleans, empty values become "".
    """
    typed = coerce_value(kind, value)
    if kind is FieldKind.BOOLEAN:
        return bool(typed)
    if typed is None:
        return ""
    if isinstance(typed, date):
        return typed.isoformat()
    return typed


def display_value(value: Any) -> str:
    """Render a stored value for a report cell."""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if not is_empty(v))
    return str(value)

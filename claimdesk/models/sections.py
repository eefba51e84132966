"""Section, table and section-template data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .fields import FieldDescriptor, FieldKind


class ColorTag(Enum):
    """Color token shown on a section header."""

    PRIMARY = "primary"
    WARNING = "warning"
    SUCCESS = "success"
    INFO = "info"
    DANGER = "danger"
    NEUTRAL = "neutral"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "ColorTag":
        if isinstance(raw, ColorTag):
            return raw
        token = (raw or "").strip().lower()
        # Stored templates carry CSS class names such as "bg-warning"
        if token.startswith("bg-"):
            token = token[3:]
        if token == "gradient-primary":
            token = "primary"
        try:
            return cls(token)
        except ValueError:
            return cls.NEUTRAL


@dataclass
class TableCell:
    """A single spreadsheet cell; values are untyped strings."""
    value: str = ""


@dataclass
class SectionTable:
    """
    A spreadsheet-like grid embedded in a section.

    Attributes:
        id: Unique table identifier
        name: Display name
        rows: Row count at creation
        cols: Column count at creation
        data: 2D grid of cells
        created_at: ISO timestamp of creation
    """
    id: str
    name: str
    rows: int
    cols: int
    data: List[List[TableCell]] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def has_rows(self) -> bool:
        return len(self.data) > 0

    def cell_values(self) -> List[List[str]]:
        return [[cell.value for cell in row] for row in self.data]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "rows": self.rows,
            "cols": self.cols,
            "data": [[{"value": cell.value} for cell in row] for row in self.data],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SectionTable":
        grid = [
            [TableCell(value=str((cell or {}).get("value", "") or "")) for cell in (row or [])]
            for row in (data.get("data") or [])
        ]
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "Table",
            rows=int(data.get("rows", len(grid))),
            cols=int(data.get("cols", len(grid[0]) if grid else 0)),
            data=grid,
            created_at=data.get("created_at") or datetime.now(timezone.utc).isoformat(),
        )


@dataclass
class Section:
    """
    A named, ordered grouping of fields and tables within a claim's form.

    Attributes:
        id: Unique section identifier (section1..section4 for defaults)
        name: Display name
        order_index: Render position; unique per claim
        color_tag: Header color token
        fields: Ordered field descriptors owned by the section
        tables: Ordered embedded tables
        is_custom: False for the four default sections
    """
    id: str
    name: str
    order_index: int
    color_tag: ColorTag = ColorTag.NEUTRAL
    fields: List[FieldDescriptor] = field(default_factory=list)
    tables: List[SectionTable] = field(default_factory=list)
    is_custom: bool = False

    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "order_index": self.order_index,
            "color_tag": self.color_tag.value,
            "fields": [f.to_dict() for f in self.fields],
            "tables": [t.to_dict() for t in self.tables],
            "is_custom": self.is_custom,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], position: int = 0) -> "Section":
        order = data.get("order_index", data.get("orderIndex"))
        return cls(
            id=str(data["id"]),
            name=data.get("name") or f"Section {position + 1}",
            order_index=int(order) if order is not None else position + 1,
            color_tag=ColorTag.parse(data.get("color_tag") or data.get("color_class")),
            fields=[FieldDescriptor.from_dict(f) for f in (data.get("fields") or [])],
            tables=[SectionTable.from_dict(t) for t in (data.get("tables") or [])],
            is_custom=bool(data.get("is_custom", data.get("isCustom", True))),
        )


@dataclass
class TemplateField:
    """A preset field carried by a section template."""
    name: str
    label: str
    kind: FieldKind = FieldKind.TEXT
    required: bool = False
    options: List[str] = field(default_factory=list)
    order_index: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TemplateField":
        return cls(
            name=str(data.get("name") or ""),
            label=str(data.get("label") or data.get("name") or "New Field"),
            kind=FieldKind.parse(data.get("type")),
            required=bool(data.get("required", False)),
            options=list(data.get("options") or []),
            order_index=int(data.get("order_index", 0)),
        )


@dataclass
class SectionTemplate:
    """
    A named preset from which new sections can be created.

    Attributes:
        id: Template identifier
        name: Default name for sections created from it
        color_tag: Default color token
        preset_fields: Fields copied into the new section
        description: Optional description
        parent_policy_type_id: Policy type family the template belongs to, or None for all
        is_default: Whether the template is listed first
    """
    id: str
    name: str
    color_tag: ColorTag = ColorTag.NEUTRAL
    preset_fields: List[TemplateField] = field(default_factory=list)
    description: Optional[str] = None
    parent_policy_type_id: Optional[str] = None
    is_default: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SectionTemplate":
        presets = [TemplateField.from_dict(f) for f in (data.get("preset_fields") or [])]
        presets.sort(key=lambda f: f.order_index)
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "Untitled Section",
            color_tag=ColorTag.parse(data.get("color_tag") or data.get("color_class")),
            preset_fields=presets,
            description=data.get("description"),
            parent_policy_type_id=data.get("parent_policy_type_id"),
            is_default=bool(data.get("is_default", False)),
        )

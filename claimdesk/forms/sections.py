"""Section organizer: ordered, colored, collapsible field groups with embedded tables."""

import logging
import re
import time
import uuid
from typing import Any, Dict, List, Optional

from ..models.claim import Claim
from ..models.fields import FieldDescriptor
from ..models.sections import ColorTag, Section, SectionTable, SectionTemplate, TableCell
from ..utils.errors import ValidationError
from .autosave import SaveScheduler
from .registry import DEFAULT_SECTIONS, default_section_fields
from .values import SECTIONS_KEY, FieldValueStore

logger = logging.getLogger(__name__)

MIN_ROWS, MAX_ROWS = 1, 20
MIN_COLS, MAX_COLS = 1, 10
DEFAULT_ROWS, DEFAULT_COLS = 5, 5


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", (text or "").lower()).strip("_") or "field"


def _check_dimensions(rows: int, cols: int) -> None:
    if not MIN_ROWS <= rows <= MAX_ROWS:
        raise ValidationError.invalid(f"Rows must be between {MIN_ROWS} and {MAX_ROWS}", field="rows")
    if not MIN_COLS <= cols <= MAX_COLS:
        raise ValidationError.invalid(f"Columns must be between {MIN_COLS} and {MAX_COLS}", field="cols")


def seed_default_sections(policy_type_name: Optional[str]) -> List[Section]:
    """Build the four default sections from the standard field slices."""
    fields_by_section = default_section_fields(policy_type_name)
    return [
        Section(
            id=section_id,
            name=name,
            order_index=position + 1,
            color_tag=color,
            fields=fields_by_section[section_id],
            is_custom=False,
        )
        for position, (section_id, name, color, _) in enumerate(DEFAULT_SECTIONS)
    ]


def renumber(sections: List[Section]) -> None:
    """Assign order 1..n following list position."""
    for position, section in enumerate(sections):
        section.order_index = position + 1


def load_sections(claim: Claim) -> List[Section]:
    """
    Read a claim's section list, ordered by order_index.

    Claims saved before sections were stored get the four defaults.
    Default sections always take their fields from the registry, and a
    default missing from the stored list is appended.
    """
    seeded = seed_default_sections(claim.policy_type_name)
    stored = (claim.form_data or {}).get(SECTIONS_KEY)
    if not isinstance(stored, list) or not stored:
        return seeded

    by_id = {s.id: s for s in seeded}
    sections: List[Section] = []
    for position, entry in enumerate(stored):
        if not isinstance(entry, dict) or not entry.get("id"):
            logger.warning(f"Skipping malformed section metadata at index {position} on claim {claim.id}")
            continue
        section = Section.from_dict(entry, position=position)
        default = by_id.pop(section.id, None)
        if default is not None:
            section.fields = default.fields
            section.is_custom = False
        sections.append(section)
    next_order = max((s.order_index for s in sections), default=0) + 1
    for offset, section in enumerate(by_id.values()):
        section.order_index = next_order + offset
        sections.append(section)

    sections.sort(key=lambda s: s.order_index)
    if len({s.order_index for s in sections}) != len(sections):
        logger.warning(f"Duplicate section order on claim {claim.id}; renumbering")
        renumber(sections)
    return sections


class SectionOrganizer:
    """
    Owns the ordered section list of one claim.

    Mutations are local; the whole list is written back as
    form_data["dynamic_sections_metadata"] by save(), which a scheduler
    can debounce. Invalid requests raise ValidationError before anything
    changes.
    """

    def __init__(
        self,
        claim: Claim,
        values: FieldValueStore,
        scheduler: Optional[SaveScheduler] = None,
        save_delay: float = 2.0,
    ):
        self.claim_id = claim.id
        self.values = values
        self.scheduler = scheduler
        self.save_delay = save_delay
        self.dirty = False
        self.sections: List[Section] = load_sections(claim)
        self.open_state: Dict[str, bool] = {s.id: True for s in self.sections}

        for section in self.sections:
            self.values.register_descriptors(section.fields)

        # Seeded defaults are rebuilt on every load; only repaired lists are written back
        stored = (claim.form_data or {}).get(SECTIONS_KEY)
        if isinstance(stored, list) and stored and stored != self.to_metadata():
            logger.info(f"Section list of claim {claim.id} was migrated; scheduling a save")
            self._touch()

    # Queries

    def ordered(self) -> List[Section]:
        return sorted(self.sections, key=lambda s: s.order_index)

    def get(self, section_id: str) -> Section:
        for section in self.sections:
            if section.id == section_id:
                return section
        raise ValidationError.invalid(f"Unknown section '{section_id}'", field="section_id")

    def fields_for(self, section_id: str, include_hidden: bool = False) -> List[FieldDescriptor]:
        """Section-owned descriptors followed by custom fields assigned to the section."""
        section = self.get(section_id)
        descriptors = list(section.fields) + self.values.custom_in_section(section_id)
        if include_hidden:
            return descriptors
        return [d for d in descriptors if d.name not in self.values.hidden_fields]

    def _taken_names(self) -> set:
        taken = set(self.values.known_names()) | set(self.values.values)
        for section in self.sections:
            taken.update(section.field_names())
        return taken

    def _new_section_id(self) -> str:
        existing = {s.id for s in self.sections}
        stamp = int(time.time() * 1000)
        while f"custom_section_{stamp}" in existing:
            stamp += 1
        return f"custom_section_{stamp}"

    def _touch(self) -> None:
        self.dirty = True
        if self.scheduler:
            self.scheduler.schedule("sections", self.save, self.save_delay)

    # Section lifecycle

    def create_section(self, name: str, color_tag: Any = ColorTag.NEUTRAL) -> Section:
        """Append a custom section after the current last one."""
        if not (name or "").strip():
            raise ValidationError.required("name", "Section name")
        section = Section(
            id=self._new_section_id(),
            name=name.strip(),
            order_index=max((s.order_index for s in self.sections), default=0) + 1,
            color_tag=ColorTag.parse(color_tag),
            is_custom=True,
        )
        self.sections.append(section)
        self.open_state[section.id] = True
        logger.info(f"Created section {section.id} '{section.name}' on claim {self.claim_id}")
        self._touch()
        return section

    def create_section_from_template(
        self,
        template: SectionTemplate,
        override_name: Optional[str] = None,
    ) -> Section:
        """
        Append a section copying a template's preset fields.

        Preset names already used on the claim get a numeric suffix so the
        copy never shadows an existing field.
        """
        section = self.create_section(override_name or template.name, template.color_tag)
        taken = self._taken_names()
        for preset in template.preset_fields:
            base = preset.name or _slug(preset.label)
            name, n = base, 2
            while name in taken:
                name = f"{base}_{n}"
                n += 1
            taken.add(name)
            section.fields.append(FieldDescriptor(
                name=name,
                label=preset.label,
                kind=preset.kind,
                required=preset.required,
                options=list(preset.options),
                is_custom=False,
                section_id=section.id,
            ))
        self.values.register_descriptors(section.fields)
        logger.info(
            f"Created section {section.id} from template {template.id} "
            f"with {len(section.fields)} fields"
        )
        return section

    def remove_section(self, section_id: str) -> None:
        """Remove a custom section; its field values stay in form_data."""
        section = self.get(section_id)
        if not section.is_custom:
            raise ValidationError.invalid("Default sections cannot be removed", field="section_id")
        self.sections.remove(section)
        self.open_state.pop(section_id, None)
        logger.info(f"Removed section {section_id} on claim {self.claim_id}")
        self._touch()

    def reorder(self, section_ids: List[str]) -> None:
        """Assign order 1..n following the given id sequence."""
        if sorted(section_ids) != sorted(s.id for s in self.sections):
            raise ValidationError.invalid("Reorder must list every section exactly once", field="section_ids")
        positions = {section_id: i for i, section_id in enumerate(section_ids)}
        self.sections.sort(key=lambda s: positions[s.id])
        renumber(self.sections)
        self._touch()

    def move_section(self, active_id: str, over_id: str) -> None:
        """Drag-and-drop: move one section to another's position."""
        ids = [s.id for s in self.ordered()]
        if active_id not in ids or over_id not in ids:
            raise ValidationError.invalid("Unknown section in move", field="section_id")
        ids.insert(ids.index(over_id), ids.pop(ids.index(active_id)))
        self.reorder(ids)

    def rename_section(self, section_id: str, name: str) -> None:
        if not (name or "").strip():
            raise ValidationError.required("name", "Section name")
        self.get(section_id).name = name.strip()
        self._touch()

    def set_color(self, section_id: str, color_tag: Any) -> None:
        self.get(section_id).color_tag = ColorTag.parse(color_tag)
        self._touch()

    def toggle_open(self, section_id: str) -> bool:
        """Flip a section's collapsed state; not persisted."""
        self.get(section_id)
        self.open_state[section_id] = not self.open_state.get(section_id, True)
        return self.open_state[section_id]

    # Fields

    def add_field_to_section(self, section_id: str) -> Optional[FieldDescriptor]:
        """Add a text custom field labelled "New Field" to the section."""
        self.get(section_id)
        return self.values.add_custom_field(section_id)

    # Tables

    def get_table(self, section_id: str, table_id: str) -> SectionTable:
        for table in self.get(section_id).tables:
            if table.id == table_id:
                return table
        raise ValidationError.invalid(f"Unknown table '{table_id}'", field="table_id")

    def add_table_to_section(
        self,
        section_id: str,
        rows: int = DEFAULT_ROWS,
        cols: int = DEFAULT_COLS,
        name: Optional[str] = None,
    ) -> SectionTable:
        """Append an empty rows x cols table to the section."""
        section = self.get(section_id)
        _check_dimensions(rows, cols)
        table = SectionTable(
            id=f"table_{uuid.uuid4().hex[:12]}",
            name=(name or "").strip() or f"Table {len(section.tables) + 1}",
            rows=rows,
            cols=cols,
            data=[[TableCell() for _ in range(cols)] for _ in range(rows)],
        )
        section.tables.append(table)
        logger.info(f"Added {rows}x{cols} table {table.id} to section {section_id}")
        self._touch()
        return table

    def update_table_cell(self, section_id: str, table_id: str, row: int, col: int, value: str) -> None:
        table = self.get_table(section_id, table_id)
        if not (0 <= row < len(table.data) and 0 <= col < len(table.data[row])):
            raise ValidationError.invalid(f"Cell ({row}, {col}) is outside the table", field="cell")
        table.data[row][col] = TableCell(value="" if value is None else str(value))
        self._touch()

    def rename_table(self, section_id: str, table_id: str, name: str) -> None:
        if not (name or "").strip():
            raise ValidationError.required("name", "Table name")
        self.get_table(section_id, table_id).name = name.strip()
        self._touch()

    def add_table_row(self, section_id: str, table_id: str) -> None:
        table = self.get_table(section_id, table_id)
        width = len(table.data[0]) if table.data else table.cols
        _check_dimensions(len(table.data) + 1, width)
        table.data.append([TableCell() for _ in range(width)])
        table.rows = len(table.data)
        self._touch()

    def remove_table_row(self, section_id: str, table_id: str, row: int) -> None:
        table = self.get_table(section_id, table_id)
        if not 0 <= row < len(table.data):
            raise ValidationError.invalid(f"Row {row} is outside the table", field="row")
        _check_dimensions(len(table.data) - 1, table.cols)
        del table.data[row]
        table.rows = len(table.data)
        self._touch()

    def add_table_column(self, section_id: str, table_id: str) -> None:
        table = self.get_table(section_id, table_id)
        _check_dimensions(max(len(table.data), MIN_ROWS), table.cols + 1)
        for cells in table.data:
            cells.append(TableCell())
        table.cols += 1
        self._touch()

    def remove_table_column(self, section_id: str, table_id: str, col: int) -> None:
        table = self.get_table(section_id, table_id)
        if not 0 <= col < table.cols:
            raise ValidationError.invalid(f"Column {col} is outside the table", field="col")
        _check_dimensions(max(len(table.data), MIN_ROWS), table.cols - 1)
        for cells in table.data:
            if col < len(cells):
                del cells[col]
        table.cols -= 1
        self._touch()

    def delete_table(self, section_id: str, table_id: str) -> None:
        section = self.get(section_id)
        table = self.get_table(section_id, table_id)
        section.tables.remove(table)
        self._touch()

    # Persistence

    def to_metadata(self) -> List[Dict[str, Any]]:
        return [section.to_dict() for section in self.ordered()]

    def save(self) -> bool:
        """Rewrite the whole section list in form_data."""
        if self.scheduler:
            self.scheduler.cancel("sections")
        if not self.values.persist({SECTIONS_KEY: self.to_metadata()}, "Failed to save sections"):
            return False
        self.dirty = False
        logger.debug(f"Saved {len(self.sections)} sections for claim {self.claim_id}")
        return True

"""
Report assembler: turns a claim's persisted form data into the declarative
"components" document consumed by the rendering service.
"""

import copy
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..forms.registry import POLICY_DETAIL_FIELDS
from ..forms.sections import load_sections
from ..forms.values import images_key, load_draft
from ..models.claim import Claim, ClaimDocument
from ..models.fields import FieldDescriptor, display_value, is_empty
from ..models.sections import Section
from ..utils.config import ReportConfig
from ..utils.errors import ValidationError
from ..utils.logging import with_context

logger = logging.getLogger(__name__)

OVERVIEW_ID = "overview"
POLICY_DETAILS_ID = "policy-details"
PLACEHOLDER_PREFIX = "__TOKEN_PLACEHOLDER_"
UNCATEGORIZED = "Uncategorized"

HEADER_COMPONENT = {
    "type": "header",
    "style": {
        "wrapper": "px-0 py-2",
        "title": "text-3xl font-extrabold tracking-wide text-black center",
    },
    "props": {"text": "SURVEY REPORT"},
}


def labelize(key: str) -> str:
    """Turn a field key such as "sum_insured" or "dateOfLoss" into a display label."""
    spaced = re.sub(r"([A-Z])", r" \1", key or "")
    spaced = spaced[:1].upper() + spaced[1:]
    return spaced.replace("_", " ")


def format_file_size(size: int) -> str:
    """Human-readable size in base-1024 units with up to two decimals."""
    if not size:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    exponent = 0
    while size >= 1024 ** (exponent + 1) and exponent < len(units) - 1:
        exponent += 1
    text = f"{size / 1024 ** exponent:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[exponent]}"


def format_date(raw: Optional[str]) -> str:
    """Format an ISO timestamp as e.g. "Mar 05, 2025"."""
    if not raw:
        return ""
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00")).strftime("%b %d, %Y")
    except ValueError:
        return str(raw)


@dataclass
class ReportSource:
    """
    Everything the assembler reads, taken from the persisted claim.

    Attributes:
        claim: The claim as stored
        sections: Stored sections in ascending order_index
        custom_fields: Custom descriptors grouped by section id
        hidden_fields: Field names excluded from the report
        label_overrides: Field name -> display label
    """
    claim: Claim
    sections: List[Section]
    custom_fields: Dict[str, List[FieldDescriptor]] = field(default_factory=dict)
    hidden_fields: set = field(default_factory=set)
    label_overrides: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_claim(cls, claim: Claim) -> "ReportSource":
        draft = load_draft(claim.form_data)
        grouped: Dict[str, List[FieldDescriptor]] = {}
        for descriptor in draft.custom_descriptors:
            grouped.setdefault(descriptor.section_id, []).append(descriptor)
        return cls(
            claim=claim,
            sections=load_sections(claim),
            custom_fields=grouped,
            hidden_fields=draft.hidden_field_names,
            label_overrides=draft.label_overrides,
        )

    @property
    def form_data(self) -> Dict[str, Any]:
        return self.claim.form_data or {}

    def section(self, section_id: str) -> Optional[Section]:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def label_for(self, descriptor: FieldDescriptor) -> str:
        return self.label_overrides.get(descriptor.name) or descriptor.label or labelize(descriptor.name)

    def field_pairs(self, section: Section) -> List[List[str]]:
        """Label/value rows for the section's visible, non-empty fields."""
        pairs = []
        for descriptor in list(section.fields) + self.custom_fields.get(section.id, []):
            if descriptor.name in self.hidden_fields:
                continue
            value = self.form_data.get(descriptor.name)
            if is_empty(value):
                continue
            pairs.append([self.label_for(descriptor), display_value(value)])
        return pairs

    def image_urls(self, section_id: str) -> List[str]:
        raw = self.form_data.get(images_key(section_id))
        return [str(url) for url in raw if url] if isinstance(raw, list) else []

    def policy_pairs(self) -> List[List[str]]:
        pairs = []
        for descriptor in POLICY_DETAIL_FIELDS:
            if descriptor.name in self.hidden_fields:
                continue
            value = self.form_data.get(descriptor.name)
            if not is_empty(value):
                pairs.append([self.label_overrides.get(descriptor.name) or labelize(descriptor.name),
                              display_value(value)])
        return pairs


def section_has_content(section_id: str, source: ReportSource) -> bool:
    """
    Whether a report section has anything to show.

    The overview always does. Policy details need one filled policy field.
    A stored section needs a non-empty field value, a filled image slot, or
    a table with at least one row.
    """
    if section_id == OVERVIEW_ID:
        return True
    if section_id == POLICY_DETAILS_ID:
        return bool(source.policy_pairs())

    section = source.section(section_id)
    if section is None:
        return False
    return (
        bool(source.field_pairs(section))
        or bool(source.image_urls(section_id))
        or any(table.has_rows() for table in section.tables)
    )


@dataclass
class ReportSection:
    """An entry of the session-local report layout."""
    id: str
    name: str
    is_visible: bool
    order: int

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "is_visible": self.is_visible, "order": self.order}


def derive_report_sections(source: ReportSource) -> List[ReportSection]:
    """Overview, policy details, then stored sections; visibility from content."""
    sections = [
        ReportSection(OVERVIEW_ID, "Overview", True, 1),
        ReportSection(
            POLICY_DETAILS_ID, "Policy Details", section_has_content(POLICY_DETAILS_ID, source), 2
        ),
    ]
    for position, section in enumerate(source.sections):
        sections.append(ReportSection(
            id=section.id,
            name=section.name or f"Section {position + 1}",
            is_visible=section_has_content(section.id, source),
            order=3 + position,
        ))
    return sections


class ReportLayout:
    """
    Visibility and order overrides for one report session; never persisted.

    Sections whose visibility the user has not touched follow their content
    when the layout is refreshed from a newer copy of the claim.
    """

    def __init__(self, source: ReportSource):
        self.source = source
        self.sections = derive_report_sections(source)
        self.reordered = False
        self._visibility_overrides: Dict[str, bool] = {}

    def _ids(self) -> List[str]:
        return [s.id for s in self.ordered()]

    def ordered(self) -> List[ReportSection]:
        return sorted(self.sections, key=lambda s: s.order)

    def _get(self, section_id: str) -> ReportSection:
        for section in self.sections:
            if section.id == section_id:
                return section
        raise ValidationError.invalid(f"Unknown report section '{section_id}'", field="section_id")

    def move_section(self, active_id: str, over_id: str) -> None:
        """Drag-and-drop move; orders become positions 1..n."""
        ids = self._ids()
        if active_id not in ids or over_id not in ids:
            raise ValidationError.invalid("Unknown section in move", field="section_id")
        ids.insert(ids.index(over_id), ids.pop(ids.index(active_id)))
        self.reorder(ids)

    def reorder(self, section_ids: Sequence[str]) -> None:
        if sorted(section_ids) != sorted(self._ids()):
            raise ValidationError.invalid("Reorder must list every report section exactly once",
                                          field="section_ids")
        for position, section_id in enumerate(section_ids):
            self._get(section_id).order = position + 1
        self.reordered = True

    def set_visibility(self, section_id: str, visible: bool) -> None:
        self._get(section_id).is_visible = bool(visible)
        self._visibility_overrides[section_id] = bool(visible)

    def refresh(self, source: ReportSource) -> None:
        """Follow a newer copy of the claim while keeping the user's overrides."""
        self.source = source
        derived = derive_report_sections(source)
        if not self.reordered:
            self.sections = derived
        else:
            current = {s.id: s for s in self.sections}
            next_order = max((s.order for s in self.sections), default=0) + 1
            merged = []
            for section in derived:
                existing = current.get(section.id)
                if existing is not None:
                    section.order = existing.order
                else:
                    section.order = next_order
                    next_order += 1
                merged.append(section)
            self.sections = merged
        for section in self.sections:
            if section.id in self._visibility_overrides:
                section.is_visible = self._visibility_overrides[section.id]

    def reset(self, source: Optional[ReportSource] = None) -> None:
        """Drop overrides and re-derive from the (optionally refreshed) claim."""
        if source is not None:
            self.source = source
        self.sections = derive_report_sections(self.source)
        self.reordered = False
        self._visibility_overrides.clear()

    def to_list(self) -> List[Dict[str, Any]]:
        return [
            dict(s.to_dict(), has_content=section_has_content(s.id, self.source))
            for s in self.ordered()
        ]


def filter_documents(documents: Sequence[ClaimDocument]) -> List[ClaimDocument]:
    """Drop upload-link placeholders and documents not selected for reports."""
    return [
        doc for doc in documents
        if not doc.file_name.startswith(PLACEHOLDER_PREFIX) and doc.is_selected is True
    ]


def group_documents(documents: Sequence[ClaimDocument]) -> "OrderedDict[str, List[ClaimDocument]]":
    grouped: "OrderedDict[str, List[ClaimDocument]]" = OrderedDict()
    for doc in filter_documents(documents):
        grouped.setdefault(doc.field_label or UNCATEGORIZED, []).append(doc)
    return grouped


def _section_components(section: ReportSection, source: ReportSource) -> List[Dict[str, Any]]:
    claim = source.claim
    components: List[Dict[str, Any]] = [{"type": "subheader", "props": {"text": section.name}}]

    if section.id == OVERVIEW_ID:
        components.append({
            "type": "table",
            "props": {
                "headers": ["Field", "Value"],
                "rows": [
                    ["Claim Number", claim.claim_number],
                    ["Policy Type", claim.policy_type_name or "-"],
                    ["Status", claim.status.value.replace("_", " ", 1)],
                    ["Date Created", format_date(claim.created_at)],
                ],
            },
        })
        if claim.description:
            components.append({"type": "para", "props": {"text": f"Description: {claim.description}"}})
        return components

    if section.id == POLICY_DETAILS_ID:
        pairs = source.policy_pairs()
        if pairs:
            components.append({"type": "table", "props": {"headers": ["Field", "Value"], "rows": pairs}})
        return components

    stored = source.section(section.id)
    if stored is None:
        return components

    pairs = source.field_pairs(stored)
    if pairs:
        components.append({"type": "table", "props": {"headers": ["Field", "Value"], "rows": pairs}})

    urls = source.image_urls(section.id)
    if urls:
        components.append({
            "type": "image-grid",
            "props": {"title": "Images", "rows": [urls[i:i + 2] for i in range(0, len(urls), 2)]},
        })

    for table in stored.tables:
        components.append({
            "type": "table",
            "props": {"title": table.name or "Table", "headers": [], "rows": table.cell_values()},
        })
    return components


@with_context(component="report")
def build_report(
    source: ReportSource,
    layout: Optional[ReportLayout] = None,
    documents: Sequence[ClaimDocument] = (),
    report_config: Optional[ReportConfig] = None,
) -> Dict[str, Any]:
    """
    Assemble the report document.

    Args:
        source: Persisted claim data
        layout: Session layout; a fresh derivation is used when omitted
        documents: The claim's uploaded documents
        report_config: Company default, page backgrounds and renderer configs

    Returns:
        Dict with company, reportName, assets, configs and components
    """
    report_config = report_config or ReportConfig()
    layout_sections = layout.ordered() if layout else derive_report_sections(source)
    visible = [s for s in layout_sections if s.is_visible and section_has_content(s.id, source)]

    components: List[Dict[str, Any]] = [copy.deepcopy(HEADER_COMPONENT)]
    for section in visible:
        components.extend(_section_components(section, source))

    grouped = group_documents(documents)
    if grouped:
        rows: List[List[str]] = []
        for label, docs in grouped.items():
            rows.append([f"— {label} —", ""])
            for doc in docs:
                rows.append([
                    doc.file_name,
                    f"{doc.file_type} • {format_file_size(doc.file_size)} "
                    f"• Uploaded {format_date(doc.created_at)}",
                ])
        components.append({"type": "subheader", "props": {"text": "Supporting Documents"}})
        components.append({"type": "table", "props": {"headers": ["File", "Details"], "rows": rows}})

    claim = source.claim
    logger.info(
        f"Assembled report for claim {claim.claim_number}: "
        f"{len(visible)} sections, {len(components)} components"
    )
    return {
        "company": claim.policy_type_name or report_config.default_company,
        "reportName": f"Claim Report - {claim.claim_number}",
        "assets": {
            "firstPageBackground": report_config.first_page_background,
            "otherPagesBackground": report_config.other_pages_background,
        },
        "configs": dict(report_config.configs),
        "components": components,
    }

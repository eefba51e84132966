"""Assessment worksheet data models (vehicle-damage cost breakdown)."""

from dataclasses import dataclass, field, fields, asdict
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List

DEFAULT_ANNOTATION = "Annotation to below assessment calculations..."

SPARE_CATEGORIES = ("assessed_glass", "assessed_plastic_rubber", "assessed_others_metal")


def to_number(raw: Any) -> float:
    """Parse a worksheet input; blanks and garbage count as zero."""
    if raw is None or isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        return float(raw)
    try:
        return float(str(raw).replace(",", "").strip() or 0)
    except ValueError:
        return 0.0


def round2(value: float) -> float:
    """Round to 2 decimal places, halves away from zero."""
    try:
        quantized = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        return 0.0
    return float(quantized)


def _load(cls, data: Dict[str, Any]):
    """Build a flat dataclass from a dict, ignoring unknown keys."""
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (data or {}).items() if k in names})


@dataclass
class SpareRow:
    """One spare-parts line item."""
    invoice_no: str = ""
    description: str = ""
    quantity: float = 0
    estimated_amount: float = 0
    assessed_glass: float = 0
    assessed_plastic_rubber: float = 0
    assessed_others_metal: float = 0
    remarks: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpareRow":
        row = _load(cls, data)
        for name in ("quantity", "estimated_amount") + SPARE_CATEGORIES:
            setattr(row, name, to_number(getattr(row, name)))
        return row


@dataclass
class LabourRow:
    """One labour line item."""
    invoice_no: str = ""
    description: str = ""
    estimated_amount: float = 0
    assessed_amount: float = 0
    remarks: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LabourRow":
        row = _load(cls, data)
        row.estimated_amount = to_number(row.estimated_amount)
        row.assessed_amount = to_number(row.assessed_amount)
        return row


@dataclass
class SpareTotals:
    """
    Derived totals for the spare-parts table.

    Only the five percentages are inputs; every other attribute is
    recomputed from the rows.
    """
    cgst_percent: float = 0
    sgst_percent: float = 0
    dep_glass_percent: float = 0
    dep_plastic_percent: float = 0
    dep_metal_percent: float = 0
    qty_total: float = 0
    estimated_total: float = 0
    assessed_glass_total: float = 0
    assessed_plastic_total: float = 0
    assessed_metal_total: float = 0
    assessed_total: float = 0
    cgst_amount: float = 0
    sgst_amount: float = 0
    total_with_gst: float = 0
    dep_glass_amount: float = 0
    dep_plastic_amount: float = 0
    dep_metal_amount: float = 0
    depreciation_total: float = 0
    net_amount: float = 0

    PERCENT_FIELDS = (
        "cgst_percent",
        "sgst_percent",
        "dep_glass_percent",
        "dep_plastic_percent",
        "dep_metal_percent",
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpareTotals":
        totals = _load(cls, data)
        for f in fields(cls):
            setattr(totals, f.name, to_number(getattr(totals, f.name)))
        return totals


@dataclass
class LabourTotals:
    """Derived totals for the labour table; the three percentages are inputs."""
    cgst_percent: float = 0
    sgst_percent: float = 0
    imt_percent: float = 0
    estimated_total: float = 0
    assessed_total: float = 0
    cgst_amount: float = 0
    sgst_amount: float = 0
    total_with_gst: float = 0
    imt_deduction: float = 0
    final_total: float = 0

    PERCENT_FIELDS = ("cgst_percent", "sgst_percent", "imt_percent")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LabourTotals":
        totals = _load(cls, data)
        for f in fields(cls):
            setattr(totals, f.name, to_number(getattr(totals, f.name)))
        return totals


@dataclass
class AssessmentSummary:
    """Combined liability figures; salvage_value and policy_excess are user inputs."""
    total_spare_assessed: float = 0
    total_labour_assessed: float = 0
    gross_estimated: float = 0
    gross_assessed: float = 0
    dep_glass_amount: float = 0
    dep_plastic_amount: float = 0
    dep_metal_amount: float = 0
    imt_spares_deduction: float = 0
    imt_labour_deduction: float = 0
    net_after_dep_imt: float = 0
    salvage_value: float = 0
    policy_excess: float = 0
    final_net_liability: float = 0

    OVERRIDE_FIELDS = ("salvage_value", "policy_excess")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssessmentSummary":
        summary = _load(cls, data)
        for f in fields(cls):
            setattr(summary, f.name, to_number(getattr(summary, f.name)))
        return summary


@dataclass
class AssessmentHeader:
    """Free-text header block of the worksheet."""
    report_ref_no: str = ""
    insured_and_regn: str = ""
    policy_inception_date: str = ""
    registration_date: str = ""
    date_of_accident: str = ""
    on_road_age: str = ""
    age_depreciation_rate: str = ""
    annotation: str = DEFAULT_ANNOTATION

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssessmentHeader":
        header = _load(cls, data)
        for f in fields(cls):
            value = getattr(header, f.name)
            setattr(header, f.name, "" if value is None else str(value))
        return header


@dataclass
class Assessment:
    """
    The whole worksheet as stored under form_data["assessment"].

    Attributes:
        header: Header fields
        new_spares: New spare-parts rows
        supplementary_spares: Supplementary spare-parts rows
        spare_totals: Totals over both spare collections
        labour: Main labour rows
        supplementary_labour: Supplementary labour rows
        labour_totals: Totals over both labour collections
        summary: Combined figures
    """
    header: AssessmentHeader = field(default_factory=AssessmentHeader)
    new_spares: List[SpareRow] = field(default_factory=list)
    supplementary_spares: List[SpareRow] = field(default_factory=list)
    spare_totals: SpareTotals = field(default_factory=SpareTotals)
    labour: List[LabourRow] = field(default_factory=list)
    supplementary_labour: List[LabourRow] = field(default_factory=list)
    labour_totals: LabourTotals = field(default_factory=LabourTotals)
    summary: AssessmentSummary = field(default_factory=AssessmentSummary)

    def to_dict(self) -> Dict[str, Any]:
        """Stored form: header, spare{...}, labour{...}, summary."""
        return {
            "header": asdict(self.header),
            "spare": {
                "new_spares": [asdict(r) for r in self.new_spares],
                "supplementary": [asdict(r) for r in self.supplementary_spares],
                "totals": asdict(self.spare_totals),
            },
            "labour": {
                "main": [asdict(r) for r in self.labour],
                "supplementary": [asdict(r) for r in self.supplementary_labour],
                "totals": asdict(self.labour_totals),
            },
            "summary": asdict(self.summary),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Assessment":
        data = data or {}
        spare = data.get("spare") or {}
        labour = data.get("labour") or {}
        return cls(
            header=AssessmentHeader.from_dict(data.get("header") or {}),
            new_spares=[SpareRow.from_dict(r) for r in spare.get("new_spares") or []],
            supplementary_spares=[SpareRow.from_dict(r) for r in spare.get("supplementary") or []],
            spare_totals=SpareTotals.from_dict(spare.get("totals") or {}),
            labour=[LabourRow.from_dict(r) for r in labour.get("main") or []],
            supplementary_labour=[LabourRow.from_dict(r) for r in labour.get("supplementary") or []],
            labour_totals=LabourTotals.from_dict(labour.get("totals") or {}),
            summary=AssessmentSummary.from_dict(data.get("summary") or {}),
        )

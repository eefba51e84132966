"""
Assessment worksheet: spare-parts and labour line items with derived totals.

The compute_* functions are pure folds over the rows; the worksheet calls
them after every edit so stored totals are only ever a cache.
"""

import logging
import math
from typing import Any, Iterable, List, Optional

from ..models.assessment import (
    DEFAULT_ANNOTATION,
    SPARE_CATEGORIES,
    Assessment,
    AssessmentHeader,
    AssessmentSummary,
    LabourRow,
    LabourTotals,
    SpareRow,
    SpareTotals,
    round2,
    to_number,
)
from ..models.claim import Claim
from ..utils.errors import ValidationError
from .autosave import SaveScheduler
from .values import ASSESSMENT_KEY, FieldValueStore

logger = logging.getLogger(__name__)

SPARE_COLLECTIONS = ("new_spares", "supplementary_spares")
LABOUR_COLLECTIONS = ("labour", "supplementary_labour")

# Debounce units; each save writes the whole assessment subtree
SAVE_UNITS = ("spare", "labour", "summary")

SPARE_TEXT_FIELDS = ("invoice_no", "description", "remarks")
SPARE_NUMBER_FIELDS = ("quantity", "estimated_amount") + SPARE_CATEGORIES
LABOUR_TEXT_FIELDS = ("invoice_no", "description", "remarks")
LABOUR_NUMBER_FIELDS = ("estimated_amount", "assessed_amount")


def _sum(values: Iterable[Any]) -> float:
    return round2(sum(to_number(v) for v in values))


def _percent_of(amount: float, percent: float) -> float:
    return round2(amount * to_number(percent) / 100)


def compute_spare_totals(rows: List[SpareRow], percents: SpareTotals) -> SpareTotals:
    """
    Fold spare-parts rows into totals.

    Tax applies to the assessed total; depreciation applies per category.

    Args:
        rows: New and supplementary rows together
        percents: Totals block whose percentage inputs are used

    Returns:
        A new SpareTotals carrying the same percentages
    """
    glass = _sum(r.assessed_glass for r in rows)
    plastic = _sum(r.assessed_plastic_rubber for r in rows)
    metal = _sum(r.assessed_others_metal for r in rows)
    assessed_total = round2(glass + plastic + metal)

    cgst_amount = _percent_of(assessed_total, percents.cgst_percent)
    sgst_amount = _percent_of(assessed_total, percents.sgst_percent)
    total_with_gst = round2(assessed_total + cgst_amount + sgst_amount)

    dep_glass = _percent_of(glass, percents.dep_glass_percent)
    dep_plastic = _percent_of(plastic, percents.dep_plastic_percent)
    dep_metal = _percent_of(metal, percents.dep_metal_percent)
    depreciation_total = round2(dep_glass + dep_plastic + dep_metal)

    return SpareTotals(
        cgst_percent=to_number(percents.cgst_percent),
        sgst_percent=to_number(percents.sgst_percent),
        dep_glass_percent=to_number(percents.dep_glass_percent),
        dep_plastic_percent=to_number(percents.dep_plastic_percent),
        dep_metal_percent=to_number(percents.dep_metal_percent),
        qty_total=_sum(r.quantity for r in rows),
        estimated_total=_sum(r.estimated_amount for r in rows),
        assessed_glass_total=glass,
        assessed_plastic_total=plastic,
        assessed_metal_total=metal,
        assessed_total=assessed_total,
        cgst_amount=cgst_amount,
        sgst_amount=sgst_amount,
        total_with_gst=total_with_gst,
        dep_glass_amount=dep_glass,
        dep_plastic_amount=dep_plastic,
        dep_metal_amount=dep_metal,
        depreciation_total=depreciation_total,
        net_amount=round2(total_with_gst - depreciation_total),
    )


def compute_labour_totals(rows: List[LabourRow], percents: LabourTotals) -> LabourTotals:
    """Fold labour rows into totals; IMT is deducted from the taxed total."""
    assessed_total = _sum(r.assessed_amount for r in rows)
    cgst_amount = _percent_of(assessed_total, percents.cgst_percent)
    sgst_amount = _percent_of(assessed_total, percents.sgst_percent)
    total_with_gst = round2(assessed_total + cgst_amount + sgst_amount)
    imt_deduction = _percent_of(assessed_total, percents.imt_percent)

    return LabourTotals(
        cgst_percent=to_number(percents.cgst_percent),
        sgst_percent=to_number(percents.sgst_percent),
        imt_percent=to_number(percents.imt_percent),
        estimated_total=_sum(r.estimated_amount for r in rows),
        assessed_total=assessed_total,
        cgst_amount=cgst_amount,
        sgst_amount=sgst_amount,
        total_with_gst=total_with_gst,
        imt_deduction=imt_deduction,
        final_total=round2(total_with_gst - imt_deduction),
    )


def compute_summary(
    spare: SpareTotals,
    labour: LabourTotals,
    salvage_value: Any = 0,
    policy_excess: Any = 0,
) -> AssessmentSummary:
    """Combine both tables' totals with the salvage and excess overrides."""
    total_spare = round2(spare.assessed_total)
    total_labour = round2(labour.assessed_total)
    gross_assessed = round2(total_spare + total_labour)
    dep_glass = round2(spare.dep_glass_amount)
    dep_plastic = round2(spare.dep_plastic_amount)
    dep_metal = round2(spare.dep_metal_amount)
    imt_labour = round2(labour.imt_deduction)
    net_after = round2(gross_assessed - (dep_glass + dep_plastic + dep_metal) - imt_labour)
    salvage = to_number(salvage_value)
    excess = to_number(policy_excess)

    return AssessmentSummary(
        total_spare_assessed=total_spare,
        total_labour_assessed=total_labour,
        # Gross estimate follows the labour sheet
        gross_estimated=round2(labour.estimated_total),
        gross_assessed=gross_assessed,
        dep_glass_amount=dep_glass,
        dep_plastic_amount=dep_plastic,
        dep_metal_amount=dep_metal,
        imt_spares_deduction=0.0,
        imt_labour_deduction=imt_labour,
        net_after_dep_imt=net_after,
        salvage_value=salvage,
        policy_excess=excess,
        final_net_liability=round2(net_after - salvage - excess),
    )


def recompute(assessment: Assessment) -> Assessment:
    """Refresh every derived figure in place and return the worksheet."""
    assessment.spare_totals = compute_spare_totals(
        assessment.new_spares + assessment.supplementary_spares, assessment.spare_totals
    )
    assessment.labour_totals = compute_labour_totals(
        assessment.labour + assessment.supplementary_labour, assessment.labour_totals
    )
    assessment.summary = compute_summary(
        assessment.spare_totals,
        assessment.labour_totals,
        assessment.summary.salvage_value,
        assessment.summary.policy_excess,
    )
    return assessment


def parse_amount(name: str, value: Any) -> float:
    """Strictly parse an amount input; blanks are zero, anything non-numeric is rejected."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        amount = float(value)
    elif value is None or not str(value).strip():
        return 0.0
    else:
        try:
            amount = float(str(value).replace(",", "").strip())
        except ValueError:
            amount = math.nan
    if not math.isfinite(amount):
        raise ValidationError.invalid(f"'{value}' is not a valid amount", field=name)
    return amount


def apply_exclusive_category(row: SpareRow, category: str, value: Any) -> None:
    """
    Attribute the assessed amount to one category, zeroing the other two.

    A blank value clears the row's categories; anything that does not
    parse as a number is rejected and leaves the row unchanged.
    """
    if category not in SPARE_CATEGORIES:
        raise ValidationError.invalid(f"Unknown spare category '{category}'", field=category)
    amount = parse_amount(category, value)
    for name in SPARE_CATEGORIES:
        setattr(row, name, 0.0)
    setattr(row, category, amount)


def default_header(claim: Claim) -> AssessmentHeader:
    """Prefill the header from the claim's own data."""
    form_data = claim.form_data or {}
    insured = str(form_data.get("insured_name") or "").strip()
    if form_data.get("vehicle_regn_no"):
        insured += f", {form_data['vehicle_regn_no']}"
    return AssessmentHeader(
        report_ref_no=claim.claim_number or "",
        insured_and_regn=insured,
        policy_inception_date=str(form_data.get("policy_inception_date") or ""),
        registration_date=str(form_data.get("registration_date") or ""),
        date_of_accident=str(form_data.get("date_of_accident") or ""),
        on_road_age=str(form_data.get("on_road_age") or ""),
        age_depreciation_rate=str(form_data.get("age_depreciation_rate") or ""),
        annotation=DEFAULT_ANNOTATION,
    )


class AssessmentWorksheet:
    """
    Editable worksheet for one claim.

    Every edit recomputes all derived figures and arms the debounce timer
    of the unit it belongs to (spare, labour or summary). A firing timer
    writes the whole assessment subtree through a read-merge-write.
    """

    def __init__(
        self,
        claim: Claim,
        values: FieldValueStore,
        scheduler: Optional[SaveScheduler] = None,
        save_delay: float = 1.0,
    ):
        self.claim_id = claim.id
        self.values = values
        self.scheduler = scheduler
        self.save_delay = save_delay

        stored = (claim.form_data or {}).get(ASSESSMENT_KEY)
        if isinstance(stored, dict) and stored:
            self.assessment = Assessment.from_dict(stored)
            if not stored.get("header"):
                self.assessment.header = default_header(claim)
        else:
            self.assessment = Assessment(header=default_header(claim))
        recompute(self.assessment)

    def _rows(self, collection: str) -> list:
        if collection not in SPARE_COLLECTIONS + LABOUR_COLLECTIONS:
            raise ValidationError.invalid(f"Unknown row collection '{collection}'", field="collection")
        return getattr(self.assessment, collection)

    def _row(self, collection: str, index: int):
        rows = self._rows(collection)
        if not 0 <= index < len(rows):
            raise ValidationError.invalid(f"Row {index} does not exist in {collection}", field="index")
        return rows[index]

    @staticmethod
    def _unit_for(collection: str) -> str:
        return "spare" if collection in SPARE_COLLECTIONS else "labour"

    def _changed(self, unit: str) -> None:
        recompute(self.assessment)
        if self.scheduler:
            self.scheduler.schedule(f"assessment:{unit}", self.save, self.save_delay)

    # Rows

    def add_row(self, collection: str) -> int:
        """Append an empty row; returns its index."""
        rows = self._rows(collection)
        rows.append(SpareRow() if collection in SPARE_COLLECTIONS else LabourRow())
        self._changed(self._unit_for(collection))
        return len(rows) - 1

    def remove_row(self, collection: str, index: int) -> None:
        self._row(collection, index)
        del self._rows(collection)[index]
        self._changed(self._unit_for(collection))

    def set_row_field(self, collection: str, index: int, field_name: str, value: Any) -> None:
        """
        Set one cell of a row.

        Writing any assessed category of a spare row zeroes the other two
        categories on that row.
        """
        row = self._row(collection, index)
        if collection in SPARE_COLLECTIONS:
            text_fields, number_fields = SPARE_TEXT_FIELDS, SPARE_NUMBER_FIELDS
        else:
            text_fields, number_fields = LABOUR_TEXT_FIELDS, LABOUR_NUMBER_FIELDS

        if field_name in SPARE_CATEGORIES and collection in SPARE_COLLECTIONS:
            apply_exclusive_category(row, field_name, value)
        elif field_name in number_fields:
            setattr(row, field_name, to_number(value))
        elif field_name in text_fields:
            setattr(row, field_name, "" if value is None else str(value))
        else:
            raise ValidationError.invalid(f"Unknown row field '{field_name}'", field=field_name)
        self._changed(self._unit_for(collection))

    # Inputs outside the rows

    def set_percent(self, table: str, name: str, value: Any) -> None:
        """Set a tax/depreciation/deduction percentage on the spare or labour totals."""
        if table == "spare":
            totals, allowed = self.assessment.spare_totals, SpareTotals.PERCENT_FIELDS
        elif table == "labour":
            totals, allowed = self.assessment.labour_totals, LabourTotals.PERCENT_FIELDS
        else:
            raise ValidationError.invalid(f"Unknown totals table '{table}'", field="table")
        if name not in allowed:
            raise ValidationError.invalid(f"'{name}' is not an editable percentage", field=name)
        setattr(totals, name, to_number(value))
        self._changed(table)

    def set_summary_override(self, name: str, value: Any) -> None:
        if name not in AssessmentSummary.OVERRIDE_FIELDS:
            raise ValidationError.invalid(f"'{name}' is computed and cannot be edited", field=name)
        setattr(self.assessment.summary, name, to_number(value))
        self._changed("summary")

    def set_header_field(self, name: str, value: Any) -> None:
        if not hasattr(self.assessment.header, name):
            raise ValidationError.invalid(f"Unknown header field '{name}'", field=name)
        setattr(self.assessment.header, name, "" if value is None else str(value))
        self._changed("summary")

    # Persistence

    def to_dict(self):
        return self.assessment.to_dict()

    def save(self) -> bool:
        """Write the whole assessment subtree; other form_data keys are merged, not replaced."""
        recompute(self.assessment)
        saved = self.values.persist({ASSESSMENT_KEY: self.assessment.to_dict()}, "Failed to save assessment")
        if saved:
            logger.debug(f"Saved assessment for claim {self.claim_id}")
        return saved

    def flush(self) -> None:
        """Run any pending debounced saves now."""
        if not self.scheduler:
            return
        for unit in SAVE_UNITS:
            self.scheduler.flush(f"assessment:{unit}")

"""
Fee bill: the surveyor's fee invoice for a claim.

compute_fee_bill is a pure function of the inputs; the worksheet recomputes
after every edit and debounces a save of the whole form_data["fee_bill"]
subtree, like the assessment worksheet does.
"""

import logging
import math
from datetime import date
from typing import Any, Dict, Optional

from ..models.assessment import round2
from ..models.claim import Claim
from ..models.fee_bill import DEFAULT_SURVEY_TYPE, FeeBill, FeeBillInputs, FeeBillTotals
from ..models.fields import display_value, is_empty
from ..utils.errors import ValidationError
from .assessment import parse_amount
from .autosave import SaveScheduler
from .values import FEE_BILL_KEY, FieldValueStore

logger = logging.getLogger(__name__)

SAVE_KEY = "fee_bill"
ADDITIONAL_FEE_RATE = 0.007
LOSS_NOTE_THRESHOLD = 200000

# Invoice label -> form_data field it is read from
POLICY_INFO_SOURCES = (
    ("insured_name", "insured_name"),
    ("insurer_name", "insurer"),
    ("policy_number", "policy_number"),
    ("insured_property", "insured_property"),
    ("survey_type", "survey_type"),
)

ONES = ("", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine")
TEENS = ("Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen",
         "Sixteen", "Seventeen", "Eighteen", "Nineteen")
TENS = ("", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety")


def _below_thousand(n: int) -> str:
    if n == 0:
        return ""
    if n < 10:
        return ONES[n]
    if n < 20:
        return TEENS[n - 10]
    if n < 100:
        return TENS[n // 10] + (f" {ONES[n % 10]}" if n % 10 else "")
    rest = n % 100
    return f"{ONES[n // 100]} Hundred" + (f" {_below_thousand(rest)}" if rest else "")


def amount_in_words(amount: float) -> str:
    """
    Spell out the whole-rupee part of an amount in Indian numbering.

    Example: 12345678 -> "One Crore Twenty Three Lakh Forty Five Thousand
    Six Hundred Seventy Eight". Paise are dropped.
    """
    n = int(math.floor(amount)) if amount > 0 else 0
    if n == 0:
        return "Zero"
    crore, rest = divmod(n, 10_000_000)
    lakh, rest = divmod(rest, 100_000)
    thousand, remainder = divmod(rest, 1000)

    parts = []
    if crore:
        parts.append(f"{amount_in_words(crore)} Crore")
    if lakh:
        parts.append(f"{_below_thousand(lakh)} Lakh")
    if thousand:
        parts.append(f"{_below_thousand(thousand)} Thousand")
    if remainder:
        parts.append(_below_thousand(remainder))
    return " ".join(parts)


def compute_fee_bill(inputs: FeeBillInputs) -> FeeBillTotals:
    """
    Derive the invoice amounts from its inputs.

    The invoice is issued without GST, so gst_amount is always zero and
    total_amount equals total_above. The total sums the unrounded row
    amounts and is rounded once.
    """
    additional = inputs.final_survey_base * ADDITIONAL_FEE_RATE
    travelling = inputs.travelling_km * inputs.travelling_rate
    photography = inputs.photography_survey_count * inputs.photography_per_photo

    total = round2(
        inputs.final_survey_base
        + additional
        + inputs.reinspection_fee
        + inputs.local_conveyance_amount
        + travelling
        + inputs.other_expenses
        + photography
    )

    loss = inputs.estimated_loss_amount
    return FeeBillTotals(
        final_survey_additional=round2(additional),
        travelling_amount=round2(travelling),
        photography_amount=round2(photography),
        total_above=total,
        gst_amount=0.0,
        total_amount=total,
        amount_in_words=amount_in_words(total),
        estimated_loss_note="(More than 2 Lakhs)" if loss > LOSS_NOTE_THRESHOLD else "",
        declared_value_note=(
            "(More than estimate amt.)" if loss and inputs.insured_declared_value > loss else ""
        ),
    )


class FeeBillWorksheet:
    """Editable fee invoice of one claim."""

    def __init__(
        self,
        claim: Claim,
        values: FieldValueStore,
        scheduler: Optional[SaveScheduler] = None,
        save_delay: float = 1.0,
    ):
        self.claim_id = claim.id
        self.policy_type_name = claim.policy_type_name or ""
        self.values = values
        self.scheduler = scheduler
        self.save_delay = save_delay

        stored = (claim.form_data or {}).get(FEE_BILL_KEY)
        self.fee_bill = FeeBill.from_dict(stored if isinstance(stored, dict) else {})
        if not self.fee_bill.inputs.invoice_number:
            self.fee_bill.inputs.invoice_number = claim.claim_number or ""
        if not self.fee_bill.inputs.invoice_date:
            self.fee_bill.inputs.invoice_date = date.today().isoformat()
        self.recompute()

    def policy_info(self) -> Dict[str, str]:
        """Read-only invoice details taken from the claim's current draft values."""
        info = {}
        for key, source in POLICY_INFO_SOURCES:
            value = self.values.get_value(source)
            info[key] = "" if is_empty(value) else display_value(value)
        info["policy_type"] = self.policy_type_name
        if not info["survey_type"]:
            info["survey_type"] = DEFAULT_SURVEY_TYPE
        return info

    def recompute(self) -> FeeBill:
        self.fee_bill.totals = compute_fee_bill(self.fee_bill.inputs)
        self.fee_bill.policy_info = self.policy_info()
        return self.fee_bill

    def set_fields(self, changes: Dict[str, Any]) -> None:
        """
        Apply several input edits at once.

        Every change is checked before any is applied, so a rejected value
        leaves the invoice untouched.
        """
        numbers = FeeBillInputs.number_fields()
        parsed = {}
        for name, value in (changes or {}).items():
            if name in numbers:
                parsed[name] = parse_amount(name, value)
            elif name in FeeBillInputs.TEXT_FIELDS:
                parsed[name] = "" if value is None else str(value)
            else:
                raise ValidationError.invalid(f"'{name}' is not an editable fee bill field", field=name)
        if not parsed:
            return
        for name, value in parsed.items():
            setattr(self.fee_bill.inputs, name, value)
        self.recompute()
        if self.scheduler:
            self.scheduler.schedule(SAVE_KEY, self.save, self.save_delay)

    def to_dict(self) -> Dict[str, Any]:
        return self.recompute().to_dict()

    def save(self, success_message: Optional[str] = None) -> bool:
        if self.scheduler:
            self.scheduler.cancel(SAVE_KEY)
        saved = self.values.persist(
            {FEE_BILL_KEY: self.to_dict()},
            "Failed to save fee bill",
            success_message=success_message,
        )
        if saved:
            logger.debug(f"Saved fee bill for claim {self.claim_id}")
        return saved

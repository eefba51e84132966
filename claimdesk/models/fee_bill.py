"""Survey fee invoice stored under form_data["fee_bill"]."""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict

from .assessment import _load, to_number

DEFAULT_SURVEY_TYPE = "Commercial Vehicle Final Survey"


@dataclass
class FeeBillInputs:
    """Editable figures of the fee invoice with their starting values."""
    invoice_number: str = ""
    invoice_date: str = ""
    estimated_loss_amount: float = 0
    insured_declared_value: float = 0
    final_survey_base: float = 2800.0
    reinspection_fee: float = 1000.0
    local_conveyance_amount: float = 1500.0
    local_conveyance_visits: float = 3
    travelling_km: float = 0
    travelling_rate: float = 15.307
    other_expenses: float = 0
    photography_survey_count: float = 1
    photography_per_photo: float = 10.0

    TEXT_FIELDS = ("invoice_number", "invoice_date")

    @classmethod
    def number_fields(cls):
        return tuple(f.name for f in fields(cls) if f.name not in cls.TEXT_FIELDS)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeeBillInputs":
        inputs = _load(cls, data)
        for name in cls.number_fields():
            setattr(inputs, name, to_number(getattr(inputs, name)))
        for name in cls.TEXT_FIELDS:
            value = getattr(inputs, name)
            setattr(inputs, name, "" if value is None else str(value))
        return inputs


@dataclass
class FeeBillTotals:
    """Derived fee amounts; never edited directly."""
    final_survey_additional: float = 0
    travelling_amount: float = 0
    photography_amount: float = 0
    total_above: float = 0
    gst_amount: float = 0
    total_amount: float = 0
    amount_in_words: str = "Zero"
    estimated_loss_note: str = ""
    declared_value_note: str = ""


@dataclass
class FeeBill:
    """
    The fee invoice as stored.

    Attributes:
        inputs: Editable figures
        totals: Cached derived amounts, recomputed on load
        policy_info: Read-only insured and policy details shown on the invoice
    """
    inputs: FeeBillInputs = field(default_factory=FeeBillInputs)
    totals: FeeBillTotals = field(default_factory=FeeBillTotals)
    policy_info: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inputs": asdict(self.inputs),
            "totals": asdict(self.totals),
            "policy_info": dict(self.policy_info),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeeBill":
        data = data or {}
        return cls(inputs=FeeBillInputs.from_dict(data.get("inputs") or {}))

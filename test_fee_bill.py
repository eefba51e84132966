"""Tests for the survey fee invoice: derived amounts, words and persistence."""

from datetime import date

import pytest

from claimdesk.forms.fee_bill import FeeBillWorksheet, amount_in_words, compute_fee_bill
from claimdesk.forms.values import FEE_BILL_KEY, FieldValueStore
from claimdesk.models.fee_bill import DEFAULT_SURVEY_TYPE, FeeBillInputs
from claimdesk.utils.errors import ValidationError


def _sheet(store, claim, scheduler=None):
    return FeeBillWorksheet(claim, FieldValueStore(store, claim), scheduler=scheduler)


def test_default_invoice_totals():
    totals = compute_fee_bill(FeeBillInputs())

    assert totals.final_survey_additional == 19.6
    assert totals.travelling_amount == 0
    assert totals.photography_amount == 10
    assert totals.total_above == 5329.6
    assert totals.gst_amount == 0
    assert totals.total_amount == totals.total_above
    assert totals.amount_in_words == "Five Thousand Three Hundred Twenty Nine"


def test_calculated_rows_follow_their_inputs():
    inputs = FeeBillInputs(
        final_survey_base=5000,
        travelling_km=120,
        travelling_rate=12.5,
        photography_survey_count=24,
        photography_per_photo=15,
    )

    totals = compute_fee_bill(inputs)

    assert totals.final_survey_additional == 35
    assert totals.travelling_amount == 1500
    assert totals.photography_amount == 360
    assert totals.total_amount == 5000 + 35 + 1000 + 1500 + 1500 + 360


def test_loss_and_declared_value_notes():
    assert compute_fee_bill(FeeBillInputs(estimated_loss_amount=250000)).estimated_loss_note == "(More than 2 Lakhs)"
    assert compute_fee_bill(FeeBillInputs(estimated_loss_amount=200000)).estimated_loss_note == ""

    above = FeeBillInputs(estimated_loss_amount=100000, insured_declared_value=150000)
    assert compute_fee_bill(above).declared_value_note == "(More than estimate amt.)"
    # No estimate entered yet: nothing to compare against
    assert compute_fee_bill(FeeBillInputs(insured_declared_value=150000)).declared_value_note == ""


@pytest.mark.parametrize("amount, words", [
    (0, "Zero"),
    (7, "Seven"),
    (15, "Fifteen"),
    (90, "Ninety"),
    (101, "One Hundred One"),
    (100000, "One Lakh"),
    (2500000.99, "Twenty Five Lakh"),
    (12345678, "One Crore Twenty Three Lakh Forty Five Thousand Six Hundred Seventy Eight"),
])
def test_amount_in_words_uses_indian_numbering(amount, words):
    assert amount_in_words(amount) == words


def test_worksheet_prefills_invoice_and_policy_info(store, claim):
    values = FieldValueStore(store, claim)
    values.patch_field("insured_name", "Acme Imports")
    sheet = FeeBillWorksheet(claim, values)

    data = sheet.to_dict()

    assert data["inputs"]["invoice_number"] == claim.claim_number
    assert data["inputs"]["invoice_date"] == date.today().isoformat()
    assert data["policy_info"]["insured_name"] == "Acme Imports"
    assert data["policy_info"]["policy_type"] == "Marine Cargo"
    assert data["policy_info"]["survey_type"] == DEFAULT_SURVEY_TYPE


def test_set_fields_is_all_or_nothing(store, claim):
    sheet = _sheet(store, claim)

    with pytest.raises(ValidationError):
        sheet.set_fields({"other_expenses": 250, "travelling_km": "far"})
    with pytest.raises(ValidationError):
        sheet.set_fields({"total_amount": 1})

    assert sheet.fee_bill.inputs.other_expenses == 0
    assert sheet.fee_bill.inputs.travelling_km == 0


def test_edits_debounce_and_save_subtree(store, claim, scheduler, timers):
    store.merge_form_data(claim.id, {"vessel_name": "MV Aurora"})
    sheet = _sheet(store, store.get_claim(claim.id), scheduler=scheduler)

    sheet.set_fields({"other_expenses": "1,000", "invoice_date": "2025-03-05"})
    assert scheduler.pending("fee_bill")
    assert timers[-1].delay == 1.0
    timers[-1].fire()

    form_data = store.get_claim(claim.id).form_data
    assert form_data["vessel_name"] == "MV Aurora"
    assert form_data[FEE_BILL_KEY]["inputs"]["other_expenses"] == 1000
    assert form_data[FEE_BILL_KEY]["inputs"]["invoice_date"] == "2025-03-05"
    assert form_data[FEE_BILL_KEY]["totals"]["total_amount"] == 6329.6


def test_stored_totals_are_recomputed_on_load(store, claim):
    store.merge_form_data(claim.id, {FEE_BILL_KEY: {
        "inputs": {"reinspection_fee": 0, "invoice_number": "INV-7"},
        "totals": {"total_amount": 99999},
    }})

    sheet = _sheet(store, store.get_claim(claim.id))

    assert sheet.fee_bill.inputs.invoice_number == "INV-7"
    assert sheet.fee_bill.totals.total_amount == 4329.6


def test_fee_bill_is_not_a_field_value(store, claim):
    store.merge_form_data(claim.id, {FEE_BILL_KEY: {"inputs": {}}})

    values = FieldValueStore(store, store.get_claim(claim.id))

    assert FEE_BILL_KEY not in values.values

"""Tests for the field-value store: draft values, metadata side-tables and failures."""

from datetime import date

from claimdesk.forms.values import (
    CUSTOM_FIELDS_KEY,
    FIELD_LABELS_KEY,
    HIDDEN_FIELDS_KEY,
    FieldValueStore,
    load_draft,
)
from claimdesk.models.fields import FieldKind
from claimdesk.utils.errors import PersistenceError


def _stored(store, claim):
    return store.get_claim(claim.id).form_data


def _fail_writes(monkeypatch, store):
    def failing(*args, **kwargs):
        raise PersistenceError.write_failed("save claim form data", OSError("disk full"))

    monkeypatch.setattr(store, "merge_form_data", failing)


def test_custom_field_survives_reload(store, claim):
    values = FieldValueStore(store, claim)
    descriptor = values.add_custom_field("section2", label="Survey Notes", name="custom_1700000000000")
    values.patch_field("custom_1700000000000", "Seals intact on arrival")
    assert values.commit_field("custom_1700000000000")

    reloaded = load_draft(_stored(store, claim))
    restored = {d.name: d for d in reloaded.custom_descriptors}["custom_1700000000000"]
    assert descriptor is not None
    assert restored.label == "Survey Notes"
    assert restored.section_id == "section2"
    assert restored.is_custom
    assert reloaded.values["custom_1700000000000"] == "Seals intact on arrival"


def test_patch_marks_pending_only_when_value_differs(store, claim):
    values = FieldValueStore(store, claim)

    assert values.patch_field("vessel_name", "MV Aurora") is True
    assert "vessel_name" in values.pending
    assert values.patch_field("vessel_name", "") is False
    assert "vessel_name" not in values.pending


def test_commit_field_clears_pending_and_keeps_other_values(store, claim):
    values = FieldValueStore(store, claim)
    # Written by someone else after this draft was loaded
    store.merge_form_data(claim.id, {"consignee_name": "Acme Imports"})

    values.patch_field("vessel_name", "MV Aurora")
    assert values.commit_field("vessel_name")

    stored = _stored(store, claim)
    assert stored["vessel_name"] == "MV Aurora"
    assert stored["consignee_name"] == "Acme Imports"
    assert "vessel_name" not in values.pending
    assert [n.message for n in values.drain_notices()] == ["Claim updated successfully!"]


def test_failed_commit_keeps_local_value_and_pending(store, claim, monkeypatch):
    values = FieldValueStore(store, claim)
    values.patch_field("vessel_name", "MV Aurora")
    _fail_writes(monkeypatch, store)

    assert values.commit_field("vessel_name") is False
    assert values.get_value("vessel_name") == "MV Aurora"
    assert "vessel_name" in values.pending
    notices = values.drain_notices()
    assert [(n.level, n.message) for n in notices] == [("error", "Failed to save field")]


def test_values_are_typed_in_memory_and_serialized_in_storage(store, claim):
    values = FieldValueStore(store, claim)
    values.patch_field("invoice_value", "1,250")
    values.patch_field("invoice_date", "2024-03-05")

    assert values.get_value("invoice_value") == 1250
    assert values.get_value("invoice_date") == date(2024, 3, 5)

    assert values.commit_all()
    stored = _stored(store, claim)
    assert stored["invoice_value"] == 1250
    assert stored["invoice_date"] == "2024-03-05"


def test_hiding_twice_is_idempotent_and_keeps_value(store, claim):
    store.merge_form_data(claim.id, {"cha_name": "Swift Clearing"})
    values = FieldValueStore(store, store.get_claim(claim.id))

    assert values.hide_field("cha_name")
    assert values.hide_field("cha_name")

    stored = _stored(store, claim)
    assert values.hidden_fields == {"cha_name"}
    assert stored[HIDDEN_FIELDS_KEY] == ["cha_name"]
    assert stored["cha_name"] == "Swift Clearing"


def test_legacy_custom_fields_get_round_robin_sections(store, claim):
    legacy = [{"name": f"custom_{i}", "label": f"Legacy {i}", "type": "text"} for i in range(5)]
    legacy[2]["sectionId"] = "custom_section_9"
    store.merge_form_data(claim.id, {CUSTOM_FIELDS_KEY: legacy})

    draft = load_draft(_stored(store, claim))

    assert [d.section_id for d in draft.custom_descriptors] == [
        "section1",
        "section2",
        "custom_section_9",
        "section4",
        "section1",
    ]


def test_add_custom_field_rejects_bad_names(store, claim):
    values = FieldValueStore(store, claim)

    assert values.add_custom_field("section1", name="notes") is None
    assert values.add_custom_field("section1", name="vessel_name") is None
    assert values.add_custom_field("", label="Orphan") is None
    assert len(values.drain_notices()) == 3
    assert values.custom_descriptors == []


def test_default_custom_field_is_text_named_new_field(store, claim):
    values = FieldValueStore(store, claim)

    descriptor = values.add_custom_field("section3")

    assert descriptor.label == "New Field"
    assert descriptor.kind is FieldKind.TEXT
    assert descriptor.name.startswith("custom_")


def test_removing_custom_field_drops_its_value(store, claim):
    values = FieldValueStore(store, claim)
    values.add_custom_field("section1", label="Seal No", name="custom_1")
    values.patch_field("custom_1", "SEAL-42")
    values.commit_field("custom_1")

    assert values.remove_custom_field("custom_1")

    stored = _stored(store, claim)
    assert "custom_1" not in stored
    assert stored[CUSTOM_FIELDS_KEY] == []


def test_relabel_merges_with_stored_labels(store, claim):
    store.merge_form_data(claim.id, {FIELD_LABELS_KEY: {"cha_name": "Agent"}})
    values = FieldValueStore(store, claim)

    assert values.relabel_field("vessel_name", "Ship")

    assert _stored(store, claim)[FIELD_LABELS_KEY] == {"cha_name": "Agent", "vessel_name": "Ship"}
    assert values.label_for("vessel_name") == "Ship"
    assert values.drain_notices()[-1].message == "Label updated"


def test_boolean_custom_field_round_trip(store, claim):
    values = FieldValueStore(store, claim)
    values.add_custom_field("section4", label="Seal Broken", kind=FieldKind.BOOLEAN, name="custom_seal")
    values.patch_field("custom_seal", "yes")
    values.commit_field("custom_seal")

    assert _stored(store, claim)["custom_seal"] is True


def test_image_slots(store, claim):
    values = FieldValueStore(store, claim)

    assert values.set_section_image("section1", 2, "https://img.example.com/a.jpg")
    assert values.set_section_image("section1", 6, "https://img.example.com/b.jpg") is False

    stored = _stored(store, claim)["section1_images"]
    assert stored == ["", "", "https://img.example.com/a.jpg", "", "", ""]
    assert values.clear_section_image("section1", 2)
    assert _stored(store, claim)["section1_images"] == [""] * 6


def test_standard_edits_autosave_after_debounce(store, claim, scheduler, timers):
    values = FieldValueStore(store, claim, scheduler=scheduler)

    values.patch_field("vessel_name", "MV")
    values.patch_field("vessel_name", "MV Aurora")

    assert scheduler.pending("standard")
    assert timers[0].cancelled
    timers[-1].fire()
    assert _stored(store, claim)["vessel_name"] == "MV Aurora"
    assert values.pending == set()


def test_custom_edits_wait_for_explicit_commit(store, claim, scheduler):
    values = FieldValueStore(store, claim, scheduler=scheduler)
    values.add_custom_field("section1", name="custom_1")

    values.patch_field("custom_1", "draft text")

    assert not scheduler.pending("standard")
    assert "custom_1" in values.pending


def test_commit_all_commits_pending_custom_fields_first(store, claim):
    values = FieldValueStore(store, claim)
    values.add_custom_field("section1", name="custom_1")
    values.patch_field("custom_1", "note")

    assert values.commit_all({"vessel_name": "MV Aurora"})

    stored = _stored(store, claim)
    assert stored["custom_1"] == "note"
    assert stored["vessel_name"] == "MV Aurora"
    assert values.pending == set()

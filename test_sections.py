"""Tests for the section organizer: ordering, templates and embedded tables."""

import pytest

from claimdesk.forms.sections import SectionOrganizer, load_sections
from claimdesk.forms.values import SECTIONS_KEY, FieldValueStore
from claimdesk.models.fields import FieldKind
from claimdesk.models.sections import ColorTag
from claimdesk.utils.errors import ValidationError


def _organizer(store, claim, scheduler=None):
    values = FieldValueStore(store, claim)
    return SectionOrganizer(claim, values, scheduler=scheduler)


def _template(store, **overrides):
    row = {
        "name": "Vessel Survey",
        "color_class": "bg-warning",
        "parent_policy_type_id": None,
        "preset_fields": [
            {"name": "vessel_name", "label": "Vessel Name", "type": "text", "order_index": 0},
            {"name": "", "label": "Hatch Condition", "type": "textarea", "order_index": 1},
        ],
    }
    row.update(overrides)
    return store.get_section_template(store.insert("section_templates", row)["id"])


def test_new_claim_gets_four_default_sections(store, claim):
    organizer = _organizer(store, claim)

    sections = organizer.ordered()
    assert [s.id for s in sections] == ["section1", "section2", "section3", "section4"]
    assert [s.order_index for s in sections] == [1, 2, 3, 4]
    assert not any(s.is_custom for s in sections)
    assert sections[0].color_tag is ColorTag.PRIMARY


def test_created_section_goes_last(store, claim):
    organizer = _organizer(store, claim)

    section = organizer.create_section("Cargo Photos", "success")

    assert section.order_index == 5
    assert section.is_custom
    assert section.color_tag is ColorTag.SUCCESS
    assert organizer.ordered()[-1].id == section.id


def test_blank_section_name_rejected(store, claim):
    organizer = _organizer(store, claim)

    with pytest.raises(ValidationError):
        organizer.create_section("   ")


def test_order_survives_save_and_reload(store, claim):
    organizer = _organizer(store, claim)
    custom = organizer.create_section("Cargo Photos")
    organizer.move_section("section4", "section1")
    assert organizer.save()

    reloaded = load_sections(store.get_claim(claim.id))

    assert [s.id for s in reloaded] == ["section4", "section1", "section2", "section3", custom.id]
    assert [s.order_index for s in reloaded] == [1, 2, 3, 4, 5]
    assert reloaded[-1].is_custom


def test_reorder_requires_every_section(store, claim):
    organizer = _organizer(store, claim)

    with pytest.raises(ValidationError):
        organizer.reorder(["section1", "section2"])


def test_default_sections_cannot_be_removed(store, claim):
    organizer = _organizer(store, claim)
    custom = organizer.create_section("Extra")

    with pytest.raises(ValidationError):
        organizer.remove_section("section2")
    organizer.remove_section(custom.id)

    assert [s.id for s in organizer.ordered()] == ["section1", "section2", "section3", "section4"]


def test_missing_default_is_appended_on_load(store, claim):
    store.merge_form_data(claim.id, {SECTIONS_KEY: [
        {"id": "section3", "name": "Transport", "order_index": 1, "is_custom": False},
        {"id": "section1", "name": "Basics", "order_index": 2, "is_custom": False},
    ]})

    sections = load_sections(store.get_claim(claim.id))

    assert [s.id for s in sections] == ["section3", "section1", "section2", "section4"]
    assert [s.order_index for s in sections] == [1, 2, 3, 4]
    # Default sections always take their fields from the catalog
    assert len(sections[1].fields) == 13


def test_template_section_renames_clashing_presets(store, claim):
    organizer = _organizer(store, claim)

    section = organizer.create_section_from_template(_template(store))

    assert section.name == "Vessel Survey"
    assert section.color_tag is ColorTag.WARNING
    assert [f.name for f in section.fields] == ["vessel_name_2", "hatch_condition"]
    assert section.fields[1].kind is FieldKind.MULTILINE_TEXT
    assert organizer.values.kind_of("hatch_condition") is FieldKind.MULTILINE_TEXT


def test_template_override_name(store, claim):
    organizer = _organizer(store, claim)

    section = organizer.create_section_from_template(_template(store), override_name="Hold 2 Survey")

    assert section.name == "Hold 2 Survey"


def test_add_field_to_section_creates_custom_field(store, claim):
    organizer = _organizer(store, claim)

    descriptor = organizer.add_field_to_section("section3")

    assert descriptor.label == "New Field"
    assert descriptor.section_id == "section3"
    assert descriptor.name in [d.name for d in organizer.fields_for("section3")]


def test_hidden_fields_left_out_of_section_fields(store, claim):
    organizer = _organizer(store, claim)
    organizer.values.hide_field("vessel_name")

    visible = [d.name for d in organizer.fields_for("section4")]
    everything = [d.name for d in organizer.fields_for("section4", include_hidden=True)]

    assert "vessel_name" not in visible
    assert "vessel_name" in everything


def test_table_defaults_and_limits(store, claim):
    organizer = _organizer(store, claim)

    table = organizer.add_table_to_section("section2")
    assert (table.rows, table.cols) == (5, 5)
    assert table.name == "Table 1"
    assert all(cell.value == "" for row in table.data for cell in row)

    with pytest.raises(ValidationError):
        organizer.add_table_to_section("section2", rows=21)
    with pytest.raises(ValidationError):
        organizer.add_table_to_section("section2", cols=0)
    assert len(organizer.get("section2").tables) == 1


def test_table_editing(store, claim):
    organizer = _organizer(store, claim)
    table = organizer.add_table_to_section("section2", rows=2, cols=2, name="Damage Grid")

    organizer.update_table_cell("section2", table.id, 1, 0, "Crate 7")
    organizer.add_table_row("section2", table.id)
    organizer.add_table_column("section2", table.id)
    organizer.remove_table_column("section2", table.id, 2)
    organizer.rename_table("section2", table.id, "Crates")

    assert table.cell_values() == [["", ""], ["Crate 7", ""], ["", ""]]
    assert (table.rows, table.cols) == (3, 2)
    assert table.name == "Crates"
    with pytest.raises(ValidationError):
        organizer.update_table_cell("section2", table.id, 5, 0, "x")


def test_last_table_row_cannot_be_removed(store, claim):
    organizer = _organizer(store, claim)
    table = organizer.add_table_to_section("section1", rows=1, cols=1)

    with pytest.raises(ValidationError):
        organizer.remove_table_row("section1", table.id, 0)

    organizer.delete_table("section1", table.id)
    assert organizer.get("section1").tables == []


def test_tables_persist_with_sections(store, claim):
    organizer = _organizer(store, claim)
    table = organizer.add_table_to_section("section2", rows=1, cols=2)
    organizer.update_table_cell("section2", table.id, 0, 1, "Wet")
    organizer.save()

    reloaded = {s.id: s for s in load_sections(store.get_claim(claim.id))}

    assert reloaded["section2"].tables[0].cell_values() == [["", "Wet"]]


def test_mutations_schedule_a_sections_save(store, claim, scheduler, timers):
    organizer = _organizer(store, claim, scheduler=scheduler)
    organizer.rename_section("section1", "Basics")

    assert scheduler.pending("sections")
    timers[-1].fire()

    stored = store.get_claim(claim.id).form_data[SECTIONS_KEY]
    assert stored[0]["name"] == "Basics"
    assert not organizer.dirty


def test_toggle_open_is_local(store, claim):
    organizer = _organizer(store, claim)

    assert organizer.toggle_open("section1") is False
    assert organizer.toggle_open("section1") is True
    with pytest.raises(ValidationError):
        organizer.toggle_open("nope")


def test_loading_saved_sections_schedules_nothing(store, claim, scheduler):
    organizer = _organizer(store, claim)
    organizer.create_section("Cargo Photos")
    assert organizer.save()

    reloaded = _organizer(store, store.get_claim(claim.id), scheduler=scheduler)

    assert not reloaded.dirty
    assert not scheduler.pending()


def test_repaired_section_list_is_written_back(store, claim, scheduler, timers):
    organizer = _organizer(store, claim)
    assert organizer.save()
    stored = store.get_claim(claim.id).form_data[SECTIONS_KEY]
    store.merge_form_data(claim.id, {SECTIONS_KEY: [s for s in stored if s["id"] != "section4"]})

    reloaded = _organizer(store, store.get_claim(claim.id), scheduler=scheduler)
    assert scheduler.pending("sections")
    timers[-1].fire()

    ids = [s["id"] for s in store.get_claim(claim.id).form_data[SECTIONS_KEY]]
    assert ids == ["section1", "section2", "section3", "section4"]
    assert not reloaded.dirty

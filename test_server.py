"""API tests for the claims desk service."""

from io import BytesIO
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

import server
from claimdesk.models.claim import Role
from claimdesk.session import close_all_sessions
from claimdesk.storage.claim_store import ClaimStore
from claimdesk.storage.file_storage import FileStorage
from claimdesk.utils.config import Config
from claimdesk.utils.errors import ErrorType, ExternalServiceError

ADMIN = {"X-User-Id": "admin-1"}


@pytest.fixture
def api(tmp_path, monkeypatch):
    for name in ("RENDER_SERVICE_URL", "IMAGE_UPLOAD_URL", "DOCUMENT_UPLOAD_URL", "CLAIMDESK_DATA_DIR"):
        monkeypatch.delenv(name, raising=False)
    config = Config.from_dict({
        "storage": {"data_dir": str(tmp_path / "data"), "uploads_dir": str(tmp_path / "uploads")},
        "services": {
            "render_base_url": "https://reports.example.com",
            "image_upload_url": "https://uploads.example.com/upload-image",
        },
        # Long delays: nothing autosaves on its own during a test
        "autosave": {"standard_delay": 600, "assessment_delay": 600},
        "report": {"default_company": "Insurance Company"},
    })
    store = ClaimStore(data_dir=str(tmp_path / "data"))
    store.set_role("admin-1", Role.ADMIN)
    state = server.configure(
        config,
        store=store,
        files=FileStorage(uploads_dir=str(tmp_path / "uploads")),
        renderer=MagicMock(),
        image_uploads=MagicMock(),
        document_uploads=None,
    )
    with TestClient(server.app) as client:
        client.desk = state
        yield client
    close_all_sessions()


@pytest.fixture
def claim_id(api):
    policy_type = api.desk.store.create_policy_type("Marine Cargo")
    resp = api.post(
        "/api/claims",
        json={"policy_type_id": policy_type.id, "title": "Water damage to cargo"},
        headers={"X-User-Id": "user-1"},
    )
    assert resp.status_code == 201
    return resp.json()["claim"]["id"]


def _png_bytes():
    buffer = BytesIO()
    Image.new("RGB", (2, 2), color="blue").save(buffer, format="PNG")
    return buffer.getvalue()


def _messages(resp):
    return [n["message"] for n in resp.json()["notices"]]


def test_healthz(api):
    resp = api.get("/healthz")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_policy_type_admin_only(api):
    denied = api.post("/api/policy-types", json={"name": "Fire"}, headers={"X-User-Id": "user-1"})
    created = api.post("/api/policy-types", json={"name": "Fire"}, headers=ADMIN)

    assert denied.status_code == 403
    assert denied.json()["notification"]["level"] == "error"
    assert created.status_code == 201
    assert created.json()["name"] == "Fire"
    assert [t["name"] for t in api.get("/api/policy-types").json()] == ["Fire"]


def test_policy_type_fields(api):
    policy_type = api.desk.store.create_policy_type("Fire & Property")

    resp = api.get(f"/api/policy-types/{policy_type.id}/fields")

    sections = resp.json()["sections"]
    assert list(sections) == ["section1", "section2", "section3", "section4"]
    assert sections["section4"][-1]["name"] == "sprinkler_system"


def test_create_claim(api, claim_id):
    claim = api.get(f"/api/claims/{claim_id}").json()

    assert claim["status"] == "draft"
    assert claim["claim_number"].startswith("CLM")
    assert claim["user_id"] == "user-1"


def test_create_claim_requires_title(api):
    policy_type = api.desk.store.create_policy_type("Marine")

    resp = api.post("/api/claims", json={"policy_type_id": policy_type.id, "title": ""})

    assert resp.status_code == 400
    assert resp.json()["notification"]["message"] == "Title is required"


def test_unknown_claim_is_404(api):
    assert api.get("/api/claims/missing").status_code == 404
    assert api.get("/api/claims/missing/draft").status_code == 404


def test_delete_claim_requires_admin(api, claim_id):
    assert api.delete(f"/api/claims/{claim_id}").status_code == 403
    assert api.delete(f"/api/claims/{claim_id}", headers=ADMIN).status_code == 200
    assert api.get(f"/api/claims/{claim_id}").status_code == 404


def test_draft_field_edit_and_commit(api, claim_id):
    draft = api.get(f"/api/claims/{claim_id}/draft").json()
    assert [s["id"] for s in draft["sections"]] == ["section1", "section2", "section3", "section4"]
    assert "insured_name" not in draft["missing_required"]

    patched = api.patch(f"/api/claims/{claim_id}/draft/fields/vessel_name", json={"value": "MV Aurora"})
    assert patched.json()["pending"] is True

    committed = api.post(f"/api/claims/{claim_id}/draft/fields/vessel_name/commit")
    assert committed.json()["ok"] is True
    assert _messages(committed) == ["Claim updated successfully!"]
    assert api.get(f"/api/claims/{claim_id}").json()["form_data"]["vessel_name"] == "MV Aurora"


def test_commit_all(api, claim_id):
    resp = api.post(f"/api/claims/{claim_id}/draft/commit", json={"values": {"invoice_value": "1,250"}})

    body = resp.json()
    assert body["ok"] is True
    assert body["values"]["invoice_value"] == 1250
    assert "Additional information updated successfully!" in [n["message"] for n in body["notices"]]


def test_custom_field_lifecycle(api, claim_id):
    added = api.post(
        f"/api/claims/{claim_id}/draft/custom-fields",
        json={"section_id": "section2", "label": "Seal No"},
    ).json()
    name = added["field"]["name"]
    assert name.startswith("custom_")

    api.patch(f"/api/claims/{claim_id}/draft/fields/{name}", json={"value": "SEAL-42"})
    api.post(f"/api/claims/{claim_id}/draft/fields/{name}/commit")
    relabel = api.put(f"/api/claims/{claim_id}/draft/fields/{name}/label", json={"label": "Seal Number"})
    assert _messages(relabel) == ["Label updated"]

    removed = api.delete(f"/api/claims/{claim_id}/draft/custom-fields/{name}")
    assert removed.json()["ok"] is True
    assert name not in api.get(f"/api/claims/{claim_id}").json()["form_data"]


def test_custom_field_in_unknown_section_rejected(api, claim_id):
    resp = api.post(f"/api/claims/{claim_id}/draft/custom-fields", json={"section_id": "nope"})

    assert resp.status_code == 400


def test_sections_create_and_reorder(api, claim_id):
    created = api.post(f"/api/claims/{claim_id}/sections", json={"name": "Cargo Photos", "color_tag": "danger"})
    section_id = created.json()["section"]["id"]
    assert created.json()["section"]["order_index"] == 5

    reordered = api.post(
        f"/api/claims/{claim_id}/sections/reorder",
        json={"active_id": section_id, "over_id": "section1"},
    ).json()
    assert [s["id"] for s in reordered][:2] == [section_id, "section1"]

    assert api.post(f"/api/claims/{claim_id}/sections/save").json()["ok"] is True
    stored = api.get(f"/api/claims/{claim_id}").json()["form_data"]["dynamic_sections_metadata"]
    assert stored[0]["id"] == section_id


def test_default_section_cannot_be_deleted(api, claim_id):
    assert api.delete(f"/api/claims/{claim_id}/sections/section1").status_code == 400


def test_section_tables(api, claim_id):
    table = api.post(f"/api/claims/{claim_id}/sections/section2/tables", json={"rows": 2, "cols": 3}).json()["table"]

    updated = api.patch(
        f"/api/claims/{claim_id}/sections/section2/tables/{table['id']}",
        json={"name": "Damage", "cells": [{"row": 0, "col": 2, "value": "Torn"}], "add_row": True},
    ).json()

    assert updated["name"] == "Damage"
    assert updated["rows"] == 3
    assert updated["data"][0][2] == {"value": "Torn"}
    too_big = api.post(f"/api/claims/{claim_id}/sections/section2/tables", json={"rows": 25})
    assert too_big.status_code == 400


def test_assessment_api(api, claim_id):
    base = f"/api/claims/{claim_id}/assessment"
    assert api.post(f"{base}/rows/new_spares").json()["index"] == 0
    api.patch(f"{base}/rows/new_spares/0", json={"field": "assessed_others_metal", "value": 1000})
    resp = api.patch(f"{base}/percents/spare", json={"name": "cgst_percent", "value": 9})

    totals = resp.json()["assessment"]["spare"]["totals"]
    assert totals["total_with_gst"] == 1090.0

    assert api.patch(f"{base}/summary", json={"name": "gross_assessed", "value": 1}).status_code == 400
    assert api.post(f"{base}/save").json()["ok"] is True
    stored = api.get(f"/api/claims/{claim_id}").json()["form_data"]["assessment"]
    assert stored["spare"]["new_spares"][0]["assessed_others_metal"] == 1000.0


def test_report_flushes_pending_edits(api, claim_id):
    api.patch(f"/api/claims/{claim_id}/draft/fields/vessel_name", json={"value": "MV Aurora"})

    report = api.get(f"/api/claims/{claim_id}/report").json()

    subheaders = [c["props"]["text"] for c in report["components"] if c["type"] == "subheader"]
    assert subheaders == ["Overview", "Section 4 - Report Section"]
    assert report["company"] == "Marine Cargo"


def test_report_layout_visibility(api, claim_id):
    layout = api.post(
        f"/api/claims/{claim_id}/report/layout/visibility",
        json={"section_id": "overview", "visible": False},
    ).json()["sections"]
    assert layout[0]["is_visible"] is False

    report = api.get(f"/api/claims/{claim_id}/report").json()
    assert len(report["components"]) == 1

    reset = api.post(f"/api/claims/{claim_id}/report/layout/reset").json()["sections"]
    assert reset[0]["is_visible"] is True


def test_report_download(api, claim_id):
    api.desk.renderer.render_pdf.return_value = b"%PDF-1.7"

    resp = api.get(f"/api/claims/{claim_id}/report/download")

    assert resp.status_code == 200
    assert resp.content == b"%PDF-1.7"
    assert resp.headers["content-type"] == "application/pdf"
    assert "Claim_Report_-_CLM" in resp.headers["content-disposition"]
    sent = api.desk.renderer.render_pdf.call_args.args[0]
    assert sent["reportName"].startswith("Claim Report - CLM")


def test_report_preview(api, claim_id):
    api.desk.renderer.render_html.return_value = "<html>preview</html>"

    resp = api.get(f"/api/claims/{claim_id}/report/preview")

    assert resp.text == "<html>preview</html>"


def test_render_failure_is_502(api, claim_id):
    api.desk.renderer.render_pdf.side_effect = ExternalServiceError.from_response(
        ErrorType.RENDER_SERVICE_FAILED, "Report rendering", 500, "template crashed"
    )

    resp = api.get(f"/api/claims/{claim_id}/report/download")

    assert resp.status_code == 502
    assert resp.json()["notification"]["message"] == "Report rendering failed: template crashed"


def test_section_image_upload(api, claim_id):
    api.desk.image_uploads.upload.return_value = "https://img.example.com/a.png"
    url = f"/api/claims/{claim_id}/draft/sections/section1/images"

    bad_slot = api.post(f"{url}/6", files={"file": ("a.png", _png_bytes(), "image/png")})
    not_image = api.post(f"{url}/0", files={"file": ("a.png", b"garbage", "image/png")})
    uploaded = api.post(f"{url}/1", files={"file": ("a.png", _png_bytes(), "image/png")})

    assert bad_slot.status_code == 400
    assert not_image.status_code == 400
    assert uploaded.json()["images"] == ["", "https://img.example.com/a.png", "", "", "", ""]
    api.desk.image_uploads.upload.assert_called_once()
    cleared = api.delete(f"{url}/1").json()
    assert cleared["images"] == [""] * 6


def test_document_upload_and_selection(api, claim_id):
    resp = api.post(
        f"/api/claims/{claim_id}/documents",
        files={"file": ("survey.pdf", b"%PDF-1.7", "application/pdf")},
        data={"field_label": "Survey Report"},
        headers={"X-User-Id": "user-1"},
    )
    assert resp.status_code == 201
    document = resp.json()["document"]
    assert document["uploaded_by"] == "user-1"
    assert document["file_size"] == 8

    api.patch(f"/api/documents/{document['id']}", json={"is_selected": False})

    listed = api.get(f"/api/claims/{claim_id}/documents").json()
    assert listed[0]["is_selected"] is False


def test_empty_document_rejected(api, claim_id):
    resp = api.post(f"/api/claims/{claim_id}/documents", files={"file": ("empty.pdf", b"", "application/pdf")})

    assert resp.status_code == 400


def test_deleting_claim_removes_its_uploads(api, claim_id):
    resp = api.post(
        f"/api/claims/{claim_id}/documents",
        files={"file": ("survey.pdf", b"%PDF-1.7", "application/pdf")},
    )
    stored_path = resp.json()["document"]["file_path"]
    assert api.get(f"/api/documents/{resp.json()['document']['id']}/content").content == b"%PDF-1.7"

    deleted = api.delete(f"/api/claims/{claim_id}", headers=ADMIN)

    assert deleted.json() == {"status": "ok", "uploads_removed": True}
    assert not (api.desk.files.uploads_dir / claim_id).exists()
    assert api.desk.store.select("claim_documents", claim_id=claim_id) == []
    assert stored_path.startswith(str(api.desk.files.uploads_dir))


def test_document_content_download_and_redirect(api, claim_id):
    document = api.desk.store.add_document({
        "claim_id": claim_id,
        "file_name": "hosted.pdf",
        "file_path": "https://files.example.com/hosted.pdf",
        "file_type": "application/pdf",
        "file_size": 10,
        "uploaded_by": "user-1",
    })
    missing = api.desk.store.add_document({
        "claim_id": claim_id,
        "file_name": "gone.pdf",
        "file_path": str(api.desk.files.uploads_dir / claim_id / "documents" / "gone.pdf"),
        "file_type": "application/pdf",
        "file_size": 10,
        "uploaded_by": "user-1",
    })

    redirected = api.get(f"/api/documents/{document.id}/content", follow_redirects=False)

    assert redirected.status_code == 307
    assert redirected.headers["location"] == "https://files.example.com/hosted.pdf"
    assert api.get(f"/api/documents/{missing.id}/content").status_code == 404


def test_stale_expected_version_is_409(api, claim_id):
    version = api.get(f"/api/claims/{claim_id}/draft").json()["version"]
    # Another writer saves after this draft was read
    api.desk.store.merge_form_data(claim_id, {"consignee_name": "Acme Imports"})

    stale = api.post(
        f"/api/claims/{claim_id}/draft/commit",
        json={"values": {"vessel_name": "MV Aurora"}, "expected_version": version},
    )
    assert stale.status_code == 409
    assert "vessel_name" not in api.get(f"/api/claims/{claim_id}").json()["form_data"]

    fresh_version = api.get(f"/api/claims/{claim_id}").json()["version"]
    saved = api.post(
        f"/api/claims/{claim_id}/draft/commit",
        json={"values": {"vessel_name": "MV Aurora"}, "expected_version": fresh_version},
    )
    assert saved.status_code == 200
    assert saved.json()["version"] == fresh_version + 1


def test_opening_a_draft_does_not_write(api, claim_id):
    before = api.get(f"/api/claims/{claim_id}").json()

    api.get(f"/api/claims/{claim_id}/draft")
    api.get(f"/api/claims/{claim_id}/sections")
    api.post(f"/api/claims/{claim_id}/draft/close")

    after = api.get(f"/api/claims/{claim_id}").json()
    assert after["version"] == before["version"]
    assert after["form_data"] == before["form_data"]


def test_fee_bill_api(api, claim_id):
    api.patch(f"/api/claims/{claim_id}/draft/fields/insured_name", json={"value": "Acme Imports"})

    initial = api.get(f"/api/claims/{claim_id}/fee-bill").json()["fee_bill"]
    assert initial["totals"]["total_amount"] == 5329.6
    assert initial["policy_info"]["insured_name"] == "Acme Imports"
    assert initial["policy_info"]["policy_type"] == "Marine Cargo"

    updated = api.patch(
        f"/api/claims/{claim_id}/fee-bill",
        json={"values": {"travelling_km": "100", "other_expenses": 500}},
    ).json()["fee_bill"]
    assert updated["totals"]["travelling_amount"] == 1530.7
    assert updated["totals"]["total_amount"] == 7360.3
    assert updated["totals"]["amount_in_words"] == "Seven Thousand Three Hundred Sixty"

    rejected = api.patch(f"/api/claims/{claim_id}/fee-bill", json={"values": {"other_expenses": "lots"}})
    assert rejected.status_code == 400

    saved = api.post(f"/api/claims/{claim_id}/fee-bill/save")
    assert saved.json()["ok"] is True
    assert _messages(saved) == ["Fee bill details saved!"]
    stored = api.get(f"/api/claims/{claim_id}").json()["form_data"]["fee_bill"]
    assert stored["inputs"]["other_expenses"] == 500
    assert stored["totals"]["total_amount"] == 7360.3

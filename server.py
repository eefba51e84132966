"""FastAPI service for the claims desk."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import asdict, dataclass
from typing import Any, ContextManager, Dict, Optional

from fastapi import Body, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from claimdesk import __version__
from claimdesk.forms.registry import default_section_fields, get_policy_detail_descriptors
from claimdesk.forms.values import IMAGE_SLOTS
from claimdesk.models.claim import Role
from claimdesk.models.fields import FieldKind
from claimdesk.reports.assembler import build_report
from claimdesk.reports.render_client import RenderServiceClient, UploadClient
from claimdesk.session import ClaimSession, close_all_sessions, close_session, editing
from claimdesk.storage.claim_store import ClaimStore
from claimdesk.storage.file_storage import DOCUMENTS_CATEGORY, create_file_storage, validate_image
from claimdesk.utils.config import Config
from claimdesk.utils.errors import (
    ClaimsDeskError,
    ConcurrencyConflict,
    ErrorType,
    ExternalServiceError,
    PermissionDenied,
    ReadError,
    ValidationError,
)
from claimdesk.utils.logging import setup_logging

logger = logging.getLogger(__name__)

APP_TITLE = "Claims Desk"
MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", "10"))
UPLOAD_LIMIT_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024


@dataclass
class ServiceState:
    """Long-lived collaborators shared by every request."""

    config: Config
    store: ClaimStore
    files: Any
    renderer: RenderServiceClient
    image_uploads: UploadClient
    document_uploads: Optional[UploadClient] = None


app = FastAPI(title=APP_TITLE, version=__version__)

_state: Optional[ServiceState] = None
_state_lock = threading.Lock()


def configure(config: Config, **overrides: Any) -> ServiceState:
    """
    Build the service collaborators from configuration.

    Keyword overrides (store, files, renderer, image_uploads,
    document_uploads) replace the configured defaults.
    """
    global _state
    services = config.services
    document_uploads = None
    if services.document_upload_url:
        document_uploads = UploadClient(
            services.document_upload_url,
            service="Document upload",
            error_type=ErrorType.DOCUMENT_UPLOAD_FAILED,
            timeout=services.timeout,
        )
    state = ServiceState(
        config=config,
        store=overrides.get("store") or ClaimStore(config.storage.data_dir),
        files=overrides.get("files") or create_file_storage(config.storage),
        renderer=overrides.get("renderer") or RenderServiceClient(services.render_base_url, services.timeout),
        image_uploads=overrides.get("image_uploads") or UploadClient(
            services.image_upload_url, timeout=services.timeout
        ),
        document_uploads=overrides.get("document_uploads", document_uploads),
    )
    with _state_lock:
        _state = state
    return state


def _get_state() -> ServiceState:
    with _state_lock:
        state = _state
    if state is not None:
        return state

    config = Config.load()
    setup_logging(config.logging.level, config.logging.format, config.logging.file or None)
    for problem in config.validate():
        logger.warning(f"Configuration: {problem}")
    return configure(config)


def _editing(claim_id: str) -> ContextManager[ClaimSession]:
    """Open the claim's session and hold its lock for the with-block."""
    state = _get_state()
    return editing(state.store, claim_id, state.config.autosave)


def _require_admin(user_id: Optional[str], action: str) -> None:
    if _get_state().store.get_role(user_id) is not Role.ADMIN:
        logger.warning(f"User {user_id or '<anonymous>'} denied: {action}")
        raise PermissionDenied.admin_required(user_id, action)


def _draft_payload(session: ClaimSession, **extra: Any) -> JSONResponse:
    payload = session.to_dict()
    payload.update(extra)
    return JSONResponse(jsonable_encoder(payload))


def _notices_payload(session: ClaimSession, ok: bool, **extra: Any) -> JSONResponse:
    payload = {"ok": ok, "notices": [n.to_dict() for n in session.values.drain_notices()]}
    payload.update(extra)
    return JSONResponse(jsonable_encoder(payload))


def _status_for(error: ClaimsDeskError) -> int:
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, PermissionDenied):
        return 403
    if isinstance(error, ConcurrencyConflict):
        return 409
    if isinstance(error, ReadError):
        return 404 if error.context.error_type is ErrorType.RECORD_NOT_FOUND else 500
    if isinstance(error, ExternalServiceError):
        return 502
    return 500


@app.exception_handler(ClaimsDeskError)
async def claims_desk_error_handler(request: Request, exc: ClaimsDeskError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({
            "notification": {"level": "error", "message": exc.context.message},
            "error": exc.to_dict(),
        }),
    )


@app.on_event("shutdown")
def shutdown() -> None:
    close_all_sessions()


async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    if not content:
        raise ValidationError.invalid(f"{file.filename} is empty.", field="file")
    if len(content) > UPLOAD_LIMIT_BYTES:
        raise ValidationError.invalid(
            f"{file.filename} exceeds the {MAX_FILE_SIZE_MB} MB limit.", field="file"
        )
    return content


@app.get("/healthz")
async def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


# Policy types


@app.get("/api/policy-types")
async def list_policy_types() -> JSONResponse:
    types = _get_state().store.list_policy_types()
    return JSONResponse(jsonable_encoder([asdict(t) for t in types]))


@app.get("/api/policy-types/{policy_type_id}")
async def get_policy_type(policy_type_id: str) -> JSONResponse:
    return JSONResponse(jsonable_encoder(asdict(_get_state().store.get_policy_type(policy_type_id))))


@app.post("/api/policy-types", status_code=201)
async def create_policy_type(
    payload: Dict[str, Any] = Body(...),
    x_user_id: Optional[str] = Header(default=None),
) -> JSONResponse:
    _require_admin(x_user_id, "create policy types")
    policy_type = _get_state().store.create_policy_type(
        name=payload.get("name") or "",
        description=payload.get("description"),
        parent_id=payload.get("parent_id"),
        fields=payload.get("fields"),
    )
    return JSONResponse(status_code=201, content=jsonable_encoder(asdict(policy_type)))


@app.patch("/api/policy-types/{policy_type_id}")
async def update_policy_type(
    policy_type_id: str,
    payload: Dict[str, Any] = Body(...),
    x_user_id: Optional[str] = Header(default=None),
) -> JSONResponse:
    _require_admin(x_user_id, "edit policy types")
    policy_type = _get_state().store.update_policy_type(policy_type_id, payload)
    return JSONResponse(jsonable_encoder(asdict(policy_type)))


@app.delete("/api/policy-types/{policy_type_id}")
async def delete_policy_type(
    policy_type_id: str,
    x_user_id: Optional[str] = Header(default=None),
) -> JSONResponse:
    _require_admin(x_user_id, "delete policy types")
    if not _get_state().store.delete_policy_type(policy_type_id):
        raise ReadError.not_found("policy_types", policy_type_id)
    return JSONResponse({"status": "ok"})


@app.get("/api/policy-types/{policy_type_id}/fields")
async def policy_type_fields(policy_type_id: str) -> JSONResponse:
    policy_type = _get_state().store.get_policy_type(policy_type_id)
    sections = default_section_fields(policy_type.name)
    return JSONResponse(jsonable_encoder({
        "policy_type": policy_type.name,
        "sections": {sid: [d.to_dict() for d in fields] for sid, fields in sections.items()},
        "policy_details": [d.to_dict() for d in get_policy_detail_descriptors()],
    }))


@app.get("/api/policy-types/{policy_type_id}/section-templates")
async def policy_type_templates(policy_type_id: str) -> JSONResponse:
    templates = _get_state().store.list_section_templates(policy_type_id)
    return JSONResponse(jsonable_encoder([asdict(t) for t in templates]))


# Claims


@app.get("/api/claims")
async def list_claims(status: Optional[str] = None) -> JSONResponse:
    claims = _get_state().store.list_claims(status)
    return JSONResponse(jsonable_encoder([c.to_dict() for c in claims]))


@app.post("/api/claims", status_code=201)
async def create_claim(
    payload: Dict[str, Any] = Body(...),
    x_user_id: Optional[str] = Header(default=None),
) -> JSONResponse:
    if not payload.get("policy_type_id"):
        raise ValidationError.required("policy_type_id", "Policy type")
    claim = _get_state().store.create_claim(
        policy_type_id=payload["policy_type_id"],
        title=payload.get("title") or "",
        user_id=x_user_id,
        description=payload.get("description"),
        claim_amount=payload.get("claim_amount"),
        form_data=payload.get("form_data"),
    )
    return JSONResponse(status_code=201, content=jsonable_encoder({
        "claim": claim.to_dict(),
        "notification": {"level": "success", "message": "Claim created successfully!"},
    }))


@app.get("/api/claims/{claim_id}")
async def get_claim(claim_id: str) -> JSONResponse:
    return JSONResponse(jsonable_encoder(_get_state().store.get_claim(claim_id).to_dict()))


@app.patch("/api/claims/{claim_id}")
async def update_claim(claim_id: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    claim = _get_state().store.update_claim(claim_id, payload)
    return JSONResponse(jsonable_encoder({
        "claim": claim.to_dict(),
        "notification": {"level": "success", "message": "Claim updated successfully!"},
    }))


@app.delete("/api/claims/{claim_id}")
def delete_claim(claim_id: str, x_user_id: Optional[str] = Header(default=None)) -> JSONResponse:
    _require_admin(x_user_id, "delete claims")
    state = _get_state()
    close_session(claim_id)
    if not state.store.delete_claim(claim_id):
        raise ReadError.not_found("claims", claim_id)
    try:
        uploads_removed = state.files.delete_claim_uploads(claim_id)
    except (OSError, ExternalServiceError) as e:
        # The record is gone either way; leftover files are only logged
        logger.error(f"Claim {claim_id} deleted but its uploads were not: {str(e)}")
        uploads_removed = False
    return JSONResponse({"status": "ok", "uploads_removed": uploads_removed})


# Editing session
#
# Session routes are sync so they run in the threadpool; each holds the
# claim's session lock for the whole request.


@app.get("/api/claims/{claim_id}/draft")
def load_draft(claim_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        return _draft_payload(session)


@app.patch("/api/claims/{claim_id}/draft/fields/{name}")
def patch_field(claim_id: str, name: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with _editing(claim_id) as session:
        pending = session.values.patch_field(name, payload.get("value"))
        return _notices_payload(session, True, pending=pending)


@app.post("/api/claims/{claim_id}/draft/fields/{name}/commit")
def commit_field(claim_id: str, name: str) -> JSONResponse:
    with _editing(claim_id) as session:
        return _notices_payload(session, session.values.commit_field(name))


@app.post("/api/claims/{claim_id}/draft/commit")
def commit_all(claim_id: str, payload: Dict[str, Any] = Body(default={})) -> JSONResponse:
    """
    Save the whole form.

    When the body carries ``expected_version`` (the draft's ``version``),
    the save is refused with 409 if the claim was written since.
    """
    expected_version = payload.get("expected_version")
    if expected_version is not None and (isinstance(expected_version, bool) or not isinstance(expected_version, int)):
        raise ValidationError.invalid("expected_version must be an integer", field="expected_version")
    with _editing(claim_id) as session:
        saved = session.values.commit_all(payload.get("values"), expected_version=expected_version)
        if saved:
            session.values.notify("success", "Additional information updated successfully!")
        return _draft_payload(session, ok=saved)


@app.post("/api/claims/{claim_id}/draft/fields/{name}/hide")
def hide_field(claim_id: str, name: str) -> JSONResponse:
    with _editing(claim_id) as session:
        return _notices_payload(session, session.values.hide_field(name))


@app.put("/api/claims/{claim_id}/draft/fields/{name}/label")
def relabel_field(claim_id: str, name: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with _editing(claim_id) as session:
        return _notices_payload(session, session.values.relabel_field(name, payload.get("label") or ""))


@app.post("/api/claims/{claim_id}/draft/custom-fields")
def add_custom_field(claim_id: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with _editing(claim_id) as session:
        section_id = payload.get("section_id") or ""
        if section_id:
            session.organizer.get(section_id)
        descriptor = session.values.add_custom_field(
            section_id,
            label=payload.get("label") or "New Field",
            kind=FieldKind.parse(payload.get("type")),
            name=payload.get("name"),
            options=payload.get("options"),
        )
        return _notices_payload(
            session,
            descriptor is not None,
            field=descriptor.to_dict() if descriptor else None,
        )


@app.patch("/api/claims/{claim_id}/draft/custom-fields/{name}")
def update_custom_field(claim_id: str, name: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with _editing(claim_id) as session:
        updated = session.values.update_custom_field(
            name,
            label=payload.get("label"),
            kind=FieldKind.parse(payload["type"]) if payload.get("type") else None,
            options=payload.get("options"),
        )
        if updated:
            updated = session.values.commit_field(name)
        return _notices_payload(session, updated)


@app.delete("/api/claims/{claim_id}/draft/custom-fields/{name}")
def remove_custom_field(claim_id: str, name: str) -> JSONResponse:
    with _editing(claim_id) as session:
        return _notices_payload(session, session.values.remove_custom_field(name))


@app.post("/api/claims/{claim_id}/draft/sections/{section_id}/images/{slot}")
async def upload_section_image(
    claim_id: str,
    section_id: str,
    slot: int,
    file: UploadFile = File(...),
) -> JSONResponse:
    if not 0 <= slot < IMAGE_SLOTS:
        raise ValidationError.invalid(f"Image slot must be between 0 and {IMAGE_SLOTS - 1}", field="slot")
    with _editing(claim_id) as session:
        session.organizer.get(section_id)
    content = await _read_upload(file)
    validate_image(content)
    url = _get_state().image_uploads.upload(
        file.filename or "image", content, file.content_type or "application/octet-stream"
    )
    with _editing(claim_id) as session:
        saved = session.values.set_section_image(section_id, slot, url)
        return _notices_payload(session, saved, url=url, images=session.values.images_for(section_id))


@app.delete("/api/claims/{claim_id}/draft/sections/{section_id}/images/{slot}")
def remove_section_image(claim_id: str, section_id: str, slot: int) -> JSONResponse:
    with _editing(claim_id) as session:
        saved = session.values.clear_section_image(section_id, slot)
        return _notices_payload(session, saved, images=session.values.images_for(section_id))


@app.post("/api/claims/{claim_id}/draft/close")
def close_draft(claim_id: str) -> JSONResponse:
    return JSONResponse({"status": "ok", "closed": close_session(claim_id)})


# Sections


@app.get("/api/claims/{claim_id}/sections")
def list_sections(claim_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        return JSONResponse(jsonable_encoder(session.sections_payload()))


@app.post("/api/claims/{claim_id}/sections")
def create_section(claim_id: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with _editing(claim_id) as session:
        section = session.organizer.create_section(payload.get("name") or "", payload.get("color_tag"))
        return _notices_payload(session, True, section=section.to_dict())


@app.post("/api/claims/{claim_id}/sections/from-template")
def create_section_from_template(claim_id: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    if not payload.get("template_id"):
        raise ValidationError.required("template_id", "Template")
    template = _get_state().store.get_section_template(payload["template_id"])
    with _editing(claim_id) as session:
        section = session.organizer.create_section_from_template(template, payload.get("name"))
        return _notices_payload(session, True, section=section.to_dict())


@app.patch("/api/claims/{claim_id}/sections/{section_id}")
def update_section(claim_id: str, section_id: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with _editing(claim_id) as session:
        if "name" in payload:
            session.organizer.rename_section(section_id, payload["name"])
        if "color_tag" in payload:
            session.organizer.set_color(section_id, payload["color_tag"])
        return _notices_payload(session, True, section=session.organizer.get(section_id).to_dict())


@app.delete("/api/claims/{claim_id}/sections/{section_id}")
def remove_section(claim_id: str, section_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        session.organizer.remove_section(section_id)
        return _notices_payload(session, True)


@app.post("/api/claims/{claim_id}/sections/reorder")
def reorder_sections(claim_id: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with _editing(claim_id) as session:
        if payload.get("active_id"):
            session.organizer.move_section(payload["active_id"], payload.get("over_id") or "")
        else:
            session.organizer.reorder(list(payload.get("section_ids") or []))
        return JSONResponse(jsonable_encoder(session.sections_payload()))


@app.post("/api/claims/{claim_id}/sections/{section_id}/toggle")
def toggle_section(claim_id: str, section_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        return JSONResponse({"is_open": session.organizer.toggle_open(section_id)})


@app.post("/api/claims/{claim_id}/sections/{section_id}/fields")
def add_section_field(claim_id: str, section_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        descriptor = session.organizer.add_field_to_section(section_id)
        return _notices_payload(
            session,
            descriptor is not None,
            field=descriptor.to_dict() if descriptor else None,
        )


@app.post("/api/claims/{claim_id}/sections/{section_id}/tables")
def add_table(claim_id: str, section_id: str, payload: Dict[str, Any] = Body(default={})) -> JSONResponse:
    with _editing(claim_id) as session:
        table = session.organizer.add_table_to_section(
            section_id,
            rows=int(payload.get("rows", 5)),
            cols=int(payload.get("cols", 5)),
            name=payload.get("name"),
        )
        return _notices_payload(session, True, table=table.to_dict())


@app.patch("/api/claims/{claim_id}/sections/{section_id}/tables/{table_id}")
def update_table(
    claim_id: str,
    section_id: str,
    table_id: str,
    payload: Dict[str, Any] = Body(...),
) -> JSONResponse:
    """Apply table edits: name, cells [{row, col, value}], row/column add and remove."""
    with _editing(claim_id) as session:
        organizer = session.organizer
        if "name" in payload:
            organizer.rename_table(section_id, table_id, payload["name"])
        for cell in payload.get("cells") or []:
            organizer.update_table_cell(
                section_id, table_id, int(cell["row"]), int(cell["col"]), cell.get("value", "")
            )
        if payload.get("add_row"):
            organizer.add_table_row(section_id, table_id)
        if payload.get("remove_row") is not None:
            organizer.remove_table_row(section_id, table_id, int(payload["remove_row"]))
        if payload.get("add_column"):
            organizer.add_table_column(section_id, table_id)
        if payload.get("remove_column") is not None:
            organizer.remove_table_column(section_id, table_id, int(payload["remove_column"]))
        return JSONResponse(jsonable_encoder(organizer.get_table(section_id, table_id).to_dict()))


@app.delete("/api/claims/{claim_id}/sections/{section_id}/tables/{table_id}")
def delete_table(claim_id: str, section_id: str, table_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        session.organizer.delete_table(section_id, table_id)
        return _notices_payload(session, True)


@app.post("/api/claims/{claim_id}/sections/save")
def save_sections(claim_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        return _notices_payload(session, session.organizer.save())


# Assessment


def _assessment_payload(session: ClaimSession, ok: bool = True) -> JSONResponse:
    return _notices_payload(session, ok, assessment=session.worksheet.to_dict())


@app.get("/api/claims/{claim_id}/assessment")
def get_assessment(claim_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        return _assessment_payload(session)


@app.patch("/api/claims/{claim_id}/assessment/header")
def set_assessment_header(claim_id: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with _editing(claim_id) as session:
        session.worksheet.set_header_field(payload.get("name") or "", payload.get("value"))
        return _assessment_payload(session)


@app.post("/api/claims/{claim_id}/assessment/rows/{collection}")
def add_assessment_row(claim_id: str, collection: str) -> JSONResponse:
    with _editing(claim_id) as session:
        index = session.worksheet.add_row(collection)
        return _notices_payload(session, True, index=index, assessment=session.worksheet.to_dict())


@app.delete("/api/claims/{claim_id}/assessment/rows/{collection}/{index}")
def remove_assessment_row(claim_id: str, collection: str, index: int) -> JSONResponse:
    with _editing(claim_id) as session:
        session.worksheet.remove_row(collection, index)
        return _assessment_payload(session)


@app.patch("/api/claims/{claim_id}/assessment/rows/{collection}/{index}")
def set_assessment_row_field(
    claim_id: str,
    collection: str,
    index: int,
    payload: Dict[str, Any] = Body(...),
) -> JSONResponse:
    with _editing(claim_id) as session:
        session.worksheet.set_row_field(collection, index, payload.get("field") or "", payload.get("value"))
        return _assessment_payload(session)


@app.patch("/api/claims/{claim_id}/assessment/percents/{table}")
def set_assessment_percent(claim_id: str, table: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with _editing(claim_id) as session:
        session.worksheet.set_percent(table, payload.get("name") or "", payload.get("value"))
        return _assessment_payload(session)


@app.patch("/api/claims/{claim_id}/assessment/summary")
def set_assessment_summary(claim_id: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with _editing(claim_id) as session:
        session.worksheet.set_summary_override(payload.get("name") or "", payload.get("value"))
        return _assessment_payload(session)


@app.post("/api/claims/{claim_id}/assessment/save")
def save_assessment(claim_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        session.worksheet.flush()
        return _assessment_payload(session, session.worksheet.save())


# Fee bill


def _fee_bill_payload(session: ClaimSession, ok: bool = True) -> JSONResponse:
    return _notices_payload(session, ok, fee_bill=session.fee_bill.to_dict())


@app.get("/api/claims/{claim_id}/fee-bill")
def get_fee_bill(claim_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        return _fee_bill_payload(session)


@app.patch("/api/claims/{claim_id}/fee-bill")
def update_fee_bill(claim_id: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    """Apply input edits given as {"values": {name: value}}; all or nothing."""
    values = payload.get("values")
    if not isinstance(values, dict):
        raise ValidationError.required("values", "Fee bill values")
    with _editing(claim_id) as session:
        session.fee_bill.set_fields(values)
        return _fee_bill_payload(session)


@app.post("/api/claims/{claim_id}/fee-bill/save")
def save_fee_bill(claim_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        return _fee_bill_payload(session, session.fee_bill.save("Fee bill details saved!"))


# Documents


@app.post("/api/claims/{claim_id}/documents", status_code=201)
async def upload_document(
    claim_id: str,
    file: UploadFile = File(...),
    field_label: Optional[str] = Form(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> JSONResponse:
    state = _get_state()
    state.store.get_claim(claim_id)
    content = await _read_upload(file)
    filename = file.filename or "document"
    content_type = file.content_type or "application/octet-stream"

    if state.document_uploads is not None:
        file_path = state.document_uploads.upload(filename, content, content_type)
    else:
        try:
            file_path = state.files.save_upload(claim_id, filename, content, DOCUMENTS_CATEGORY, content_type)
        except IOError as e:
            raise ExternalServiceError.from_response(
                ErrorType.DOCUMENT_UPLOAD_FAILED, "Document storage", None, None, error=e
            ) from e

    document = state.store.add_document({
        "claim_id": claim_id,
        "file_name": filename,
        "file_path": file_path,
        "file_type": content_type,
        "file_size": len(content),
        "uploaded_by": x_user_id or "",
        "field_label": field_label or None,
    })
    return JSONResponse(status_code=201, content=jsonable_encoder({
        "document": asdict(document),
        "notification": {"level": "success", "message": "Document uploaded successfully!"},
    }))


@app.get("/api/claims/{claim_id}/documents")
async def list_documents(claim_id: str) -> JSONResponse:
    documents = _get_state().store.list_documents(claim_id)
    return JSONResponse(jsonable_encoder([asdict(d) for d in documents]))


@app.patch("/api/documents/{document_id}")
async def select_document(document_id: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    document = _get_state().store.set_document_selected(document_id, bool(payload.get("is_selected")))
    return JSONResponse(jsonable_encoder(asdict(document)))


@app.get("/api/documents/{document_id}/content")
def download_document(document_id: str) -> Response:
    """Stream a stored document; documents held by the upload service redirect to their URL."""
    state = _get_state()
    document = state.store.get_document(document_id)
    if document.file_path.startswith(("http://", "https://")):
        return RedirectResponse(document.file_path)
    try:
        content = state.files.load_upload(document.file_path)
    except FileNotFoundError as e:
        logger.warning(f"Document {document_id} has no stored file at {document.file_path}")
        raise ReadError.not_found("uploads", document.file_path) from e
    return Response(
        content=content,
        media_type=document.file_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{document.file_name}"'},
    )


# Report


def _layout_payload(session: ClaimSession) -> JSONResponse:
    return JSONResponse(jsonable_encoder({"sections": session.layout.to_list()}))


def _report(claim_id: str) -> Dict[str, Any]:
    state = _get_state()
    with _editing(claim_id) as session:
        source = session.report_source()
        documents = state.store.list_documents(claim_id)
        return build_report(source, session.layout, documents, state.config.report)


@app.get("/api/claims/{claim_id}/report/layout")
def get_report_layout(claim_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        session.report_source()
        return _layout_payload(session)


@app.post("/api/claims/{claim_id}/report/layout/reorder")
def reorder_report_layout(claim_id: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with _editing(claim_id) as session:
        if payload.get("active_id"):
            session.layout.move_section(payload["active_id"], payload.get("over_id") or "")
        else:
            session.layout.reorder(list(payload.get("section_ids") or []))
        return _layout_payload(session)


@app.post("/api/claims/{claim_id}/report/layout/visibility")
def set_report_visibility(claim_id: str, payload: Dict[str, Any] = Body(...)) -> JSONResponse:
    with _editing(claim_id) as session:
        session.layout.set_visibility(payload.get("section_id") or "", bool(payload.get("visible")))
        return _layout_payload(session)


@app.post("/api/claims/{claim_id}/report/layout/reset")
def reset_report_layout(claim_id: str) -> JSONResponse:
    with _editing(claim_id) as session:
        session.layout.reset(session.report_source())
        return _layout_payload(session)


@app.get("/api/claims/{claim_id}/report")
def report_json(claim_id: str) -> JSONResponse:
    return JSONResponse(jsonable_encoder(_report(claim_id)))


@app.get("/api/claims/{claim_id}/report/preview", response_class=HTMLResponse)
def report_preview(claim_id: str) -> HTMLResponse:
    html = _get_state().renderer.render_html(_report(claim_id))
    return HTMLResponse(html)


@app.get("/api/claims/{claim_id}/report/download")
def report_download(claim_id: str) -> Response:
    report = _report(claim_id)
    pdf = _get_state().renderer.render_pdf(report)
    filename = f"{report['reportName'].replace(' ', '_')}.pdf"
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))

"""Tests for local and S3 upload storage and image validation."""

from io import BytesIO
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from PIL import Image

from claimdesk.storage.file_storage import (
    FileStorage,
    S3FileStorage,
    create_file_storage,
    validate_image,
)
from claimdesk.utils.errors import ExternalServiceError, ValidationError


def _png_bytes(size=(4, 3)):
    buffer = BytesIO()
    Image.new("RGB", size, color="red").save(buffer, format="PNG")
    return buffer.getvalue()


def test_local_save_and_load(tmp_path):
    storage = FileStorage(uploads_dir=str(tmp_path / "uploads"))

    path = storage.save_upload("claim-1", "../../etc/survey report.pdf", b"%PDF")

    assert path.startswith(str(tmp_path / "uploads" / "claim-1" / "documents"))
    assert path.endswith("_survey_report.pdf")
    assert storage.load_upload(path) == b"%PDF"


def test_local_delete_claim_uploads(tmp_path):
    storage = FileStorage(uploads_dir=str(tmp_path / "uploads"))
    storage.save_upload("claim-1", "a.pdf", b"a")
    storage.save_upload("claim-1", "b.png", b"b", category="images")
    kept = storage.save_upload("claim-2", "c.pdf", b"c")

    assert storage.delete_claim_uploads("claim-1")
    assert not (tmp_path / "uploads" / "claim-1").exists()
    assert storage.load_upload(kept) == b"c"
    assert storage.delete_claim_uploads("claim-1") is False


def test_missing_local_upload(tmp_path):
    storage = FileStorage(uploads_dir=str(tmp_path / "uploads"))

    with pytest.raises(FileNotFoundError):
        storage.load_upload(str(tmp_path / "nope.pdf"))


def test_s3_save_uses_prefixed_key():
    client = MagicMock()
    storage = S3FileStorage(bucket="claims-bucket", prefix="/claims/", client=client)

    path = storage.save_upload("claim-1", "survey.pdf", b"%PDF", content_type="application/pdf")

    kwargs = client.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "claims-bucket"
    assert kwargs["Key"].startswith("claims/claim-1/documents/")
    assert kwargs["ContentType"] == "application/pdf"
    assert path == f"s3://claims-bucket/{kwargs['Key']}"


def test_s3_rejection_becomes_service_error():
    client = MagicMock()
    client.put_object.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
    )
    storage = S3FileStorage(bucket="claims-bucket", client=client)

    with pytest.raises(ExternalServiceError) as exc:
        storage.save_upload("claim-1", "survey.pdf", b"%PDF")

    assert "AccessDenied" in exc.value.context.message


def test_s3_load():
    client = MagicMock()
    client.get_object.return_value = {"Body": BytesIO(b"%PDF")}
    storage = S3FileStorage(bucket="claims-bucket", client=client)

    assert storage.load_upload("s3://claims-bucket/claims/claim-1/documents/x.pdf") == b"%PDF"
    client.get_object.assert_called_once_with(Bucket="claims-bucket", Key="claims/claim-1/documents/x.pdf")


def test_backend_selection(tmp_path):
    local = create_file_storage(SimpleNamespace(backend="local", uploads_dir=str(tmp_path / "up")))

    assert isinstance(local, FileStorage)


def test_validate_image():
    info = validate_image(_png_bytes())

    assert info == {"width": 4, "height": 3, "format": "PNG"}
    with pytest.raises(ValidationError):
        validate_image(b"definitely not an image")
    with pytest.raises(ValidationError):
        validate_image(b"")


def _s3_with_pages(*pages):
    client = MagicMock()
    client.get_paginator.return_value.paginate.return_value = list(pages)
    client.delete_objects.return_value = {}
    return client


def test_s3_delete_claim_uploads_removes_every_page():
    client = _s3_with_pages(
        {"Contents": [{"Key": "claims/claim-1/documents/a.pdf"}, {"Key": "claims/claim-1/images/b.png"}]},
        {"Contents": [{"Key": "claims/claim-1/documents/c.pdf"}]},
    )
    storage = S3FileStorage(bucket="claims-bucket", client=client)

    assert storage.delete_claim_uploads("claim-1") is True

    client.get_paginator.assert_called_once_with("list_objects_v2")
    client.get_paginator.return_value.paginate.assert_called_once_with(
        Bucket="claims-bucket", Prefix="claims/claim-1/"
    )
    batches = [c.kwargs["Delete"]["Objects"] for c in client.delete_objects.call_args_list]
    assert batches == [
        [{"Key": "claims/claim-1/documents/a.pdf"}, {"Key": "claims/claim-1/images/b.png"}],
        [{"Key": "claims/claim-1/documents/c.pdf"}],
    ]


def test_s3_delete_without_objects():
    client = _s3_with_pages({"KeyCount": 0})
    storage = S3FileStorage(bucket="claims-bucket", client=client)

    assert storage.delete_claim_uploads("claim-1") is False
    client.delete_objects.assert_not_called()


def test_s3_delete_reports_kept_objects():
    client = _s3_with_pages({"Contents": [{"Key": "claims/claim-1/documents/a.pdf"}]})
    client.delete_objects.return_value = {
        "Errors": [{"Key": "claims/claim-1/documents/a.pdf", "Code": "AccessDenied"}]
    }
    storage = S3FileStorage(bucket="claims-bucket", client=client)

    with pytest.raises(ExternalServiceError) as exc:
        storage.delete_claim_uploads("claim-1")

    assert "AccessDenied deleting claims/claim-1/documents/a.pdf" in exc.value.context.message


def test_s3_listing_failure_becomes_service_error():
    client = MagicMock()
    client.get_paginator.return_value.paginate.side_effect = ClientError(
        {"Error": {"Code": "NoSuchBucket", "Message": "missing"}}, "ListObjectsV2"
    )
    storage = S3FileStorage(bucket="claims-bucket", client=client)

    with pytest.raises(ExternalServiceError):
        storage.delete_claim_uploads("claim-1")

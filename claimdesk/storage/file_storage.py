"""Object storage for claim documents."""

import logging
import re
import shutil
import uuid
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from ..utils.errors import ErrorType, ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

DOCUMENTS_CATEGORY = "documents"


def _safe_name(filename: str) -> str:
    """Strip directory parts and characters that do not belong in a key."""
    name = Path(filename or "upload").name
    name = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
    return name or "upload"


def validate_image(content: bytes) -> Dict[str, Any]:
    """
    Check that uploaded bytes decode as an image.

    Args:
        content: Raw upload

    Returns:
        Dict with width, height and format

    Raises:
        ValidationError: If the bytes are empty or not a readable image
    """
    if not content:
        raise ValidationError.invalid("Uploaded image is empty", field="file")
    try:
        with Image.open(BytesIO(content)) as image:
            image.verify()
            info = {"width": image.width, "height": image.height, "format": image.format}
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        logger.info(f"Rejected upload that is not an image: {str(e)}")
        raise ValidationError.invalid("Uploaded file is not a valid image", field="file") from e
    return info


class FileStorage:
    """
    Local file storage for claim uploads.

    Layout: ``<uploads_dir>/<claim_id>/<category>/<unique-name>`` where
    category is "documents" unless the caller names another.
    """

    def __init__(self, uploads_dir: str = "data/uploads"):
        """
        Initialize FileStorage.

        Args:
            uploads_dir: Root directory for uploads
        """
        self.uploads_dir = Path(uploads_dir)
        self.uploads_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Initialized FileStorage: uploads_dir={self.uploads_dir}")

    @staticmethod
    def _unique_name(filename: str) -> str:
        return f"{uuid.uuid4().hex[:12]}_{_safe_name(filename)}"

    def save_upload(
        self,
        claim_id: str,
        filename: str,
        content: bytes,
        category: str = DOCUMENTS_CATEGORY,
        content_type: str = "application/octet-stream",
    ) -> str:
        """
        Save an uploaded file for a claim.

        Args:
            claim_id: Owning claim
            filename: Original filename
            content: File content as bytes
            category: Sub-folder under the claim, "documents" by default
            content_type: MIME type (unused locally)

        Returns:
            Storage path of the saved file

        Raises:
            IOError: If file cannot be saved
        """
        claim_dir = self.uploads_dir / claim_id / category
        claim_dir.mkdir(parents=True, exist_ok=True)
        file_path = claim_dir / self._unique_name(filename)

        try:
            with open(file_path, 'wb') as f:
                f.write(content)
        except OSError as e:
            logger.error(f"Failed to save upload {filename}: {str(e)}")
            raise IOError(f"Failed to save upload: {str(e)}") from e

        logger.info(f"Saved upload: {file_path} ({len(content)} bytes)")
        return str(file_path)

    def load_upload(self, path: str) -> bytes:
        """
        Load a previously saved upload.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Upload not found: {file_path}")
        with open(file_path, 'rb') as f:
            return f.read()

    def delete_claim_uploads(self, claim_id: str) -> bool:
        """Delete every upload of a claim; False if there were none."""
        claim_dir = self.uploads_dir / claim_id
        if not claim_dir.exists():
            return False
        shutil.rmtree(claim_dir)
        logger.info(f"Deleted uploads for claim {claim_id}")
        return True


class S3FileStorage:
    """
    S3-backed storage with the same save interface as FileStorage.

    Keys: ``<prefix>/<claim_id>/<category>/<unique-name>``; saved paths are
    returned as ``s3://bucket/key``.
    """

    def __init__(self, bucket: str, prefix: str = "claims", region: Optional[str] = None, client=None):
        """
        Initialize S3FileStorage.

        Args:
            bucket: Target bucket
            prefix: Key prefix for all claim uploads
            region: AWS region for the client
            client: Optional pre-built boto3 S3 client
        """
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.client = client or boto3.client("s3", region_name=region)

        logger.info(f"Initialized S3FileStorage: bucket={bucket}, prefix={self.prefix}")

    def _key(self, claim_id: str, category: str, filename: str) -> str:
        parts = [self.prefix, claim_id, category, f"{uuid.uuid4().hex[:12]}_{_safe_name(filename)}"]
        return "/".join(p for p in parts if p)

    def save_upload(
        self,
        claim_id: str,
        filename: str,
        content: bytes,
        category: str = DOCUMENTS_CATEGORY,
        content_type: str = "application/octet-stream",
    ) -> str:
        """
        Upload bytes to S3.

        Raises:
            ExternalServiceError: If S3 rejects the upload
        """
        key = self._key(claim_id, category, filename)
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=content, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to upload {filename} to s3://{self.bucket}/{key}: {str(e)}")
            raise ExternalServiceError.from_response(
                ErrorType.DOCUMENT_UPLOAD_FAILED, "Document storage", None, None, error=e
            ) from e

        logger.info(f"Saved upload: s3://{self.bucket}/{key} ({len(content)} bytes)")
        return f"s3://{self.bucket}/{key}"

    def load_upload(self, path: str) -> bytes:
        key = path.split(f"s3://{self.bucket}/", 1)[-1]
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise FileNotFoundError(f"Upload not found: {path}") from e
        return response["Body"].read()

    def delete_claim_uploads(self, claim_id: str) -> bool:
        """
        Delete every object under the claim's prefix; False if there were none.

        Raises:
            ExternalServiceError: If S3 refuses the listing or the deletion
        """
        claim_prefix = "/".join(p for p in (self.prefix, claim_id) if p) + "/"
        deleted = 0
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=claim_prefix):
                keys = [{"Key": obj["Key"]} for obj in page.get("Contents") or []]
                if not keys:
                    continue
                # list_objects_v2 pages hold at most 1000 keys, the delete_objects limit
                response = self.client.delete_objects(
                    Bucket=self.bucket, Delete={"Objects": keys, "Quiet": True}
                )
                errors = response.get("Errors") or []
                if errors:
                    first = errors[0]
                    logger.error(f"S3 kept {len(errors)} objects of claim {claim_id}: {first}")
                    raise ExternalServiceError.from_response(
                        ErrorType.DOCUMENT_UPLOAD_FAILED,
                        "Document storage",
                        None,
                        f"{first.get('Code', 'DeleteFailed')} deleting {first.get('Key', '')}",
                    )
                deleted += len(keys)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to delete uploads under s3://{self.bucket}/{claim_prefix}: {str(e)}")
            raise ExternalServiceError.from_response(
                ErrorType.DOCUMENT_UPLOAD_FAILED, "Document storage", None, None, error=e
            ) from e

        if deleted:
            logger.info(f"Deleted {deleted} uploads for claim {claim_id} from s3://{self.bucket}")
        return deleted > 0


def create_file_storage(storage_config) -> Any:
    """Build the storage backend named by ``storage.backend``."""
    if storage_config.backend == "s3":
        return S3FileStorage(
            bucket=storage_config.s3_bucket,
            prefix=storage_config.s3_prefix,
            region=storage_config.s3_region,
        )
    return FileStorage(uploads_dir=storage_config.uploads_dir)

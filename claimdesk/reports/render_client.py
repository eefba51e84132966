"""HTTP clients for the report-rendering and upload services."""

import logging
from typing import Any, Dict, Optional

import requests

from ..utils.errors import ErrorType, ExternalServiceError

logger = logging.getLogger(__name__)


class RenderServiceClient:
    """
    Client for the external report renderer.

    The renderer accepts the assembled report document and answers with
    either a PDF (``/render.pdf``) or an HTML preview (``/render.html``).
    No timeout is applied unless one is configured.
    """

    SERVICE_NAME = "Report rendering"

    def __init__(self, base_url: str, timeout: Optional[float] = None):
        """
        Initialize RenderServiceClient.

        Args:
            base_url: Renderer root URL, without trailing slash
            timeout: Optional request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _post(self, path: str, report: Dict[str, Any]) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            resp = requests.post(url, json=report, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Render request to {url} failed: {str(e)}")
            raise ExternalServiceError.from_response(
                ErrorType.RENDER_SERVICE_FAILED, self.SERVICE_NAME, None, None, error=e
            ) from e

        if resp.status_code >= 400:
            logger.error(f"Renderer returned {resp.status_code} for {path}: {resp.text[:200]}")
            raise ExternalServiceError.from_response(
                ErrorType.RENDER_SERVICE_FAILED, self.SERVICE_NAME, resp.status_code, resp.text
            )
        return resp

    def render_pdf(self, report: Dict[str, Any]) -> bytes:
        """Render the report to PDF bytes."""
        resp = self._post("/render.pdf", report)
        logger.info(f"Rendered PDF for {report.get('reportName')} ({len(resp.content)} bytes)")
        return resp.content

    def render_html(self, report: Dict[str, Any]) -> str:
        """Render the report to an HTML preview."""
        resp = self._post("/render.html", report)
        logger.info(f"Rendered HTML preview for {report.get('reportName')}")
        return resp.text


class UploadClient:
    """
    Client for a multipart upload endpoint answering ``{"url": ...}``.

    Used for section images and, when configured, supporting documents.
    """

    def __init__(
        self,
        url: str,
        service: str = "Image upload",
        error_type: ErrorType = ErrorType.IMAGE_UPLOAD_FAILED,
        timeout: Optional[float] = None,
    ):
        self.url = url
        self.service = service
        self.error_type = error_type
        self.timeout = timeout

    def upload(self, filename: str, content: bytes, content_type: str) -> str:
        """
        Upload one file and return its public URL.

        Raises:
            ExternalServiceError: On transport failure, an error status, or a
                response without a URL
        """
        files = {"file": (filename, content, content_type)}
        try:
            resp = requests.post(self.url, files=files, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"{self.service} of {filename} failed: {str(e)}")
            raise ExternalServiceError.from_response(
                self.error_type, self.service, None, None, error=e
            ) from e

        if resp.status_code >= 400:
            logger.error(f"{self.service} returned {resp.status_code} for {filename}")
            raise ExternalServiceError.from_response(
                self.error_type, self.service, resp.status_code, resp.text
            )

        try:
            url = resp.json().get("url")
        except ValueError as e:
            raise ExternalServiceError.from_response(
                self.error_type, self.service, resp.status_code, "Response was not JSON", error=e
            ) from e
        if not url:
            raise ExternalServiceError.from_response(
                self.error_type, self.service, resp.status_code, "Response did not include a url"
            )

        logger.info(f"Uploaded {filename} ({len(content)} bytes) to {url}")
        return url

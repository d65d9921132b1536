"""
Storage layer - one-shot upload of a report and its photo to a remote record store.

The endpoint is any URL accepting a JSON POST (e.g. a spreadsheet/drive
script). The public link is read from the reply; memoization per report
lives in the delivery orchestrator, not here.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from fieldreport.models import Report, UploadFailedError
from fieldreport.config import (
    UPLOAD_LINK_FIELDS,
    UPLOAD_LINK_PLACEHOLDER,
    UPLOAD_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class ReportUploader:
    """POSTs a report to an upload endpoint and returns the photo link."""

    def __init__(
        self,
        timeout: float = UPLOAD_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.transport = transport

    async def upload(self, url: str, report: Report) -> str:
        """
        Uploads the photo and report fields.

        Raises:
            UploadFailedError: transport error or non-2xx reply.
        """
        payload = build_upload_payload(report)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self.transport,
            ) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise UploadFailedError(f"Upload failed: {e}") from e

        link = extract_link(response.text)
        logger.info("Uploaded %s → %s", payload["filename"], link)
        return link


def build_upload_payload(report: Report) -> dict[str, Any]:
    """Request body: base64 photo, file metadata, and the report fields."""
    return {
        "image": report.image.base64_payload,
        "mimeType": report.image.media_type,
        "filename": f"Laporan_{report.file_stamp}.jpg",
        "report": {
            "completionPercentage": report.completion_percentage,
            "summary": report.summary,
            "details": report.details,
            "recommendations": report.recommendation,
            "timestamp": report.timestamp.isoformat(),
            "location": report.location,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
        },
    }


def extract_link(body: str) -> str:
    """First recognised link field of a JSON reply, else a placeholder."""
    try:
        data = json.loads(body)
    except ValueError:
        logger.debug("Upload reply is not JSON, using placeholder link")
        return UPLOAD_LINK_PLACEHOLDER

    if isinstance(data, dict):
        for field in UPLOAD_LINK_FIELDS:
            value = data.get(field)
            if isinstance(value, str) and value:
                return value
    return UPLOAD_LINK_PLACEHOLDER

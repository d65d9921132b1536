"""
Analysis gateway - oracle call and verdict normalization.

The oracle screens the photo for authenticity and, if it is a genuine
field photo, estimates progress and writes the report text. Its raw JSON
reply is normalized into the Accepted / Rejected verdict union here.
Failures are never retried automatically; the user retries explicitly.
"""

import json
import logging
from typing import Any, Protocol

from google import genai
from google.genai import types
from pydantic import ValidationError as PydanticValidationError

from fieldreport.models import (
    Accepted,
    AnalysisVerdict,
    AnalysisUnreachableError,
    EncodedImage,
    Rejected,
)
from fieldreport.config import (
    ANALYSIS_INSTRUCTION,
    DEFAULT_REJECTION_REASON,
    GEMINI_API_KEY,
    GEMINI_MODEL,
)

logger = logging.getLogger(__name__)


# Wire names the oracle must fill in when it accepts a photo.
ACCEPTED_FIELDS: tuple[str, ...] = (
    "completionPercentage",
    "summary",
    "details",
    "recommendations",
)

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "isRejected": {
            "type": "BOOLEAN",
            "description": "True if the image is fake, a stock photo, an image-search screenshot, or an illustration",
        },
        "rejectionReason": {
            "type": "STRING",
            "description": "Why the image is rejected (e.g. 'Image search UI detected', 'Stock photo')",
        },
        "completionPercentage": {"type": "NUMBER", "description": "Estimated completion percentage 0-100"},
        "summary": {"type": "STRING", "description": "Formal technical summary"},
        "details": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "Exactly 3 technical details observed",
        },
        "recommendations": {"type": "STRING", "description": "One recommendation for the next step"},
    },
    "required": ["isRejected", "completionPercentage", "summary", "details", "recommendations"],
}


class VisionOracle(Protocol):
    """Anything that can screen and describe one image."""

    async def classify(self, image_bytes: bytes, media_type: str, instruction: str) -> str | dict:
        ...


class GeminiOracle:
    """Gemini vision model in JSON response mode."""

    def __init__(self, api_key: str = GEMINI_API_KEY, model: str = GEMINI_MODEL):
        self.api_key = api_key
        self.model = model
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.api_key:
                raise AnalysisUnreachableError("GEMINI_API_KEY is not set")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def classify(self, image_bytes: bytes, media_type: str, instruction: str) -> str:
        client = self._get_client()
        response = await client.aio.models.generate_content(
            model=self.model,
            contents=[
                types.Part.from_bytes(data=image_bytes, mime_type=media_type),
                instruction,
            ],
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=RESPONSE_SCHEMA,
            ),
        )
        if not response.text:
            raise AnalysisUnreachableError("No response from oracle")
        return response.text


class AnalysisGateway:
    """Sends an encoded image to the oracle and returns its verdict."""

    def __init__(self, oracle: VisionOracle, instruction: str = ANALYSIS_INSTRUCTION):
        self.oracle = oracle
        self.instruction = instruction

    async def analyze(self, image: EncodedImage) -> AnalysisVerdict:
        """
        Classifies one image.

        Raises:
            AnalysisUnreachableError: network/oracle failure or a reply
                that does not fit either verdict shape.
        """
        try:
            reply = await self.oracle.classify(image.payload, image.media_type, self.instruction)
        except AnalysisUnreachableError:
            raise
        except Exception as e:
            raise AnalysisUnreachableError(f"Analysis failed: {e}") from e

        verdict = normalize_reply(reply)
        logger.info("Oracle verdict: %s", get_verdict_summary(verdict))
        return verdict


def normalize_reply(reply: str | bytes | dict) -> AnalysisVerdict:
    """
    Maps the oracle's raw JSON onto Accepted or Rejected.

    Missing accepted-branch fields are a failure, never filled with
    defaults. A rejection without a reason gets DEFAULT_REJECTION_REASON.
    """
    if isinstance(reply, (str, bytes)):
        try:
            data = json.loads(reply)
        except ValueError as e:
            raise AnalysisUnreachableError("Oracle reply is not valid JSON") from e
    else:
        data = reply

    if not isinstance(data, dict):
        raise AnalysisUnreachableError("Oracle reply is not a JSON object")

    is_rejected = data.get("isRejected")
    if not isinstance(is_rejected, bool):
        raise AnalysisUnreachableError("Oracle reply has no boolean isRejected")

    if is_rejected:
        reason = data.get("rejectionReason")
        if not isinstance(reason, str) or not reason.strip():
            reason = DEFAULT_REJECTION_REASON
        return Rejected(reason=reason.strip())

    missing = [name for name in ACCEPTED_FIELDS if data.get(name) is None]
    if missing:
        raise AnalysisUnreachableError(f"Oracle reply missing fields: {', '.join(missing)}")

    try:
        return Accepted(
            completion_percentage=data["completionPercentage"],
            summary=data["summary"],
            details=data["details"],
            recommendation=data["recommendations"],
        )
    except PydanticValidationError as e:
        raise AnalysisUnreachableError(f"Oracle reply is malformed: {e.error_count()} invalid field(s)") from e


def get_verdict_summary(verdict: AnalysisVerdict) -> str:
    """Human-readable one-liner for logs and CLI output."""
    if isinstance(verdict, Rejected):
        return f"rejected ({verdict.reason})"
    return f"accepted at {verdict.completion_percentage:g}% complete"

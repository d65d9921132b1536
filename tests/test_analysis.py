"""
Unit tests for analysis module

Tests cover:
- Reply normalization into Accepted / Rejected
- Malformed replies surfacing as AnalysisUnreachableError
- Gateway error wrapping
- GeminiOracle request shape (client mocked)
"""
import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from fieldreport.analysis import (
    AnalysisGateway,
    GeminiOracle,
    get_verdict_summary,
    normalize_reply,
)
from fieldreport.models import Accepted, AnalysisUnreachableError, Rejected
from fieldreport.config import DEFAULT_REJECTION_REASON


# ============================================================================
# NORMALIZATION TESTS
# ============================================================================

class TestNormalizeReply:

    def test_accepted_reply(self, accepted_reply):
        verdict = normalize_reply(json.dumps(accepted_reply))

        assert isinstance(verdict, Accepted)
        assert verdict.completion_percentage == 80
        assert verdict.details == accepted_reply["details"]
        assert verdict.recommendation == accepted_reply["recommendations"]

    def test_accepts_dict_and_bytes(self, accepted_reply):
        assert isinstance(normalize_reply(accepted_reply), Accepted)
        assert isinstance(normalize_reply(json.dumps(accepted_reply).encode()), Accepted)

    def test_rejected_reply_keeps_reason(self):
        verdict = normalize_reply({"isRejected": True, "rejectionReason": "Gambar Stock Photo"})

        assert isinstance(verdict, Rejected)
        assert verdict.reason == "Gambar Stock Photo"

    def test_rejected_without_reason_gets_default(self):
        verdict = normalize_reply({"isRejected": True, "rejectionReason": "  "})
        assert verdict.reason == DEFAULT_REJECTION_REASON

    def test_rejection_ignores_accepted_fields(self, accepted_reply):
        verdict = normalize_reply({**accepted_reply, "isRejected": True, "rejectionReason": "Screenshot"})
        assert isinstance(verdict, Rejected)

    @pytest.mark.parametrize("field", ["completionPercentage", "summary", "details", "recommendations"])
    def test_missing_accepted_field_fails(self, accepted_reply, field):
        del accepted_reply[field]
        with pytest.raises(AnalysisUnreachableError) as exc_info:
            normalize_reply(accepted_reply)
        assert field in str(exc_info.value)

    @pytest.mark.parametrize("details", [["only one"], ["a", "b", "c", "d"], []])
    def test_details_must_be_exactly_three(self, accepted_reply, details):
        accepted_reply["details"] = details
        with pytest.raises(AnalysisUnreachableError):
            normalize_reply(accepted_reply)

    @pytest.mark.parametrize("percentage", [-1, 100.5, 250])
    def test_percentage_out_of_range_fails(self, accepted_reply, percentage):
        accepted_reply["completionPercentage"] = percentage
        with pytest.raises(AnalysisUnreachableError):
            normalize_reply(accepted_reply)

    @pytest.mark.parametrize("reply", ["not json", "[1, 2]", "{}", '{"isRejected": "no"}'])
    def test_unusable_reply_fails(self, reply):
        with pytest.raises(AnalysisUnreachableError):
            normalize_reply(reply)

    def test_verdict_summary(self, accepted_reply):
        assert get_verdict_summary(normalize_reply(accepted_reply)) == "accepted at 80% complete"
        assert get_verdict_summary(Rejected(reason="Stock photo")) == "rejected (Stock photo)"


# ============================================================================
# GATEWAY TESTS
# ============================================================================

class TestAnalysisGateway:

    @pytest.mark.asyncio
    async def test_sends_jpeg_payload(self, fake_oracle, encoded_image):
        verdict = await AnalysisGateway(fake_oracle).analyze(encoded_image)

        assert isinstance(verdict, Accepted)
        assert fake_oracle.calls == [(encoded_image.payload, "image/jpeg")]

    @pytest.mark.asyncio
    async def test_oracle_exception_wrapped(self, encoded_image):
        oracle = MagicMock()
        oracle.classify = AsyncMock(side_effect=ConnectionError("network down"))

        with pytest.raises(AnalysisUnreachableError) as exc_info:
            await AnalysisGateway(oracle).analyze(encoded_image)
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_unreachable_passes_through(self, fake_oracle, encoded_image):
        fake_oracle.reply = AnalysisUnreachableError("No response from oracle")
        with pytest.raises(AnalysisUnreachableError, match="No response"):
            await AnalysisGateway(fake_oracle).analyze(encoded_image)

    @pytest.mark.asyncio
    async def test_malformed_reply_is_unreachable(self, fake_oracle, encoded_image):
        fake_oracle.reply = '{"isRejected": false}'
        with pytest.raises(AnalysisUnreachableError):
            await AnalysisGateway(fake_oracle).analyze(encoded_image)


# ============================================================================
# GEMINI ORACLE TESTS
# ============================================================================

class TestGeminiOracle:

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        with pytest.raises(AnalysisUnreachableError, match="GEMINI_API_KEY"):
            await GeminiOracle(api_key="").classify(b"x", "image/jpeg", "describe")

    @patch("fieldreport.analysis.genai.Client")
    @pytest.mark.asyncio
    async def test_requests_json_reply(self, mock_client_cls, accepted_reply):
        response = MagicMock(text=json.dumps(accepted_reply))
        client = mock_client_cls.return_value
        client.aio.models.generate_content = AsyncMock(return_value=response)

        reply = await GeminiOracle(api_key="k", model="m").classify(b"jpeg", "image/jpeg", "describe")

        assert json.loads(reply) == accepted_reply
        kwargs = client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "m"
        assert kwargs["config"].response_mime_type == "application/json"
        assert kwargs["contents"][1] == "describe"

    @patch("fieldreport.analysis.genai.Client")
    @pytest.mark.asyncio
    async def test_empty_reply_is_unreachable(self, mock_client_cls):
        client = mock_client_cls.return_value
        client.aio.models.generate_content = AsyncMock(return_value=MagicMock(text=""))

        with pytest.raises(AnalysisUnreachableError):
            await GeminiOracle(api_key="k").classify(b"jpeg", "image/jpeg", "describe")

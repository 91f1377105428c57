"""
Unit tests for bill extraction.

Tests cover:
- Parsing of the vision model's JSON answer (code fences, nulls, gaps)
- Malformed and incomplete answers
- OpenAIVisionExtractor request shape and error mapping
"""

import json
from unittest.mock import AsyncMock, Mock

import httpx
import openai
import pytest

from billscanner.exceptions import ExtractionFailed, MalformedResponse
from billscanner.extraction import (
    EXTRACTION_PROMPT,
    OpenAIVisionExtractor,
    detect_image_type,
    parse_bill_response,
)
from tests.test_data.sample_bills import JPEG_BYTES, MIXED_BILL, PNG_BYTES


def completion(content):
    return Mock(choices=[Mock(message=Mock(content=content))])


def mock_client(content=None, side_effect=None):
    client = Mock()
    client.chat.completions.create = AsyncMock(return_value=completion(content), side_effect=side_effect)
    return client


class TestDetectImageType:
    def test_known_formats(self):
        assert detect_image_type(PNG_BYTES) == "image/png"
        assert detect_image_type(JPEG_BYTES) == "image/jpeg"
        assert detect_image_type(b"GIF89a" + b"\x00" * 8) == "image/gif"
        assert detect_image_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"

    def test_unknown_format(self):
        assert detect_image_type(b"%PDF-1.7") is None
        assert detect_image_type(b"") is None


class TestParseBillResponse:
    def test_plain_json(self):
        bill = parse_bill_response(json.dumps(MIXED_BILL))

        assert bill.provider.name == "Cedars Community Medical Group"
        assert bill.provider.state == "CA"
        assert bill.patient.account_number == "ACC-55821"
        assert bill.date_of_service == "2024-03-14"
        assert [item.cpt_code for item in bill.line_items] == ["99213", "85027", "72141", None, "12345"]
        assert bill.total_charges == 2475

    def test_code_fence_is_stripped(self):
        content = "```json\n" + json.dumps(MIXED_BILL) + "\n```"

        assert len(parse_bill_response(content).line_items) == 5

    def test_nulls_use_defaults(self):
        content = json.dumps({
            "provider": {"name": "Clinic", "state": "CA", "npi": None},
            "dateOfService": None,
            "procedures": [{"description": "Visit", "cptCode": None, "chargeAmount": None}],
        })

        bill = parse_bill_response(content)

        assert bill.date_of_service is None
        assert bill.line_items[0].cpt_code is None
        assert bill.line_items[0].charge_amount == 0

    def test_invalid_json(self):
        with pytest.raises(MalformedResponse, match="Failed to parse bill data"):
            parse_bill_response("I could not read this bill.")

    @pytest.mark.parametrize(
        "payload",
        [
            {"procedures": []},
            {"provider": {"name": "Clinic"}},
            ["not", "an", "object"],
        ],
    )
    def test_incomplete_bill(self, payload):
        with pytest.raises(MalformedResponse, match="Incomplete bill data extracted"):
            parse_bill_response(json.dumps(payload))

    def test_schema_mismatch(self):
        content = json.dumps({
            "provider": {"name": "Clinic"},
            "procedures": [{"description": "Visit", "chargeAmount": "a lot"}],
        })

        with pytest.raises(MalformedResponse):
            parse_bill_response(content)


class TestOpenAIVisionExtractor:
    @pytest.mark.asyncio
    async def test_extract(self):
        client = mock_client(json.dumps(MIXED_BILL))
        extractor = OpenAIVisionExtractor(client=client, model="gpt-4o", max_tokens=2048)

        bill = await extractor.extract(PNG_BYTES)

        assert bill.provider.state == "CA"
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["max_tokens"] == 2048
        assert kwargs["temperature"] == 0.1
        content = kwargs["messages"][0]["content"]
        assert content[0]["image_url"]["url"].startswith("data:image/png;base64,")
        assert content[0]["image_url"]["detail"] == "high"
        assert content[1]["text"] == EXTRACTION_PROMPT

    @pytest.mark.asyncio
    async def test_declared_content_type_wins(self):
        client = mock_client(json.dumps(MIXED_BILL))
        extractor = OpenAIVisionExtractor(client=client)

        await extractor.extract(PNG_BYTES, "image/webp")

        content = client.chat.completions.create.await_args.kwargs["messages"][0]["content"]
        assert content[0]["image_url"]["url"].startswith("data:image/webp;base64,")

    @pytest.mark.asyncio
    async def test_not_configured(self):
        extractor = OpenAIVisionExtractor(api_key=None)

        assert not extractor.is_configured
        with pytest.raises(ExtractionFailed, match="not configured"):
            await extractor.extract(PNG_BYTES)

    @pytest.mark.asyncio
    async def test_empty_image(self):
        extractor = OpenAIVisionExtractor(client=mock_client("{}"))

        with pytest.raises(ExtractionFailed):
            await extractor.extract(b"")

    @pytest.mark.asyncio
    async def test_api_error(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        client = mock_client(side_effect=openai.APIConnectionError(request=request))
        extractor = OpenAIVisionExtractor(client=client)

        with pytest.raises(ExtractionFailed, match="OpenAI API error"):
            await extractor.extract(PNG_BYTES)

    @pytest.mark.asyncio
    async def test_empty_answer(self):
        extractor = OpenAIVisionExtractor(client=mock_client(""))

        with pytest.raises(ExtractionFailed, match="No response"):
            await extractor.extract(PNG_BYTES)

    @pytest.mark.asyncio
    async def test_malformed_answer(self):
        extractor = OpenAIVisionExtractor(client=mock_client("Sorry, the image is blurry."))

        with pytest.raises(MalformedResponse):
            await extractor.extract(PNG_BYTES)

"""
Bill extraction boundary for the Medical Bill Scanner.

The analysis engine only depends on the BillExtractor interface. The default
implementation sends the bill photo to an OpenAI vision model and parses the
JSON bill record it returns.
"""

import base64
import json
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import openai
import structlog
from pydantic import ValidationError

from billscanner.exceptions import ExtractionFailed, MalformedResponse
from shared.schemas.schemas import BillRecord

logger = structlog.get_logger(__name__)

IMAGE_SIGNATURES = {
    "image/jpeg": [b"\xff\xd8\xff"],
    "image/png": [b"\x89PNG\r\n\x1a\n"],
    "image/gif": [b"GIF87a", b"GIF89a"],
}

CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

EXTRACTION_PROMPT = """Extract all information from this US medical bill in JSON format. Be precise with CPT codes and amounts. Return ONLY valid JSON, no additional text.

Required JSON structure:
{
  "provider": {
    "name": "",
    "address": "",
    "city": "",
    "state": "",
    "zip": "",
    "npi": ""
  },
  "patient": {
    "name": "",
    "accountNumber": ""
  },
  "dateOfService": "YYYY-MM-DD",
  "procedures": [
    {
      "description": "",
      "cptCode": "",
      "icd10Code": "",
      "quantity": 1,
      "chargeAmount": 0,
      "units": 1
    }
  ],
  "totalCharges": 0,
  "insurancePayment": 0,
  "adjustments": 0,
  "patientResponsibility": 0
}

Important Instructions:
1. Extract exact CPT codes (5-digit codes like 99214, 80053, etc.). If no CPT code is visible, leave it empty.
2. Extract all procedure/service line items with their charges.
3. Extract diagnostic codes (ICD-10) if present.
4. Capture provider name, address (especially state), and date of service.
5. Extract all monetary amounts accurately.
6. If any field is not available, use empty string for text fields and 0 for numbers.
7. Return ONLY the JSON object, no markdown formatting or code blocks."""


def detect_image_type(data: bytes) -> Optional[str]:
    """Detect an image MIME type from magic bytes."""
    for mime_type, signatures in IMAGE_SIGNATURES.items():
        if any(data.startswith(signature) for signature in signatures):
            return mime_type
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def _drop_nulls(value: Any) -> Any:
    # Model output uses null where a field is unreadable; let schema defaults apply.
    if isinstance(value, dict):
        return {key: _drop_nulls(item) for key, item in value.items() if item is not None}
    if isinstance(value, list):
        return [_drop_nulls(item) for item in value if item is not None]
    return value


def parse_bill_response(content: str) -> BillRecord:
    """Parse the extraction model's answer into a BillRecord.

    Raises:
        MalformedResponse: If the answer is not JSON, lacks the provider or
            procedures sections, or does not fit the bill schema.
    """
    text = (content or "").strip()
    fenced = CODE_FENCE_PATTERN.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResponse("Failed to parse bill data. Please try scanning again.") from e

    if not isinstance(data, dict) or not data.get("provider") or data.get("procedures") is None:
        raise MalformedResponse("Incomplete bill data extracted")

    try:
        return BillRecord.model_validate(_drop_nulls(data))
    except ValidationError as e:
        raise MalformedResponse(f"Extracted bill data does not match the bill schema: {e.error_count()} errors") from e


class BillExtractor(ABC):
    """Turns a bill image into a structured bill record."""

    @abstractmethod
    async def extract(self, image: bytes, content_type: Optional[str] = None) -> BillRecord:
        """
        Extract a bill record from an image.

        Raises:
            ExtractionFailed: If the extraction service could not be used
            MalformedResponse: If its answer is not a bill record
        """


class OpenAIVisionExtractor(BillExtractor):
    """Bill extractor backed by an OpenAI vision model."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        max_tokens: int = 4096,
        client: Optional[openai.AsyncOpenAI] = None,
    ):
        if client is None and api_key:
            client = openai.AsyncOpenAI(api_key=api_key)
        self._client = client
        self.model = model
        self.max_tokens = max_tokens
        self.logger = logger.bind(component="openai_vision_extractor", model=model)

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def extract(self, image: bytes, content_type: Optional[str] = None) -> BillRecord:
        if self._client is None:
            raise ExtractionFailed("OpenAI API key not configured")
        if not image:
            raise ExtractionFailed("No image data provided")

        mime_type = content_type or detect_image_type(image) or "image/jpeg"
        data_url = f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"

        self.logger.info("Extracting bill data", image_bytes=len(image), mime_type=mime_type)
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "image_url", "image_url": {"url": data_url, "detail": "high"}},
                            {"type": "text", "text": EXTRACTION_PROMPT},
                        ],
                    }
                ],
                max_tokens=self.max_tokens,
                temperature=0.1,
            )
        except openai.OpenAIError as e:
            self.logger.error("Extraction request failed", error=str(e))
            raise ExtractionFailed(f"OpenAI API error: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ExtractionFailed("No response from vision model")

        bill = parse_bill_response(content)
        self.logger.info(
            "Extracted bill data",
            provider=bill.provider.name,
            line_items=len(bill.line_items),
        )
        return bill

"""
Vision-extraction collaborator.

The lifecycle manager only needs ``extract(image, document_type_hint)``
returning a mapping of structured fields; anything else is a failure.
"""
import base64
import json
import logging
from typing import Any, Dict, Optional, Protocol

from openai import OpenAI

from .config import EXTRACTION_TIMEOUT_SECONDS, OPENAI_API_KEY, OPENAI_MODEL
from .errors import ExtractionFailed

logger = logging.getLogger(__name__)


class VisionExtractor(Protocol):
    def extract(self, image: bytes, document_type_hint: str) -> Dict[str, Any]:
        ...


COMMON_RULES = """
Rules:
- Return a single JSON object and nothing else.
- Dates as YYYY-MM-DD, numbers without units or thousands separators.
- Use null for anything not visible on the page. Do not invent values.
- Add a "confidence" object mapping each top-level field you filled to a
  number between 0 and 1.
"""

PROMPTS = {
    "maintenance_report": """Extract the maintenance report on this aircraft document image.
Fields: date, ame_name, ame_license, amo_name, work_order_number, description,
airframe_hours, engine_hours, propeller_hours, remarks, labor_cost, parts_cost,
total_cost,
ad_sb_references: [{adsb_type ("AD"|"SB"), reference_number, description, status, compliance_date, airframe_hours}],
parts_replaced: [{part_number, name, serial_number, quantity, price, supplier}],
stc_references: [{stc_number, title, description, holder, installation_date}].
""",
    "invoice": """Extract the invoice on this aircraft maintenance document image.
Fields: invoice_number, supplier, invoice_date, parts_cost, labor_cost,
hours_worked, total, currency,
parts_replaced: [{part_number, name, quantity, price}].
""",
    "stc": """Extract the Supplemental Type Certificate information on this document image.
Fields: date, description,
stc_references: [{stc_number, title, description, holder, installation_date}].
""",
    "other": """Extract any aircraft maintenance information on this document image.
Fields: date, description, remarks, airframe_hours, engine_hours, propeller_hours.
""",
}


def _sniff_mime(image: bytes) -> str:
    if image.startswith(b"\x89PNG"):
        return "image/png"
    if image[:4] == b"RIFF" and image[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


class OpenAIVisionExtractor:
    """Structured field extraction through the OpenAI chat completions API."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, timeout: float = EXTRACTION_TIMEOUT_SECONDS, client=None):
        self.model = model or OPENAI_MODEL
        self._client = client
        self._api_key = api_key or OPENAI_API_KEY
        self._timeout = timeout

    def _ensure_client(self):
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise ExtractionFailed("Vision extraction is not configured (OPENAI_API_KEY missing)")
        self._client = OpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=0)
        return self._client

    def extract(self, image: bytes, document_type_hint: str) -> Dict[str, Any]:
        client = self._ensure_client()
        prompt = PROMPTS.get(document_type_hint, PROMPTS["other"]) + COMMON_RULES
        data_url = f"data:{_sniff_mime(image)};base64,{base64.b64encode(image).decode('ascii')}"
        try:
            resp = client.chat.completions.create(
                model=self.model,
                temperature=0,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": "You read aircraft maintenance paperwork and return JSON."},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": data_url}},
                        ],
                    },
                ],
            )
        except Exception as e:
            logger.error(f"Vision request failed: {e}")
            raise ExtractionFailed(f"Vision request failed: {e}") from e

        content = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise ExtractionFailed("Vision response is not valid JSON") from e
        if not isinstance(parsed, dict):
            raise ExtractionFailed("Vision response is not a JSON object")
        return parsed

# app/services/oracle_client.py
"""
Client for the vision model behind photo OCR, document extraction and
table extraction. The gateway speaks the chat-completions protocol; the
model is asked to answer with a bare JSON object, which is cut out of the
reply text before parsing.
"""
import base64
import json
import logging
import re
import time
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.config import settings
from app.core.errors import OracleUnavailable
from app.models.meter import MeterKind
from app.monitoring.metrics import oracle_duration, oracle_requests
from app.schemas.oracle import DocumentExtraction, SingleValueReading
from app.services.swap_detector import SwapPolicy, build_extraction

logger = logging.getLogger(__name__)

JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

METER_KIND_DESCRIPTIONS = {
    MeterKind.ELECTRICITY: "an electricity meter (kWh)",
    MeterKind.GAS: "a gas meter (m³)",
    MeterKind.WATER_COLD: "a cold water meter (m³)",
    MeterKind.WATER_HOT: "a hot water meter (m³)",
    MeterKind.HEATING: "a heat meter (kWh)",
}

SINGLE_VALUE_PROMPT = """You read utility meters from photos. {context}

Extract the current reading from the main display only.
- Ignore decimal digits shown in red or after a separator; return an integer.
- Lower the confidence when unsure.
- If the display is unreadable return null as value.

Answer ONLY with a JSON object: {{"value": <number or null>, "confidence": <0-100>}}"""

DOCUMENT_PROMPT = """You analyse meter documents and photos (readings protocols, invoices, meter cards).

Extract:
1. the meter number (device id on the type plate, "Zählernummer", "Meter ID"); ignore customer and contract numbers
2. every dated reading, date as YYYY-MM-DD, value as a number
3. whether the document covers a meter exchange: a reading far below the previous one,
   or a remark like "replaced", "new meter", "Zählerwechsel"

Group the readings into eras, one per physical meter, oldest first. Without an exchange return one era.

Answer ONLY with a JSON object:
{"meterNumber": "<number>" or null, "meterName": "<label>" or null, "confidence": <0-100>,
 "meterSwapDetected": true|false,
 "eras": [{"label": "<text>", "swapNote": "<text>" or null,
           "readings": [{"date": "YYYY-MM-DD", "value": 123.4, "note": "<remark>" or null}]}]}"""

TABLE_PROMPT = """You convert spreadsheets and PDF tables of meter readings into JSON.
Keep the original column headers and cell texts, do not reformat dates or numbers.

Answer ONLY with a JSON object: {"headers": ["<col>", ...], "rows": [{"<col>": "<text>", ...}]}"""


def _data_url(content: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"


def extract_json(text: Optional[str]) -> Dict[str, Any]:
    """First {...} block of a model reply, parsed."""
    if not text:
        raise OracleUnavailable("Empty response from the extraction service")
    match = JSON_OBJECT.search(text)
    if not match:
        raise OracleUnavailable("No JSON found in the extraction response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise OracleUnavailable(f"Malformed JSON in the extraction response: {e}") from e
    if not isinstance(data, dict):
        raise OracleUnavailable("Unexpected extraction response structure")
    return data


class OracleClient:
    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url or settings.ORACLE_API_URL
        self.api_key = api_key if api_key is not None else settings.ORACLE_API_KEY
        self.model = model or settings.ORACLE_MODEL
        self.timeout = timeout or settings.ORACLE_TIMEOUT
        self.transport = transport

    async def _complete(self, operation: str, system_prompt: str, content: bytes, mime_type: str, instruction: str, max_tokens: int) -> Dict[str, Any]:
        if not self.api_key:
            oracle_requests.labels(operation=operation, outcome="unconfigured").inc()
            raise OracleUnavailable("Extraction service is not configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": _data_url(content, mime_type)}},
                        {"type": "text", "text": instruction},
                    ],
                },
            ],
            "max_tokens": max_tokens,
        }

        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            oracle_requests.labels(operation=operation, outcome="error").inc()
            logger.error(f"Extraction service unreachable ({operation}): {e}")
            raise OracleUnavailable(f"Extraction service unreachable: {e}") from e
        finally:
            oracle_duration.labels(operation=operation).observe(time.time() - start_time)

        if response.status_code != 200:
            oracle_requests.labels(operation=operation, outcome=f"http_{response.status_code}").inc()
            logger.error(f"Extraction service error ({operation}): {response.status_code} {response.text[:500]}")
            if response.status_code == 429:
                raise OracleUnavailable("Extraction rate limit reached, try again later")
            raise OracleUnavailable(f"Extraction service answered {response.status_code}")

        try:
            text = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            oracle_requests.labels(operation=operation, outcome="malformed").inc()
            raise OracleUnavailable("Unexpected extraction response structure") from e

        try:
            data = extract_json(text)
        except OracleUnavailable:
            oracle_requests.labels(operation=operation, outcome="malformed").inc()
            logger.error(f"Failed to parse extraction response ({operation}): {str(text)[:500]}")
            raise

        oracle_requests.labels(operation=operation, outcome="ok").inc()
        return data

    async def read_meter_value(self, content: bytes, mime_type: str, meter_kind: Optional[MeterKind] = None) -> SingleValueReading:
        context = f"This is {METER_KIND_DESCRIPTIONS[meter_kind]}." if meter_kind else "This is a utility meter."
        data = await self._complete(
            "single_value",
            SINGLE_VALUE_PROMPT.format(context=context),
            content,
            mime_type,
            "Read the meter value from this photo.",
            max_tokens=200,
        )
        value = data.get("value")
        if value is None:
            raise OracleUnavailable("The meter value could not be recognized")
        try:
            value = float(value)
        except (TypeError, ValueError) as e:
            raise OracleUnavailable(f"Unrecognized meter value: {value!r}") from e
        try:
            confidence = float(data.get("confidence") or 85)
        except (TypeError, ValueError):
            confidence = 85
        return SingleValueReading(value=value, confidence=int(min(max(confidence, 0), 100)))

    async def extract_document(self, content: bytes, mime_type: str, policy: Optional[SwapPolicy] = None) -> DocumentExtraction:
        data = await self._complete(
            "document",
            DOCUMENT_PROMPT,
            content,
            mime_type,
            "Extract the meter number and all readings of this document.",
            max_tokens=4096,
        )
        extraction = build_extraction(data, policy)
        if extraction.empty:
            logger.info("Document extraction found nothing usable")
        return extraction

    async def extract_table(self, content: bytes, mime_type: str) -> Tuple[List[str], List[Dict[str, str]]]:
        data = await self._complete(
            "table",
            TABLE_PROMPT,
            content,
            mime_type,
            "Extract the table of this file.",
            max_tokens=8192,
        )
        rows = [
            {str(k): "" if v is None else str(v).strip() for k, v in row.items()}
            for row in data.get("rows") or []
            if isinstance(row, dict)
        ]
        headers = [str(h) for h in data.get("headers") or []]
        if not headers and rows:
            headers = list(rows[0].keys())
        return headers, rows


@lru_cache()
def get_oracle_client() -> OracleClient:
    return OracleClient()

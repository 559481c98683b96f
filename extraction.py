# extraction.py
from typing import List, Optional

import httpx
import pydantic  # For pydantic.ValidationError

from config import settings
from exceptions import ExtractionError, InvalidResponseFormat
from models import BillingRow, BillingTable, EncodedPayload, ExtractionRequest
from utils import log

UNKNOWN_SERVER_ERROR = "Error desconocido al procesar la respuesta del servidor."
INVALID_FORMAT_MESSAGE = "La respuesta del servicio no tiene el formato de tabla esperado."


def decode_billing_rows(raw_text: str) -> List[BillingRow]:
    """
    Validates the raw reply as a JSON array of six-field rows.
    An empty array is a valid answer (no table in the document).
    Anything else raises InvalidResponseFormat; nothing partial is returned.
    """
    raw_json_text = (raw_text or "").strip()
    if raw_json_text.startswith("```json"):
        raw_json_text = raw_json_text[7:-3].strip()
    elif raw_json_text.startswith("```"):
        raw_json_text = raw_json_text[3:-3].strip()

    try:
        table = BillingTable.model_validate_json(raw_json_text)
    except pydantic.ValidationError as val_err:
        log.error(f"Billing table validation failed: {val_err}")
        log.error(f"Raw response text:\n{raw_json_text}")
        raise InvalidResponseFormat(INVALID_FORMAT_MESSAGE, raw_response=raw_json_text) from val_err
    return table.root


def _extract_error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return UNKNOWN_SERVER_ERROR

    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, str) and err.strip():
            return err
    return f"La solicitud falló con el estado {response.status_code}"


class ExtractionClient:
    """
    Sends one encoded document to the bridge and decodes the structured reply.
    Stateless: one request per call, no retry and no caching.
    """

    def __init__(
        self,
        bridge_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.bridge_url = bridge_url or settings.BRIDGE_URL
        self.timeout = timeout if timeout is not None else settings.BRIDGE_TIMEOUT_SECONDS
        self.transport = transport

    def extract(self, payload: EncodedPayload) -> List[BillingRow]:
        body = ExtractionRequest(file_data=payload).model_dump(by_alias=True)
        log.debug(f"POST {self.bridge_url} (mime type '{payload.mime_type}', {len(payload.data)} base64 chars)")
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.bridge_url, json=body)
        except httpx.HTTPError as e:
            log.error(f"Request to extraction bridge failed: {type(e).__name__} - {e}")
            raise ExtractionError(f"No se pudo contactar al servicio de extracción: {e}") from e

        if not response.is_success:
            detail = _extract_error_detail(response)
            log.error(f"Extraction bridge returned {response.status_code}: {detail}")
            raise ExtractionError(detail, status_code=response.status_code)

        rows = decode_billing_rows(response.text)
        log.debug(f"Decoded {len(rows)} billing rows")
        return rows

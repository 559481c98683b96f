# gemini.py
import base64
import binascii
from functools import lru_cache
from typing import Any

from google import genai
from google.genai import types

from config import settings
from exceptions import ExtractionError
from models import BILLING_FIELDS, EncodedPayload
from utils import log

# Output constraint: an array of objects, each with exactly the six billing columns as strings.
BILLING_TABLE_SCHEMA = types.Schema(
    type=types.Type.ARRAY,
    items=types.Schema(
        type=types.Type.OBJECT,
        properties={name: types.Schema(type=types.Type.STRING) for name in BILLING_FIELDS},
        required=list(BILLING_FIELDS),
        property_ordering=list(BILLING_FIELDS),
    ),
)


@lru_cache(maxsize=1)
def get_genai_client() -> genai.Client:
    """Creates the SDK client on first use. Callers check settings.credential_error first."""
    if settings.USE_VERTEXAI:
        log.info(f"Initializing Gemini on Vertex AI for project='{settings.GOOGLE_CLOUD_PROJECT}', location='{settings.LOCATION}'")
        return genai.Client(vertexai=True, project=settings.GOOGLE_CLOUD_PROJECT, location=settings.LOCATION)
    log.info("Initializing Gemini client with API key")
    return genai.Client(api_key=settings.API_KEY)


def decode_document(payload: EncodedPayload) -> bytes:
    """Base64 payload -> document bytes. Raises ValueError on empty or malformed data."""
    try:
        content = base64.b64decode(payload.data, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 document data: {e}") from e
    if not content:
        raise ValueError("Empty document data")
    return content


def _response_text(response: Any, context: str) -> str:
    """Returns the model text, or raises ExtractionError if the content was blocked or empty."""
    prompt_feedback = getattr(response, "prompt_feedback", None)
    if prompt_feedback is not None and prompt_feedback.block_reason:
        log.error(f"Prompt blocked for {context}. Reason: {prompt_feedback.block_reason}")
        raise ExtractionError(f"Contenido bloqueado: {prompt_feedback.block_reason}")

    if response.candidates:
        candidate = response.candidates[0]
        if candidate.content is None or not candidate.content.parts:
            block_reason = str(candidate.finish_reason)
            safety_ratings = {str(sr.category): str(sr.probability) for sr in (candidate.safety_ratings or [])}
            log.error(f"Content likely blocked for {context}. Reason: {block_reason}, Ratings: {safety_ratings}")
            raise ExtractionError(f"Contenido bloqueado: {block_reason}")

    text = response.text
    if not text or not text.strip():
        log.error(f"Received empty response for {context}. Response: {response}")
        raise ExtractionError("Respuesta vacía del modelo.")
    return text.strip()


def generate_billing_table(payload: EncodedPayload, context: str = "document") -> str:
    """
    Asks Gemini for the billing table of one document and returns the raw JSON text
    exactly as the model produced it. Validation is left to the Extraction Client.
    """
    document = decode_document(payload)
    document_part = types.Part.from_bytes(data=document, mime_type=payload.mime_type)
    config = types.GenerateContentConfig(
        response_mime_type="application/json",
        response_schema=BILLING_TABLE_SCHEMA,
        safety_settings=settings.safety_settings,
    )

    log.info(f"Sending extraction request to Gemini ({settings.MODEL_NAME}) for {context}")
    response = get_genai_client().models.generate_content(
        model=settings.MODEL_NAME,
        contents=[settings.EXTRACTION_PROMPT, document_part],
        config=config,
    )
    log.info(f"Received extraction response from Gemini for {context}")
    return _response_text(response, context)

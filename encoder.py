# encoder.py
import base64

from exceptions import FileReadError
from models import EncodedPayload, UploadedFile
from utils import log


def encode(file: UploadedFile) -> EncodedPayload:
    """
    Reads the whole file and returns its base64 payload with the declared media type.
    No size limit is applied here; the service rejects what it cannot take.
    """
    try:
        content = file.read()
    except OSError as e:
        log.error(f"Failed to read file '{file.name}': {e}")
        raise FileReadError(f"No se pudo leer el archivo {file.name}: {e}") from e

    log.debug(f"Encoded '{file.name}' ({len(content)} bytes, mime type '{file.mime_type}')")
    return EncodedPayload(
        data=base64.b64encode(content).decode("ascii"),
        mime_type=file.mime_type,
    )

import base64

import pytest

from encoder import encode
from exceptions import FileReadError
from models import UploadedFile


def test_encode_in_memory_file():
    payload = encode(UploadedFile(name="recibo.png", mime_type="image/png", content=b"\x89PNG\r\n"))

    assert base64.b64decode(payload.data) == b"\x89PNG\r\n"
    assert payload.mime_type == "image/png"
    assert payload.model_dump(by_alias=True) == {"data": payload.data, "mimeType": "image/png"}


def test_encode_reads_path(tmp_path):
    path = tmp_path / "factura.pdf"
    path.write_bytes(b"%PDF-1.4 contenido")

    payload = encode(UploadedFile(name="factura.pdf", mime_type="application/pdf", path=path))

    assert base64.b64decode(payload.data) == b"%PDF-1.4 contenido"


def test_declared_media_type_is_kept_as_is():
    payload = encode(UploadedFile(name="factura.pdf", mime_type="", content=b"x"))

    assert payload.mime_type == ""


def test_unreadable_file_raises_file_read_error(tmp_path):
    file = UploadedFile(name="perdido.pdf", mime_type="application/pdf", path=tmp_path / "perdido.pdf")

    with pytest.raises(FileReadError) as exc_info:
        encode(file)

    assert isinstance(exc_info.value, IOError)
    assert "perdido.pdf" in str(exc_info.value)


def test_uploaded_file_needs_a_source():
    with pytest.raises(ValueError):
        UploadedFile(name="nada.pdf")

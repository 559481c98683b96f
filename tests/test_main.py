import asyncio
import base64
import json
import threading
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from config import settings
from conftest import FakeClient, make_row
from exceptions import ExtractionError
from main import app, get_session
from processing import TABLE_NOT_FOUND_MESSAGE, AnalysisSession

FILE_DATA = {"data": base64.b64encode(b"%PDF-1.4").decode(), "mimeType": "application/pdf"}


@pytest.fixture()
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture()
def session():
    current = AnalysisSession(client=FakeClient({
        "enero.pdf": [make_row("Enero")],
        "vacio.png": [],
        "roto.jpg": ExtractionError("La solicitud falló con el estado 500"),
    }))
    app.dependency_overrides[get_session] = lambda: current
    yield current
    app.dependency_overrides.clear()


def upload(client: TestClient, *names: str):
    files = [("files", (name, name.encode(), "application/pdf")) for name in names]
    return client.post("/files", files=files)


class TestBridge:

    def test_post_only(self, client):
        assert client.get("/api/extract").status_code == 405

    def test_missing_credential(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", None)

        response = client.post("/api/extract", json={"fileData": FILE_DATA})

        assert response.status_code == 500
        assert response.json() == {"error": "La variable de entorno API_KEY no está configurada."}

    @pytest.mark.parametrize("body", [
        {},
        {"fileData": {"data": "", "mimeType": "application/pdf"}},
        {"fileData": {"data": FILE_DATA["data"]}},
        {"fileData": {"data": "%%%", "mimeType": "application/pdf"}},
        [],
    ])
    def test_missing_file_data(self, client, body):
        response = client.post("/api/extract", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": "Faltan datos del archivo en el cuerpo de la solicitud."}

    def test_returns_model_text(self, client):
        model_text = json.dumps([make_row().model_dump(by_alias=True)])
        with patch("main.generate_billing_table", return_value=model_text) as generate:
            response = client.post("/api/extract", json={"fileData": FILE_DATA})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert response.text == model_text
        assert generate.call_args.args[0].mime_type == "application/pdf"

    def test_model_failure(self, client):
        with patch("main.generate_billing_table", side_effect=RuntimeError("quota exceeded")):
            response = client.post("/api/extract", json={"fileData": FILE_DATA})

        assert response.status_code == 500
        assert response.json() == {"error": "Error al procesar el archivo. quota exceeded"}

    def test_slow_model_calls_overlap(self):
        # Each call returns only once all three are in flight at the same time
        in_flight = threading.Barrier(3, timeout=5)

        def slow_model(file_data, context=""):
            in_flight.wait()
            return "[]"

        async def send_three():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://bridge.test") as http:
                return await asyncio.gather(*[
                    http.post("/api/extract", json={"fileData": FILE_DATA}) for _ in range(3)
                ])

        with patch("main.generate_billing_table", side_effect=slow_model):
            responses = asyncio.run(send_three())

        assert [r.status_code for r in responses] == [200, 200, 200]
        assert [r.text for r in responses] == ["[]", "[]", "[]"]


class TestSessionApi:

    def test_select_list_remove(self, client, session):
        assert upload(client, "enero.pdf", "enero.pdf").json() == {"selected": ["enero.pdf", "enero.pdf (2)"]}
        assert upload(client, "vacio.png").json() == {"selected": ["vacio.png"]}

        assert client.delete("/files/enero.pdf (2)").status_code == 200
        assert [f["key"] for f in client.get("/files").json()] == ["enero.pdf", "vacio.png"]
        assert client.delete("/files/nada.pdf").status_code == 404

    def test_analyze_and_results(self, client, session):
        upload(client, "roto.jpg", "vacio.png", "enero.pdf")

        result = client.post("/analyze").json()

        assert [t["fileName"] for t in result["tables"]] == ["enero.pdf"]
        assert result["tables"][0]["rows"][0]["Periodo"] == "Enero"
        assert result["errors"] == {
            "roto.jpg": "Error al procesar el archivo. La solicitud falló con el estado 500",
            "vacio.png": TABLE_NOT_FOUND_MESSAGE,
        }

        cards = client.get("/results").json()
        assert cards["running"] is False
        assert [(c["fileName"], c["state"]) for c in cards["cards"]] == [
            ("roto.jpg", "error"), ("vacio.png", "error"), ("enero.pdf", "table"),
        ]

    def test_analyze_without_files(self, client, session):
        response = client.post("/analyze")

        assert response.status_code == 200
        assert response.json() == {"tables": [], "errors": {}}

    def test_csv_download_and_copy(self, client, session):
        upload(client, "enero.pdf")
        client.post("/analyze")

        download = client.get("/results/enero.pdf/csv")
        assert download.status_code == 200
        assert 'filename="enero.csv"' in download.headers["content-disposition"]
        assert download.text.split("\n")[1] == '"Enero","10","100","0.9","0.5","1.2"'

        copied = client.post("/results/enero.pdf/copy")
        assert copied.text == download.text
        assert client.get("/results").json()["cards"][0]["copied"] is True

    def test_csv_names_of_duplicate_files_do_not_collide(self, client, session):
        upload(client, "enero.pdf", "enero.pdf")
        client.post("/analyze")

        first = client.get("/results/enero.pdf/csv")
        second = client.get("/results/enero.pdf (2)/csv")

        assert 'filename="enero.csv"' in first.headers["content-disposition"]
        assert "filename*=utf-8''enero%20%282%29.csv" in second.headers["content-disposition"]

    def test_table_html(self, client, session):
        upload(client, "enero.pdf")
        client.post("/analyze")

        response = client.get("/results/enero.pdf/table")

        assert response.status_code == 200
        assert "<table" in response.text

    def test_no_table_for_failed_file(self, client, session):
        upload(client, "vacio.png")
        client.post("/analyze")

        assert client.get("/results/vacio.png/csv").status_code == 404
        assert client.get("/results/otro.pdf/csv").status_code == 404

    def test_workbook_export(self, client, session):
        upload(client, "enero.pdf")
        client.post("/analyze")

        response = client.get("/results/export.xlsx")

        assert response.status_code == 200
        assert response.content[:2] == b"PK"

    def test_workbook_export_without_tables(self, client, session):
        assert client.get("/results/export.xlsx").status_code == 404

    def test_clear(self, client, session):
        upload(client, "enero.pdf")
        client.post("/analyze")

        assert client.delete("/files").json() == {"cleared": True}
        assert client.get("/files").json() == []
        assert client.get("/results").json()["cards"] == []


def test_root(client):
    assert "message" in client.get("/").json()

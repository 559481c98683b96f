# main.py
import json
import os
import tempfile
from pathlib import Path
from typing import List
from urllib.parse import quote

import pydantic
from fastapi import BackgroundTasks, Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, PlainTextResponse, Response

from config import settings
from exceptions import AnalysisInProgressError, ExtractionError
from gemini import decode_document, generate_billing_table
from models import BatchResult, ExtractionRequest, UploadedFile
from presentation import export_workbook, render_table
from processing import AnalysisSession
from utils import get_mime_type, log, setup_logger

# Initialize logger (in case utils hasn't been imported elsewhere first)
setup_logger()

app = FastAPI(title="Billing Table Extraction Service", version="1.0.0")

MISSING_FILE_DATA_MESSAGE = "Faltan datos del archivo en el cuerpo de la solicitud."

# One in-memory working set for the process; no persistence.
session = AnalysisSession()


def get_session() -> AnalysisSession:
    return session


def cleanup_file(file_path: str):
    """Background task to delete a file."""
    try:
        os.remove(file_path)
        log.info(f"Cleaned up temporary file: {file_path}")
    except OSError as e:
        log.error(f"Error cleaning up file {file_path}: {e}")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# --- Bridge to the generative model ---

@app.post("/api/extract")
async def extract_billing_table(request: Request):
    """
    Receives {fileData: {data, mimeType}}, asks Gemini for the billing table and
    returns the model's JSON text as is. Errors come back as {error: string}.
    """
    if settings.credential_error:
        log.error(f"Extraction request rejected: {settings.credential_error}")
        return _error(500, settings.credential_error)

    try:
        body = ExtractionRequest.model_validate(json.loads(await request.body() or b"{}"))
        if not body.file_data.data or not body.file_data.mime_type:
            raise ValueError("empty file data")
        decode_document(body.file_data)
    except (ValueError, pydantic.ValidationError) as e:
        log.error(f"Invalid extraction request: {e}")
        return _error(400, MISSING_FILE_DATA_MESSAGE)

    try:
        # The SDK call blocks; keep it off the event loop so bridge requests overlap
        json_text = await run_in_threadpool(
            generate_billing_table, body.file_data, context=f"request ({body.file_data.mime_type})"
        )
    except ExtractionError as e:
        return _error(500, f"Error al procesar el archivo. {e.message}")
    except Exception as e:
        log.exception(f"Error calling Gemini: {e}")
        return _error(500, f"Error al procesar el archivo. {e}")

    return Response(content=json_text, media_type="application/json")


# --- Working set ---

@app.post("/files")
async def select_files(files: List[UploadFile] = File(...), current: AnalysisSession = Depends(get_session)):
    """Appends the uploaded files to the working set."""
    selected = []
    for upload in files:
        try:
            content = await upload.read()
        finally:
            await upload.close()
        name = upload.filename or "archivo"
        mime_type = upload.content_type or get_mime_type(Path(name))
        log.info(f"Received file: {name}, Content-Type: {mime_type}")
        selected.append(UploadedFile(name=name, mime_type=mime_type, content=content))
    keys = current.select_files(selected)
    return {"selected": keys}


@app.get("/files")
async def list_files(current: AnalysisSession = Depends(get_session)):
    return [
        {"key": key, "name": file.name, "mimeType": file.mime_type}
        for key, file in current.files
    ]


@app.delete("/files/{key}")
async def remove_file(key: str, current: AnalysisSession = Depends(get_session)):
    try:
        current.remove_file(key)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"File not found: {key}")
    return {"removed": key}


@app.delete("/files")
async def clear_files(current: AnalysisSession = Depends(get_session)):
    try:
        current.clear()
    except AnalysisInProgressError as e:
        raise HTTPException(status_code=409, detail=e.message)
    return {"cleared": True}


# --- Analysis ---

@app.post("/analyze", response_model=BatchResult)
def analyze_files(current: AnalysisSession = Depends(get_session)):
    """Runs one batch over the working set. Blocking; FastAPI runs it in its threadpool."""
    try:
        return current.analyze()
    except AnalysisInProgressError as e:
        raise HTTPException(status_code=409, detail=e.message)


# --- Results ---

@app.get("/results")
async def list_results(current: AnalysisSession = Depends(get_session)):
    return {
        "running": current.is_running,
        "cards": [card.to_dict() for card in current.result_cards()],
    }


@app.get("/results/export.xlsx", response_class=FileResponse)
async def export_results(background_tasks: BackgroundTasks, current: AnalysisSession = Depends(get_session)):
    """All successful tables of the last run in one workbook."""
    tables = current.tables
    if not tables:
        raise HTTPException(status_code=404, detail="No hay tablas para exportar.")

    settings.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(delete=False, suffix=".xlsx", dir=settings.OUTPUT_DIR) as temp_xlsx:
        output_path = Path(temp_xlsx.name)
    try:
        export_workbook(tables, output_path)
    except RuntimeError as re:
        cleanup_file(str(output_path))
        raise HTTPException(status_code=500, detail=str(re))

    background_tasks.add_task(cleanup_file, str(output_path))
    return FileResponse(
        path=output_path,
        filename="tablas_facturacion.xlsx",
        media_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    )


def _table_card(current: AnalysisSession, key: str):
    try:
        card = current.result_card(key)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No result for: {key}")
    if card.state != "table":
        raise HTTPException(status_code=404, detail=f"No table for: {key}")
    return card


@app.get("/results/{key}/csv")
async def download_csv(key: str, current: AnalysisSession = Depends(get_session)):
    filename, csv_text = _table_card(current, key).export()
    quoted = quote(filename)
    if quoted == filename:
        disposition = f'attachment; filename="{filename}"'
    else:
        disposition = f"attachment; filename*=utf-8''{quoted}"
    return Response(
        content=csv_text,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": disposition},
    )


@app.post("/results/{key}/copy", response_class=PlainTextResponse)
async def copy_csv(key: str, current: AnalysisSession = Depends(get_session)):
    return _table_card(current, key).copy()


@app.get("/results/{key}/table", response_class=HTMLResponse)
async def table_html(key: str, current: AnalysisSession = Depends(get_session)):
    return render_table(_table_card(current, key).rows)


@app.get("/")
async def root():
    return {"message": "Welcome to the Billing Table Extraction API. Upload files to /files, then POST /analyze."}

# --- To run the server (e.g., using uvicorn) ---
# uvicorn main:app --reload --host 0.0.0.0 --port 8000

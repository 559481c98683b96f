# processing.py
import concurrent.futures
import threading
from typing import Dict, List, Optional, Sequence, Tuple

from config import settings
from encoder import encode
from exceptions import (
    AnalysisInProgressError,
    ExtractionError,
    FileReadError,
    InvalidResponseFormat,
)
from extraction import ExtractionClient
from models import BatchResult, BillingRow, ExtractedTable, UploadedFile
from presentation import ResultCard
from utils import is_supported_file_type, log

TABLE_NOT_FOUND_MESSAGE = "No se encontró una tabla con el formato esperado en el archivo."
PROCESSING_ERROR_PREFIX = "Error al procesar el archivo."
INTERRUPTED_MESSAGE = f"{PROCESSING_ERROR_PREFIX} El análisis se interrumpió antes de terminar."


def _error_message(detail: str) -> str:
    return f"{PROCESSING_ERROR_PREFIX} {detail}".strip()


class AnalysisSession:
    """
    State of one user's working set and of the last analysis run.

    All changes go through the transition methods below. Results of a run are
    buffered per file and published together when every file has settled, so
    readers only ever see "loading" or the complete outcome.
    """

    def __init__(self, client: Optional[ExtractionClient] = None, max_workers: Optional[int] = None):
        self.client = client or ExtractionClient()
        self.max_workers = max_workers or settings.MAX_WORKERS
        self._lock = threading.Lock()
        self._files: Dict[str, UploadedFile] = {}  # display key -> file, in selection order
        self._loading: Dict[str, bool] = {}
        self._errors: Dict[str, str] = {}
        self._tables: List[ExtractedTable] = []
        self._table_cards: Dict[str, ResultCard] = {}
        # Buffers of the run in flight
        self._pending_tables: Dict[str, List[BillingRow]] = {}
        self._pending_errors: Dict[str, str] = {}

    # --- Read accessors ---

    @property
    def files(self) -> List[Tuple[str, UploadedFile]]:
        with self._lock:
            return list(self._files.items())

    @property
    def loading(self) -> Dict[str, bool]:
        with self._lock:
            return dict(self._loading)

    @property
    def errors(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._errors)

    @property
    def tables(self) -> List[ExtractedTable]:
        with self._lock:
            return list(self._tables)

    @property
    def is_running(self) -> bool:
        with self._lock:
            return any(self._loading.values())

    # --- File selection ---

    def _unique_key(self, name: str) -> str:
        if name not in self._files:
            return name
        n = 2
        while f"{name} ({n})" in self._files:
            n += 1
        return f"{name} ({n})"

    def select_files(self, files: Sequence[UploadedFile]) -> List[str]:
        """Appends files to the working set and returns the key given to each one."""
        keys = []
        with self._lock:
            for file in files:
                if not is_supported_file_type(file.name):
                    log.warning(f"File '{file.name}' does not have a supported extension; it will be sent anyway.")
                key = self._unique_key(file.name)
                self._files[key] = file
                keys.append(key)
        log.info(f"Selected {len(keys)} file(s); working set now has {len(self._files)}.")
        return keys

    def remove_file(self, key: str) -> UploadedFile:
        """Removes exactly the entry with this key. Raises KeyError if there is none."""
        with self._lock:
            file = self._files.pop(key)
        log.info(f"Removed '{key}' from the working set.")
        return file

    def clear(self) -> None:
        with self._lock:
            if any(self._loading.values()):
                raise AnalysisInProgressError("No se puede limpiar la selección mientras hay un análisis en curso.")
            self._files.clear()
            self._reset_results()
        log.info("Working set and results cleared.")

    # --- Run transitions ---

    def _reset_results(self) -> None:
        self._loading = {}
        self._errors = {}
        self._tables = []
        self._table_cards = {}
        self._pending_tables = {}
        self._pending_errors = {}

    def reset_for_new_run(self) -> None:
        """Drops every result and error of the previous run."""
        with self._lock:
            if any(self._loading.values()):
                raise AnalysisInProgressError("No se pueden descartar los resultados mientras hay un análisis en curso.")
            self._reset_results()

    def start_analysis(self) -> List[Tuple[str, UploadedFile]]:
        """Resets prior results, marks every file in progress and returns the run's files."""
        with self._lock:
            if any(self._loading.values()):
                raise AnalysisInProgressError("Ya hay un análisis en curso.")
            self._reset_results()
            run_files = list(self._files.items())
            self._loading = {key: True for key, _ in run_files}
        return run_files

    def complete_file(self, key: str, rows: Optional[List[BillingRow]] = None, error: Optional[str] = None) -> None:
        """Records the outcome of one file in the run buffers. Exactly one of rows/error."""
        if (rows is None) == (error is None):
            raise ValueError("complete_file needs exactly one of rows or error")
        with self._lock:
            if key not in self._loading:
                raise KeyError(key)
            if rows is not None and rows:
                self._pending_tables[key] = rows
            else:
                self._pending_errors[key] = error if error is not None else TABLE_NOT_FOUND_MESSAGE

    def finish_analysis(self) -> BatchResult:
        """
        Publishes the buffered outcome in one step and clears the loading flags.
        Files of the run that never reported back are published as errors.
        """
        with self._lock:
            for key in self._loading:
                if key not in self._pending_tables and key not in self._pending_errors:
                    self._pending_errors[key] = INTERRUPTED_MESSAGE
            tables = [
                ExtractedTable(file_name=key, rows=rows)
                for key, rows in sorted(self._pending_tables.items())
            ]
            self._tables = tables
            self._errors = dict(self._pending_errors)
            self._table_cards = {table.file_name: ResultCard(table.file_name, rows=table.rows) for table in tables}
            self._loading = {}
            self._pending_tables = {}
            self._pending_errors = {}
            return BatchResult(tables=list(self._tables), errors=dict(self._errors))

    # --- Orchestration ---

    def _process_file(self, file: UploadedFile) -> List[BillingRow]:
        payload = encode(file)
        return self.client.extract(payload)

    def analyze(self) -> BatchResult:
        """
        Runs one batch over the working set: every file is encoded and sent
        concurrently, failures are captured per file, and the outcome is
        published once all files have settled. An empty working set is a no-op.
        """
        with self._lock:
            if not self._files:
                log.info("Analyze requested with no files selected; nothing to do.")
                return BatchResult()

        run_files = self.start_analysis()
        workers = max(1, min(self.max_workers, len(run_files)))
        log.info(f"Submitting {len(run_files)} extraction tasks to {workers} workers.")

        try:
            with concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="Extractor") as executor:
                future_to_key = {
                    executor.submit(self._process_file, file): key
                    for key, file in run_files
                }
                for future in concurrent.futures.as_completed(future_to_key):
                    key = future_to_key[future]
                    try:
                        rows = future.result()
                    except FileReadError as e:
                        log.error(f"Could not read {key}: {e}")
                        self.complete_file(key, error=_error_message(str(e)))
                    except InvalidResponseFormat as e:
                        log.error(f"Invalid response format for {key}: {e.message}")
                        self.complete_file(key, error=_error_message(e.message))
                    except ExtractionError as e:
                        log.error(f"Extraction failed for {key}: {e.message}")
                        self.complete_file(key, error=_error_message(e.message))
                    except Exception as exc:
                        log.exception(f"Unexpected error processing {key}. Error: {exc}")
                        self.complete_file(key, error=_error_message(str(exc) or "Error desconocido."))
                    else:
                        if rows:
                            log.info(f"Extracted {len(rows)} rows from {key}")
                        else:
                            log.warning(f"No billing table found in {key}")
                        self.complete_file(key, rows=rows)
        finally:
            # Loading flags must never outlive the run, even if it is cut short
            result = self.finish_analysis()

        log.info(f"Analysis complete: {len(result.tables)} succeeded, {len(result.errors)} failed.")
        return result

    # --- Presentation ---

    def result_card(self, key: str) -> ResultCard:
        """Card for one file of the current working set or last run. Raises KeyError."""
        with self._lock:
            if self._loading.get(key):
                return ResultCard(key, is_loading=True)
            if key in self._errors:
                return ResultCard(key, error=self._errors[key])
            return self._table_cards[key]

    def result_cards(self) -> List[ResultCard]:
        """Loading and error cards in selection order, then table cards by file name."""
        with self._lock:
            cards = [ResultCard(key, is_loading=True) for key in self._files if self._loading.get(key)]
            cards += [ResultCard(key, error=self._errors[key]) for key in self._files if key in self._errors]
            # Files removed after the run still show their error
            cards += [ResultCard(key, error=msg) for key, msg in self._errors.items() if key not in self._files]
            cards += [self._table_cards[table.file_name] for table in self._tables]
            return cards


def analyze(files: Sequence[UploadedFile], client: Optional[ExtractionClient] = None) -> BatchResult:
    """Runs a single batch over `files` in a fresh session."""
    session = AnalysisSession(client=client)
    if files:
        session.select_files(files)
    return session.analyze()

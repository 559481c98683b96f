# presentation.py
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from config import settings
from models import BILLING_FIELDS, BillingRow, ExtractedTable
from utils import clean_filename, csv_filename, log

NO_DATA_MESSAGE = "No hay datos para mostrar."
EXCEL_SHEET_NAME_LIMIT = 31


def _quote(value: str, escape: bool) -> str:
    if escape:
        value = value.replace('"', '""')
    return f'"{value}"'


def to_csv(rows: Optional[Sequence[BillingRow]], escape: Optional[bool] = None) -> str:
    """
    Header line with the six column names, then one line per row with every
    value in double quotes. Embedded quotes, commas and newlines are written as
    they are unless `escape` is set, in which case quotes are doubled (RFC 4180).
    """
    if not rows:
        return ""
    if escape is None:
        escape = settings.ESCAPE_CSV_VALUES
    lines = [",".join(BILLING_FIELDS)]
    lines.extend(
        ",".join(_quote(value, escape) for value in row.ordered_values())
        for row in rows
    )
    return "\n".join(lines)


def to_dataframe(rows: Optional[Sequence[BillingRow]]) -> pd.DataFrame:
    return pd.DataFrame([row.ordered_values() for row in rows or []], columns=list(BILLING_FIELDS))


def render_table(rows: Optional[Sequence[BillingRow]]) -> str:
    """HTML table of the rows, or a short notice when there are none."""
    if not rows:
        return f"<p>{NO_DATA_MESSAGE}</p>"
    return to_dataframe(rows).to_html(index=False, border=0, classes="billing-table")


def _sheet_names(file_names: Sequence[str]) -> List[str]:
    """Excel-safe, unique sheet names derived from the source file names."""
    names: List[str] = []
    for file_name in file_names:
        base = clean_filename(Path(file_name).stem)[:EXCEL_SHEET_NAME_LIMIT] or "Hoja"
        candidate, n = base, 2
        while candidate.lower() in (existing.lower() for existing in names):
            suffix = f" ({n})"
            candidate = base[:EXCEL_SHEET_NAME_LIMIT - len(suffix)] + suffix
            n += 1
        names.append(candidate)
    return names


def export_workbook(tables: Sequence[ExtractedTable], output_path: Path) -> Path:
    """Writes every table to one .xlsx file, one sheet per source file."""
    if not tables:
        raise ValueError("No hay tablas para exportar.")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    sheet_names = _sheet_names([table.file_name for table in tables])
    try:
        log.info(f"Saving {len(tables)} table(s) to Excel: {output_path}")
        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            for table, sheet_name in zip(tables, sheet_names):
                to_dataframe(table.rows).to_excel(writer, sheet_name=sheet_name, index=False)
        log.info("Excel file saved successfully.")
    except Exception as e:
        log.exception(f"Failed to save tables to Excel file '{output_path}': {e}")
        raise RuntimeError(f"Failed to save results to Excel: {e!s}")
    return output_path


class ResultCard:
    """
    What the user sees for one file: a loading indicator, an error text, or the
    table with its copy and export actions.
    """

    def __init__(
        self,
        file_name: str,
        rows: Optional[List[BillingRow]] = None,
        is_loading: bool = False,
        error: Optional[str] = None,
    ):
        self.file_name = file_name
        self.rows = rows
        self.is_loading = is_loading
        self.error = error
        self._copied_at: Optional[float] = None

    @property
    def state(self) -> str:
        if self.is_loading:
            return "loading"
        if self.error:
            return "error"
        if self.rows is not None:
            return "table"
        return "empty"

    def is_copied(self, now: Optional[float] = None) -> bool:
        if self._copied_at is None:
            return False
        now = time.monotonic() if now is None else now
        return now - self._copied_at < settings.COPY_CONFIRMATION_SECONDS

    def copy(self, now: Optional[float] = None) -> str:
        """CSV text for the clipboard; shows the 'copied' confirmation for a short while."""
        if self.rows is None:
            return ""
        self._copied_at = time.monotonic() if now is None else now
        return to_csv(self.rows)

    def export(self) -> Tuple[str, str]:
        """(download file name, CSV text)."""
        return csv_filename(self.file_name), to_csv(self.rows)

    def to_dict(self) -> dict:
        card = {"fileName": self.file_name, "state": self.state}
        if self.error:
            card["error"] = self.error
        if self.rows is not None:
            card["rows"] = [row.model_dump(by_alias=True) for row in self.rows]
            card["copied"] = self.is_copied()
        return card

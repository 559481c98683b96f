# utils.py
import logging
import mimetypes
import os
import re
import sys
from pathlib import Path

# Import the centralized settings object
from config import settings

def setup_logger():
    """Configures and returns a logger based on settings."""
    logger = logging.getLogger("BillingExtractor")
    # Use LOG_LEVEL from settings, converting string to logging level
    log_level_int = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logger.setLevel(log_level_int)

    if logger.hasHandlers():
        logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(log_level_int)

    log_file_path = settings.LOG_FILE
    log_file_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file_path, mode='a')
    file_handler.setLevel(log_level_int)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(processName)s - %(threadName)s - %(message)s'
    )
    stdout_handler.setFormatter(formatter)
    file_handler.setFormatter(formatter)

    logger.addHandler(stdout_handler)
    logger.addHandler(file_handler)
    return logger

# Initialize logger (it will now use settings)
log = setup_logger()

def clean_filename(filename: str) -> str:
    """Removes problematic characters for file paths."""
    return "".join(c for c in filename if c.isalnum() or c in (' ', '.', '-', '_')).rstrip()

def is_supported_file_type(filename: str) -> bool:
    """Checks if a file has a supported extension using settings."""
    _, ext = os.path.splitext(filename)
    return ext.lower() in [e.lower() for e in settings.SUPPORTED_FILE_EXTENSIONS]

def get_mime_type(file_path: Path) -> str:
    """Determine the MIME type of a file based on its extension."""
    file_ext = file_path.suffix.lower()
    if file_ext == '.pdf':
        return "application/pdf"
    elif file_ext == '.png':
        return "image/png"
    elif file_ext in ['.jpg', '.jpeg']:
        return "image/jpeg"

    mime_type, _ = mimetypes.guess_type(str(file_path))
    if mime_type:
        return mime_type

    log.warning(f"Could not determine mime type for {file_path}, defaulting to octet-stream")
    return "application/octet-stream"

def csv_filename(filename: str) -> str:
    """
    Download name for a file's CSV export: the extension is replaced by '.csv'.
    'recibo.enero.pdf' -> 'recibo.enero.csv', 'recibo' -> 'recibo.csv'.
    Duplicate display keys keep their counter: 'recibo.pdf (2)' -> 'recibo (2).csv'.
    """
    # (\d+) counter appended to duplicate file names in the working set
    match = re.match(r'^(.*\S) \((\d+)\)$', filename)
    suffix = ""
    if match:
        filename, suffix = match.group(1), f" ({match.group(2)})"
    stem, _ = os.path.splitext(filename)
    return f"{stem}{suffix}.csv"

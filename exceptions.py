# exceptions.py
from typing import Optional


class FileReadError(IOError):
    """A selected file could not be read. Fails that file only."""


class BillingExtractorError(Exception):
    """Base class for errors raised by the extraction pipeline."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ExtractionError(BillingExtractorError):
    """
    Transport or service failure: missing credential on the bridge, non-success
    status, network failure. `message` is meant to be shown to the user as is.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidResponseFormat(BillingExtractorError):
    """The service answered with success but the body is not a valid billing table."""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response


class AnalysisInProgressError(BillingExtractorError):
    """A batch was requested while another one is still running on the same session."""

import base64
import os
import threading

os.environ.setdefault("API_KEY", "test-key")
os.environ.setdefault("LOG_FILE", "logs/test_app.log")
os.environ.setdefault("OUTPUT_DIR", "test_exports")

import pytest  # noqa: E402

from models import BILLING_FIELDS, BillingRow, UploadedFile  # noqa: E402


def make_row(periodo: str = "Enero", **overrides) -> BillingRow:
    values = dict(zip(BILLING_FIELDS, [periodo, "10", "100", "0.9", "0.5", "1.2"]))
    values.update(overrides)
    return BillingRow.model_validate(values)


def make_file(name: str, mime_type: str = "application/pdf") -> UploadedFile:
    # The content is the file name so fake clients can tell files apart from the payload.
    return UploadedFile(name=name, mime_type=mime_type, content=name.encode())


class FakeClient:
    """
    Stands in for ExtractionClient. `outcomes` maps a file name to the rows to
    return or the exception to raise; `wait_for` maps a file name to an Event
    that must be set before that file completes.
    """

    def __init__(self, outcomes, wait_for=None):
        self.outcomes = outcomes
        self.wait_for = wait_for or {}
        self.done = {name: threading.Event() for name in outcomes}
        self.calls = []
        self._lock = threading.Lock()

    def extract(self, payload):
        name = base64.b64decode(payload.data).decode()
        with self._lock:
            self.calls.append(name)
        try:
            event = self.wait_for.get(name)
            if event is not None:
                assert event.wait(timeout=5), f"{name} waited too long"
            outcome = self.outcomes[name]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.done[name].set()


@pytest.fixture()
def row() -> BillingRow:
    return make_row()

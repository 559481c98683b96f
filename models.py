# models.py
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, RootModel, model_validator

# Column order of the billing table. Also the wire names of BillingRow.
BILLING_FIELDS = (
    "Periodo",
    "Demanda",
    "Consumo Total",
    "Factor de potencia",
    "Factor de Carga",
    "Precio Medio",
)


# --- Input files ---

class UploadedFile(BaseModel):
    """
    A document selected by the user. Either the bytes are held in memory
    (browser/multipart upload) or a path is kept and read on demand.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    mime_type: str = ""  # As declared by the selection mechanism; may be empty
    content: Optional[bytes] = Field(default=None, repr=False)
    path: Optional[Path] = None

    @model_validator(mode="after")
    def _has_source(self):
        if self.content is None and self.path is None:
            raise ValueError(f"UploadedFile '{self.name}' needs either content or a path")
        return self

    def read(self) -> bytes:
        """Returns the whole file. Raises OSError if the path cannot be read."""
        if self.content is not None:
            return self.content
        return self.path.read_bytes()


# --- Wire models shared by the Extraction Client and the bridge ---

class EncodedPayload(BaseModel):
    """Base64 representation of a file plus its declared media type."""
    model_config = ConfigDict(populate_by_name=True)

    data: str
    mime_type: str = Field(alias="mimeType")


class ExtractionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_data: EncodedPayload = Field(alias="fileData")


class ErrorResponse(BaseModel):
    error: str


# --- Billing table ---

class BillingRow(BaseModel):
    """
    One row of the billing table. Values are free text (numbers without units);
    numeric-ness is not checked. Exactly the six string fields are accepted.
    """
    model_config = ConfigDict(extra="forbid", strict=True, frozen=True)

    periodo: str = Field(alias="Periodo")
    demanda: str = Field(alias="Demanda")
    consumo_total: str = Field(alias="Consumo Total")
    factor_de_potencia: str = Field(alias="Factor de potencia")
    factor_de_carga: str = Field(alias="Factor de Carga")
    precio_medio: str = Field(alias="Precio Medio")

    def ordered_values(self) -> List[str]:
        """The six values in BILLING_FIELDS order."""
        record = self.model_dump(by_alias=True)
        return [record[name] for name in BILLING_FIELDS]


class BillingTable(RootModel[List[BillingRow]]):
    """The schema-constrained model reply: a JSON array of BillingRow objects."""


# --- Results ---

class ExtractedTable(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(alias="fileName")
    rows: List[BillingRow]


class BatchResult(BaseModel):
    """
    Outcome of one analysis run. Every submitted file ends up in exactly one of
    `tables` (sorted by file name) or `errors`.
    """
    tables: List[ExtractedTable] = []
    errors: Dict[str, str] = {}

    @property
    def succeeded(self) -> List[str]:
        return [table.file_name for table in self.tables]

    @property
    def failed(self) -> List[str]:
        return sorted(self.errors)

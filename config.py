# config.py
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from google.genai import types
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Import models that AppSettings references
from models import BILLING_FIELDS

# Load environment variables from a .env file if present
load_dotenv()

# --- Prompt sent with every document ---
# Kept in Spanish: the bills (CFE) and the column names are Spanish.
_COLUMN_LIST = ", ".join(f'"{name}"' for name in BILLING_FIELDS[:-1]) + f' y "{BILLING_FIELDS[-1]}"'

DEFAULT_EXTRACTION_PROMPT = (
    "Analiza la imagen o documento y extrae la información de la tabla de facturación. "
    f"La tabla debe contener las siguientes {len(BILLING_FIELDS)} columnas: {_COLUMN_LIST}. "
    "Ignora cualquier otra tabla o texto. "
    "Si la tabla no se encuentra, devuelve un arreglo vacío. "
    "Asegúrate de que los valores sean cadenas de texto. "
    "No incluyas unidades en los valores numéricos, solo el número."
)


class AppSettings(BaseSettings):
    """
    Centralized application settings managed by Pydantic.
    Loads from environment variables and .env file.
    """
    # --- Gemini Configuration ---
    API_KEY: Optional[str] = Field(default=None, validation_alias=AliasChoices("API_KEY", "GEMINI_API_KEY"))
    USE_VERTEXAI: bool = False
    GOOGLE_CLOUD_PROJECT: Optional[str] = None  # Only read when USE_VERTEXAI is set
    LOCATION: str = "us-central1"
    MODEL_NAME: str = Field(default="gemini-2.5-flash", validation_alias=AliasChoices("GEMINI_MODEL", "MODEL_NAME"))

    # --- Safety Settings ---
    # Stored as strings so they can come from the environment as JSON; converted to SDK objects on use.
    SAFETY_SETTINGS_CONFIG: Dict[str, str] = {
        "HARM_CATEGORY_HATE_SPEECH": "BLOCK_NONE",
        "HARM_CATEGORY_DANGEROUS_CONTENT": "BLOCK_NONE",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT": "BLOCK_NONE",
        "HARM_CATEGORY_HARASSMENT": "BLOCK_NONE",
    }

    # --- Bridge (Extraction Client side) ---
    BRIDGE_URL: str = "http://localhost:8000/api/extract"
    BRIDGE_TIMEOUT_SECONDS: Optional[float] = None  # None: whatever the transport/service imposes

    # --- Supported File Types (picker filter hint) ---
    SUPPORTED_MIME_TYPES: Dict[str, str] = {
        "application/pdf": "PDF",
        "image/png": "PNG",
        "image/jpeg": "JPEG",
        "image/jpg": "JPEG"
    }
    SUPPORTED_FILE_EXTENSIONS: List[str] = [".pdf", ".png", ".jpg", ".jpeg"]

    # --- Processing Configuration ---
    MAX_WORKERS: int = Field(default=8, ge=1)
    OUTPUT_DIR_STR: str = Field(default="exports", validation_alias=AliasChoices("OUTPUT_DIR", "OUTPUT_DIR_STR"))

    # --- Presentation ---
    COPY_CONFIRMATION_SECONDS: float = 2.0
    ESCAPE_CSV_VALUES: bool = False

    # --- Logging Configuration ---
    LOG_FILE_PATH_STR: str = Field(default="app_log.log", validation_alias=AliasChoices("LOG_FILE", "LOG_FILE_PATH_STR"))
    LOG_LEVEL: str = "INFO"

    # --- Prompt ---
    EXTRACTION_PROMPT: str = DEFAULT_EXTRACTION_PROMPT

    @field_validator("SAFETY_SETTINGS_CONFIG")
    @classmethod
    def _check_safety_names(cls, v: Dict[str, str]) -> Dict[str, str]:
        for category, threshold in v.items():
            if category not in types.HarmCategory.__members__:
                raise ValueError(f"Unknown harm category: {category}")
            if threshold not in types.HarmBlockThreshold.__members__:
                raise ValueError(f"Unknown harm block threshold: {threshold}")
        return v

    @property
    def safety_settings(self) -> List[types.SafetySetting]:
        return [
            types.SafetySetting(
                category=types.HarmCategory[category],
                threshold=types.HarmBlockThreshold[threshold],
            )
            for category, threshold in self.SAFETY_SETTINGS_CONFIG.items()
        ]

    @property
    def credential_error(self) -> Optional[str]:
        """Descriptive message when the bridge has no credential to call the model with."""
        if self.USE_VERTEXAI:
            if not self.GOOGLE_CLOUD_PROJECT:
                return "La variable de entorno GOOGLE_CLOUD_PROJECT no está configurada."
            return None
        if not self.API_KEY:
            return "La variable de entorno API_KEY no está configurada."
        return None

    @property
    def OUTPUT_DIR(self) -> Path:
        return Path(self.OUTPUT_DIR_STR)

    @property
    def LOG_FILE(self) -> Path:
        return Path(self.LOG_FILE_PATH_STR)

    # Pydantic settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",                # Load .env file
        env_file_encoding='utf-8',      # Encoding for .env file
        extra='ignore',                 # Ignore extra fields from environment
        case_sensitive=False,           # Environment variable names are case-insensitive
        populate_by_name=True           # Allow AppSettings(MODEL_NAME=...) alongside the env aliases
    )

# --- Instantiate settings ---
# This single 'settings' instance will be imported by other modules.
settings = AppSettings()

"""
Configuration for drivelog

Every setting comes from the environment (or a `.env` file) through
pydantic-settings, grouped by the component that reads it.

DESIGN DECISION: Sections are built lazily. A local run without Google
credentials or a Gemini key still gets working ledger and validation
settings; only the component that needs a missing value fails.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Trip ledger configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    cache_ttl_seconds: float = Field(
        default=300.0,
        ge=0.0,
        description="How long a read of the ledger may be served from cache"
    )
    legacy_store_dir: str = Field(
        default=".drivelog/legacy",
        description="Directory holding pre-migration ledger JSON files"
    )


class GoogleSheetsSettings(BaseSettings):
    """Where the ledger, projects and audit trail are stored."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Service account key file (JSON)"
    )
    spreadsheet_id: str = Field(
        ...,
        description="Key of the spreadsheet holding all drivelog worksheets"
    )

    # One worksheet per record type
    ledger_sheet_name: str = Field(
        default="TripLedger",
        description="Worksheet for ledger entries"
    )
    batches_sheet_name: str = Field(
        default="TripBatches",
        description="Worksheet for import batch records"
    )
    projects_sheet_name: str = Field(
        default="Projects",
        description="Worksheet for projects and their callsheets"
    )
    documents_sheet_name: str = Field(
        default="ExpenseDocuments",
        description="Worksheet for invoices and receipts"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Worksheet for audit events"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """A missing key file is only a warning; it may be mounted at deploy time."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Service account key not found at {v}. "
                "Sheets storage will fail to connect until it is present."
            )
        return v


class GeminiSettings(BaseSettings):
    """Gemini model used for callsheet extraction."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Google AI Studio API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Model that reads callsheets"
    )
    max_tokens: int = Field(
        default=2048,
        ge=100,
        le=8192,
        description="Upper bound on response length"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Sampling temperature; extraction wants it near zero"
    )


class AppSettings(BaseSettings):
    """
    Application-wide settings and trip validation thresholds.

    Read from the environment and `.env`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Trip validation thresholds
    max_trip_distance_km: float = Field(
        default=1500.0,
        gt=0.0,
        description="Distance above which a single trip is flagged as implausible"
    )
    max_passengers: int = Field(
        default=8,
        ge=0,
        description="Passenger count above which a trip is flagged"
    )
    future_date_tolerance_days: int = Field(
        default=0,
        ge=0,
        description="How many days in the future a trip date may be"
    )


class Settings(BaseSettings):
    """
    Entry point to every settings section.

    Each property builds its section on access, so a section with missing
    required values only fails where it is used.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Process-wide settings.

    Tests that change the environment call `get_settings.cache_clear()`.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try to build every settings section.

    Returns {section: ok} plus a `<section>_error` message for each section
    that failed, for a startup health check.
    """
    results = {}
    settings = get_settings()

    for name in ("ledger", "google_sheets", "gemini", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

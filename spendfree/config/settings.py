"""
Configuration Management for SpendFree

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Storage backend selection and the consistency rules that are a product
decision (strict references, cascaded card checks) live in one place
and are validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    settings_sheet_name: str = Field(
        default="UserSettings",
        description="Name of the sheet for per-user taxonomy"
    )
    expenses_sheet_name: str = Field(
        default="Expenses",
        description="Name of the sheet for expenses"
    )
    budgets_sheet_name: str = Field(
        default="Budgets",
        description="Name of the sheet for monthly budgets"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Level for the stdlib logger structlog writes through"
    )

    # Storage
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Which storage backend to wire up"
    )

    # Consistency rules
    strict_references: bool = Field(
        default=False,
        description=(
            "Reject expenses and cards whose references do not resolve "
            "against the owner's settings (default: report as warnings)"
        )
    )
    verify_cascaded_cards: bool = Field(
        default=True,
        description=(
            "Usage-check every card removed along with its bank and block "
            "the bank removal if any of them is referenced"
        )
    )

    # Validation thresholds
    max_expense_amount: float = Field(
        default=10000000.0,
        gt=0,
        description="Amount above which an expense is flagged as suspicious"
    )
    future_date_tolerance_days: int = Field(
        default=7,
        ge=0,
        description="How many days in the future an expense date can be"
    )
    max_description_length: int = Field(
        default=500,
        ge=1,
        description="Longest description accepted without a warning"
    )

    # Onboarding
    default_categories: str = Field(
        default="Food,Shopping,Entertainment,Travel,Cabs,Grocery",
        description="Comma-separated categories offered to new users"
    )
    currency: str = Field(
        default="INR",
        min_length=3,
        max_length=3,
        description="ISO currency code used for statements"
    )

    @property
    def default_categories_list(self) -> list[str]:
        """Get default categories as a list."""
        return [c.strip() for c in self.default_categories.split(",") if c.strip()]


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily so the in-memory backend runs
    # without any Google credentials configured.

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Google Sheets is only checked when it is the selected backend.
    """
    results = {}

    settings = get_settings()

    try:
        app = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)
        return results

    if app.storage_backend == "google_sheets":
        try:
            _ = settings.google_sheets
            results["google_sheets"] = True
        except Exception as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    return results

"""
Configuration Management for Debt Mirror

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Local storage, guest session rules and the cloud backend are each
configured by their own settings class with their own env prefix.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LocalStorageSettings(BaseSettings):
    """On-device key-value storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOCAL_STORAGE_",
        extra="ignore"
    )

    database_path: Path = Field(
        default=Path.home() / ".debt_mirror" / "guest.db",
        description="SQLite file holding the guest key-value namespace"
    )
    key_prefix: str = Field(
        default="@debt_mirror_guest",
        min_length=1,
        description="Prefix for every guest collection key"
    )


class GuestSessionSettings(BaseSettings):
    """Guest session lifetime rules."""

    model_config = SettingsConfigDict(
        env_prefix="GUEST_SESSION_",
        extra="ignore"
    )

    duration_months: int = Field(
        default=2,
        ge=1,
        le=12,
        description="How many calendar months a guest session stays valid"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets cloud table configuration."""

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

    # Worksheet names within the spreadsheet
    debts_sheet_name: str = Field(
        default="debts",
        description="Name of the worksheet for debts"
    )
    income_sheet_name: str = Field(
        default="income",
        description="Name of the worksheet for income sources"
    )
    transactions_sheet_name: str = Field(
        default="debt_transactions",
        description="Name of the worksheet for debt transactions"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the worksheet for audit logs"
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

    def sheet_name_for(self, table: str) -> str:
        """Map a logical table name to its worksheet name."""
        names = {
            "debts": self.debts_sheet_name,
            "income": self.income_sheet_name,
            "debt_transactions": self.transactions_sheet_name,
        }
        return names.get(table, table)


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

    default_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Currency code used when a record does not carry one"
    )

    @field_validator('default_currency')
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()


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

    # Note: These are loaded lazily to allow partial configuration.
    # A guest-only install never needs Google Sheets credentials.

    @property
    def local_storage(self) -> LocalStorageSettings:
        return LocalStorageSettings()

    @property
    def guest_session(self) -> GuestSessionSettings:
        return GuestSessionSettings()

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
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("local_storage", "guest_session", "google_sheets", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

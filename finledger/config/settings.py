"""
Configuration Management for FinLedger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: One settings class per external concern (remote web app,
spreadsheet, sync behaviour, application), each with its own env prefix.
Groups are loaded lazily, so an offline run with the memory backend never
needs remote credentials.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RemoteSettings(BaseSettings):
    """Google Apps Script web app (the remote ledger) configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_REMOTE_",
        extra="ignore"
    )

    script_url: str = Field(
        ...,
        description="Deployed web app URL (ends in /exec)"
    )
    pin: str = Field(
        ...,
        min_length=1,
        description="Shared PIN sent with every request"
    )
    # Network-layer timeout. The coordinator itself never times out a write.
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for a single request"
    )
    max_fetch_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for snapshot fetches before giving up"
    )

    @field_validator('script_url')
    @classmethod
    def validate_script_url(cls, v: str) -> str:
        """Only http(s) URLs make sense here."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"script_url must be an http(s) URL, got: {v}")
        return v


class GoogleSheetsSettings(BaseSettings):
    """Direct Google Sheets access configuration."""

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
    cards_sheet_name: str = Field(default="Tarjetas")
    pending_sheet_name: str = Field(default="Gastos_Pendientes")
    expenses_sheet_name: str = Field(default="Gastos")
    incomes_sheet_name: str = Field(default="Ingresos")
    payments_sheet_name: str = Field(default="Pagos")
    goals_sheet_name: str = Field(default="Metas")
    profile_sheet_name: str = Field(default="Perfil")

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """A missing key file is only a warning; GoogleSheetsClient fails on connect."""
        if not Path(v).is_file():
            import warnings
            warnings.warn(f"Service account key not found at {v}; the sheets backend cannot connect yet.")
        return v


class SyncSettings(BaseSettings):
    """Optimistic sync configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        extra="ignore"
    )

    resync_delay_seconds: float = Field(
        default=1.5,
        ge=0.0,
        le=60.0,
        description="Delay between a successful remote write and the full resync"
    )
    reconcile_policy: str = Field(
        default="defer_when_in_flight",
        pattern="^(defer_when_in_flight|server_wins)$",
        description="How a resync treats commands that are still in flight"
    )
    history_size: int = Field(
        default=200,
        ge=1,
        description="Reconciled commands kept for inspection; unsettled ones are always kept"
    )


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

    backend: str = Field(
        default="apps_script",
        pattern="^(apps_script|google_sheets|memory)$",
        description="Which remote gateway to use"
    )

    # Ledger semantics
    wallet_alias: str = Field(
        default="Billetera",
        min_length=1,
        description="Alias of the cash wallet account"
    )


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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def remote(self) -> RemoteSettings:
        return RemoteSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with an extra
    "<name>_error" entry for every group that failed to load.
    """
    results = {}
    settings = get_settings()

    for name in ("remote", "google_sheets", "sync", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

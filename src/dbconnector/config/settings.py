"""Application settings read from the environment and ``.env``."""

from typing import Optional, Dict, Any
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FirebaseSettings(BaseSettings):
    """Firebase / Cloud Firestore configuration."""

    api_key: Optional[str] = None
    project_id: Optional[str] = None
    auth_domain: Optional[str] = None
    database: str = "(default)"
    credentials_path: Optional[str] = None
    auth_timeout_seconds: Optional[float] = None

    model_config = SettingsConfigDict(env_prefix="FIREBASE_", env_file=".env", extra="ignore")


class SupabaseSettings(BaseSettings):
    """Supabase configuration."""

    url: Optional[str] = None
    anon_key: Optional[str] = None
    schema_name: str = "public"

    model_config = SettingsConfigDict(env_prefix="SUPABASE_", env_file=".env", extra="ignore")


class AzureSettings(BaseSettings):
    """Azure Cosmos DB configuration."""

    endpoint: Optional[str] = None
    key: Optional[str] = None
    database_id: str = "FineGuardDB"
    partition_key: str = "id"
    poll_interval_seconds: float = 5.0

    model_config = SettingsConfigDict(env_prefix="AZURE_COSMOS_", env_file=".env", extra="ignore")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"
    file_path: Optional[str] = None

    model_config = SettingsConfigDict(env_prefix="LOG_", env_file=".env", extra="ignore")


class AppSettings(BaseSettings):
    """Main application settings."""

    name: str = "dbconnector"
    version: str = "0.1.0"
    environment: str = "development"
    provider: Optional[str] = Field(default=None, description="Active provider tag")

    firebase: FirebaseSettings = Field(default_factory=FirebaseSettings)
    supabase: SupabaseSettings = Field(default_factory=SupabaseSettings)
    azure: AzureSettings = Field(default_factory=AzureSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_prefix="DBCONNECTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def provider_section(self, provider: str) -> Optional[Dict[str, Any]]:
        """Return the non-empty settings for ``provider`` as a plain dict."""
        section = getattr(self, provider, None)
        if not isinstance(section, BaseSettings):
            return None

        values = section.model_dump(exclude_none=True)
        # Defaults alone do not make a usable provider section
        required = {name for name, field in type(section).model_fields.items() if field.default is None}
        if not required & values.keys():
            return None
        return values


_settings: Optional[AppSettings] = None


def get_settings(reload: bool = False) -> AppSettings:
    """Get application settings, reading the environment on first use."""
    global _settings

    if _settings is None or reload:
        _settings = AppSettings()

    return _settings

"""Configuration schema for the connector and its providers."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class ProviderType(str, Enum):
    """Built-in backend providers."""
    FIREBASE = "firebase"
    SUPABASE = "supabase"
    AZURE = "azure"


class ProviderConfig(BaseModel):
    """Base model for provider sub-configs; accepts snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FirebaseConfig(ProviderConfig):
    """Firebase web-app configuration plus connector options."""

    # Web-app configs carry extra keys (storageBucket, appId, ...) that are kept as-is
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    api_key: str = Field(..., min_length=1, description="Firebase web API key")
    project_id: str = Field(..., min_length=1, description="Google Cloud project id")
    auth_domain: Optional[str] = Field(None, description="Firebase auth domain")
    database: str = Field(default="(default)", description="Firestore database id")
    credentials_path: Optional[str] = Field(None, description="Service account JSON file")
    auth_timeout_seconds: Optional[float] = Field(
        None, description="Upper bound on the initial auth-state wait; None waits forever"
    )

    @field_validator("auth_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v):
        if v is not None and v <= 0:
            raise ValueError("auth_timeout_seconds must be positive")
        return v


class SupabaseConfig(ProviderConfig):
    """Supabase project configuration."""

    url: str = Field(..., min_length=1, description="Supabase project URL")
    anon_key: str = Field(..., min_length=1, description="Supabase anonymous key")
    schema_name: str = Field(default="public", description="Postgres schema for realtime filters")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("Supabase url must be an http(s) URL")
        return v.rstrip("/")


class AzureConfig(ProviderConfig):
    """Azure Cosmos DB (SQL API) configuration."""

    endpoint: str = Field(..., min_length=1, description="Cosmos account endpoint")
    key: str = Field(..., min_length=1, description="Base64 master key")
    database_id: str = Field(default="FineGuardDB", description="Cosmos database id")
    partition_key: str = Field(default="id", description="Field holding the partition key value")
    poll_interval_seconds: float = Field(default=5.0, description="Snapshot polling interval")
    api_version: str = Field(default="2018-12-31", description="x-ms-version header")
    request_timeout_seconds: float = Field(default=30.0, description="Per-request timeout")

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("Cosmos endpoint must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("poll_interval_seconds", "request_timeout_seconds")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("Interval and timeout values must be positive")
        return v


def config_key(provider: str) -> str:
    """Name of the sub-config field for ``provider`` (``azure`` -> ``azure_config``)."""
    return f"{provider}_config"


class ConnectorConfig(BaseModel):
    """Root connector configuration: a provider tag plus its matching sub-config."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    provider: ProviderType = Field(..., description="Backend provider to use")
    firebase_config: Optional[FirebaseConfig] = None
    supabase_config: Optional[SupabaseConfig] = None
    azure_config: Optional[AzureConfig] = None

    @model_validator(mode="after")
    def check_provider_config(self):
        if self.provider_config is None:
            raise ValueError(
                f"{self.provider.value} provider requires {config_key(self.provider.value)}"
            )
        return self

    @property
    def provider_config(self) -> Optional[ProviderConfig]:
        return getattr(self, config_key(self.provider.value))

    def to_mapping(self) -> Dict[str, Any]:
        """Plain ``{provider, <provider>_config}`` mapping for ``create_connector``."""
        return {
            "provider": self.provider.value,
            config_key(self.provider.value): self.provider_config.model_dump(),
        }


# Printed or saved by `dbconnector example`
AZURE_CONFIG_EXAMPLE = ConnectorConfig(
    provider=ProviderType.AZURE,
    azure_config=AzureConfig(
        endpoint="https://fineguard.documents.azure.com:443",
        key="c2VjcmV0LW1hc3Rlci1rZXk=",
        database_id="FineGuardDB",
        poll_interval_seconds=5.0,
    ),
)

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_ALIASES = {
    "prod": "production",
    "production": "production",
    "stage": "staging",
    "staging": "staging",
    "dev": "development",
    "development": "development",
}

# (attribute, env var) pairs that must be set when NODE_ENV is production.
_REQUIRED_IN_PRODUCTION = (
    ("cognito_user_pool_id", "COGNITO_USER_POOL_ID"),
    ("cognito_client_id", "COGNITO_CLIENT_ID"),
    ("ddb_table_name", "DDB_TABLE_NAME"),
    ("ses_from_email", "SES_FROM_EMAIL"),
)

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


def _is_set(value: object) -> bool:
    return value is not None and str(value).strip() != ""


class Settings(BaseSettings):
    """Process configuration, read once from the environment."""

    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    environment: str = Field(default="development", validation_alias="NODE_ENV")
    port: int = Field(default=8080, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # App URL; portal links in data-call emails are built from it too.
    frontend_base_url: str = Field(default="https://app.proposaliq.ai", validation_alias="FRONTEND_BASE_URL")
    frontend_urls: str | None = Field(default=None, validation_alias="FRONTEND_URLS")

    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    ddb_table_name: str | None = Field(default=None, validation_alias="DDB_TABLE_NAME")
    # http://localhost:8000 for DynamoDB Local.
    ddb_endpoint_url: str | None = Field(default=None, validation_alias="DDB_ENDPOINT_URL")
    assets_bucket_name: str | None = Field(default=None, validation_alias="ASSETS_BUCKET_NAME")

    cognito_user_pool_id: str | None = Field(default=None, validation_alias="COGNITO_USER_POOL_ID")
    cognito_client_id: str | None = Field(default=None, validation_alias="COGNITO_CLIENT_ID")
    cognito_region: str = Field(default="us-east-1", validation_alias="COGNITO_REGION")

    ses_from_email: str | None = Field(default=None, validation_alias="SES_FROM_EMAIL")

    portal_rate_limit_rpm: int = Field(default=120, validation_alias="PORTAL_RATE_LIMIT_RPM")
    data_call_token_ttl_days: int = Field(default=30, validation_alias="DATA_CALL_TOKEN_TTL_DAYS")
    file_fetch_max_bytes: int = Field(default=25 * 1024 * 1024, validation_alias="FILE_FETCH_MAX_BYTES")

    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_project_id: str | None = Field(default=None, validation_alias="OPENAI_PROJECT_ID")
    openai_organization_id: str | None = Field(default=None, validation_alias="OPENAI_ORG_ID")
    openai_model: str = Field(default=DEFAULT_OPENAI_MODEL, validation_alias="OPENAI_MODEL")
    openai_model_chunk_summary: str | None = Field(default=None, validation_alias="OPENAI_MODEL_CHUNK_SUMMARY")
    openai_model_document_extraction: str | None = Field(
        default=None, validation_alias="OPENAI_MODEL_DOCUMENT_EXTRACTION"
    )
    openai_model_file_extraction: str | None = Field(default=None, validation_alias="OPENAI_MODEL_FILE_EXTRACTION")
    # Upper bound applied to every completion's output tokens.
    openai_max_output_tokens_cap: int = Field(default=4000, validation_alias="OPENAI_MAX_OUTPUT_TOKENS_CAP")

    @property
    def normalized_environment(self) -> str:
        raw = (self.environment or "").strip().lower()
        return _ENV_ALIASES.get(raw, raw or "development")

    @property
    def is_production(self) -> bool:
        return self.normalized_environment == "production"

    def require_in_production(self) -> None:
        """Raise when production is missing core config; other environments may run partially configured."""
        if not self.is_production:
            return
        missing = [env for attr, env in _REQUIRED_IN_PRODUCTION if not _is_set(getattr(self, attr))]
        if missing:
            raise RuntimeError(f"Production is missing required environment variables: {', '.join(missing)}")

    def openai_model_for(self, purpose: str) -> str:
        key = (purpose or "").strip().lower()
        override = getattr(self, f"openai_model_{key}", None) if key else None
        if _is_set(override):
            return str(override).strip()
        return str(self.openai_model or "").strip() or DEFAULT_OPENAI_MODEL

    def to_log_safe_dict(self) -> dict[str, object]:
        """Startup snapshot for logs. Secrets are reported as configured/not configured only."""
        return {
            "environment": self.normalized_environment,
            "port": self.port,
            "log_level": self.log_level,
            "frontend": {"base_url": self.frontend_base_url, "extra_origins": self.frontend_urls},
            "aws": {
                "region": self.aws_region,
                "table": self.ddb_table_name,
                "table_endpoint": self.ddb_endpoint_url,
                "assets_bucket": self.assets_bucket_name,
            },
            "auth": {
                "user_pool_id": self.cognito_user_pool_id,
                "client_id": self.cognito_client_id,
                "region": self.cognito_region,
            },
            "integrations": {
                "openai_api_key_configured": _is_set(self.openai_api_key),
                "openai_model": self.openai_model,
                "ses_from_email_configured": _is_set(self.ses_from_email),
            },
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings()
    s.require_in_production()
    return s


settings = get_settings()

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = Field("invoice-extractor-api", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Hosted vision model (OpenAI-compatible). Unset key = mock extraction.
    llm_base_url: str | None = Field(default=None, alias="LLM_BASE_URL")
    llm_api_key: str | None = Field(default=None, alias="LLM_API_KEY")
    llm_model: str = Field("gpt-4o", alias="LLM_MODEL")
    llm_timeout_seconds: float = Field(60.0, alias="LLM_TIMEOUT_SECONDS")
    llm_max_retries: int = Field(2, alias="LLM_MAX_RETRIES")

    # Validation
    # "deterministic": extract, then compare locally with the reconciler
    # "model": the hosted model compares form values against the image
    validation_mode: Literal["deterministic", "model"] = Field("deterministic", alias="VALIDATION_MODE")
    # Empty form field + value found on the invoice counts as an error
    strict_missing_field_policy: bool = Field(True, alias="VALIDATION_STRICT_MISSING_FIELDS")

    # Form recalculation after a line item edit
    form_tax_rate: float = Field(0.1, alias="FORM_TAX_RATE")

    # Uploads
    max_upload_bytes: int = Field(10 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")

    # CORS allowed origins (comma-separated list for production deployment)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

settings = Settings()

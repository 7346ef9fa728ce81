from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


IMAGE_MODEL_CHOICES: dict[str, str] = {
    "imagen-4.0-generate-001": "Imagen 4.0",
    "imagen-3.0-generate-002": "Imagen 3.0",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="LOG_FILE")

    google_cloud_project: str | None = Field(default=None, validation_alias="GOOGLE_CLOUD_PROJECT")
    google_cloud_location: str = Field(default="us-central1", validation_alias="GOOGLE_CLOUD_LOCATION")

    gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    gemini_text_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_TEXT_MODEL")
    gemini_image_model: str = Field(
        default="gemini-2.5-flash-image-preview",
        validation_alias="GEMINI_IMAGE_MODEL",
    )
    imagen_default_model: str = Field(
        default="imagen-4.0-generate-001",
        validation_alias="IMAGEN_DEFAULT_MODEL",
    )
    gemini_timeout_seconds: float = Field(default=120.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
    gemini_circuit_breaker_threshold: int = Field(
        default=5,
        validation_alias="GEMINI_CIRCUIT_BREAKER_THRESHOLD",
    )
    gemini_circuit_breaker_timeout: int = Field(
        default=60,
        validation_alias="GEMINI_CIRCUIT_BREAKER_TIMEOUT",
    )

    max_characters: int = Field(default=3, validation_alias="MAX_CHARACTERS")
    back_cover_credit: str = Field(default="Created with SONICS.ai", validation_alias="BACK_COVER_CREDIT")
    session_max_age_seconds: float = Field(default=6 * 60 * 60, validation_alias="SESSION_MAX_AGE_SECONDS")


settings = Settings()

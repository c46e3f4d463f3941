from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central settings object.
    Render will provide env vars; locally you can use backend/.env.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # API keys
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"

    # Upload limits
    MIN_UPLOAD_FILES: int = 2
    MAX_UPLOAD_FILES: int = 10
    MAX_FILE_SIZE_MB: int = 10

    # Extraction
    EXTRACTION_CONCURRENCY: int = 3
    MAX_TEXT_CHARS: int = 12000

    LOG_LEVEL: str = "INFO"

    # Versioning
    APP_VERSION: str = "0.1.0"
    BUILD_ID: str = "dev"


# ✅ MUST EXIST: other modules import this
settings = Settings()

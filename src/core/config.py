from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_CHAR_BLACKLIST = "!@#$%^&*()_+=-[]}{;:'\"\\|~`<>/?"

DEFAULT_CATEGORIES = (
    "Groceries,Restaurants,Transportation,Utilities,Shopping,"
    "Entertainment,Healthcare,Office Supplies,Travel,Other"
)


class Settings(BaseSettings):
    app_name: str = Field("invoice-ocr-service", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")

    # Server
    host: str = Field("0.0.0.0", alias="HOST")
    port: int = Field(8080, alias="PORT")
    max_upload_size: int = Field(10 * 1024 * 1024, alias="MAX_UPLOAD_SIZE")  # bytes
    processing_timeout_seconds: float | None = Field(default=None, alias="PROCESSING_TIMEOUT_SECONDS")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # CORS allowed origins (comma-separated list for production deployment)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    # OCR
    ocr_engine: str = Field("tesseract", alias="OCR_ENGINE")  # "tesseract" or "easyocr"
    ocr_language: str = Field("eng", alias="OCR_LANGUAGE")
    ocr_char_blacklist: str = Field(DEFAULT_CHAR_BLACKLIST, alias="OCR_CHAR_BLACKLIST")
    ocr_tesseract_config: str = Field("", alias="OCR_TESSERACT_CONFIG")

    # AI providers
    ai_default_provider: str = Field("openai", alias="AI_DEFAULT_PROVIDER")

    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_base_url: str | None = Field(default=None, alias="OPENAI_BASE_URL")
    openai_model: str = Field("gpt-4o", alias="OPENAI_MODEL")
    openai_api_version: str = Field("2024-06-01", alias="OPENAI_API_VERSION")  # Azure OpenAI only
    openai_timeout_seconds: float = Field(60.0, alias="OPENAI_TIMEOUT_SECONDS")

    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field("gemini-1.5-flash", alias="GEMINI_MODEL")

    ollama_base_url: str = Field("http://localhost:11434", alias="OLLAMA_BASE_URL")
    ollama_model: str = Field("mistral", alias="OLLAMA_MODEL")
    ollama_timeout_seconds: float = Field(120.0, alias="OLLAMA_TIMEOUT_SECONDS")

    # Category vocabulary offered to the model (comma-separated)
    invoice_categories: str = Field(DEFAULT_CATEGORIES, alias="INVOICE_CATEGORIES")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
        "frozen": True,
    }

    @property
    def categories(self) -> list[str]:
        return [c.strip() for c in self.invoice_categories.split(",") if c.strip()]

    @property
    def allowed_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def scale_down_images(self) -> bool:
        """EasyOCR reads better from half-size images."""
        return self.ocr_engine.lower() == "easyocr"


settings = Settings()


def get_settings() -> Settings:
    return settings

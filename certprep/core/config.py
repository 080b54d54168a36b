"""
Application configuration management with environment-based settings.
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=True)

    # ============= Application Settings =============
    APP_NAME: str = "CertPrep"
    APP_VERSION: str = "1.0.0"
    APP_DESCRIPTION: str = "AWS certification exam practice API"
    ENVIRONMENT: str = Field(default="development")
    API_PREFIX: str = "/api"

    # ============= Security Settings =============
    APP_SECRET: SecretStr = Field(default="dev-secret-change-me")
    ALGORITHM: str = "HS256"
    TOKEN_TTL_MINUTES: int = 120

    # CORS Settings
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    CORS_ORIGIN_REGEX: Optional[str] = r"https://.*\.vercel\.app"

    # ============= Database Settings =============
    DATABASE_URL: str = Field(default="sqlite:///./data/exam.db")
    DATABASE_ECHO: bool = False

    # ============= Storage Settings =============
    UPLOAD_DIR: str = "uploads"
    DIAGRAM_DIR: str = "uploads/diagrams"
    MAX_UPLOAD_SIZE: int = 50 * 1024 * 1024  # 50MB
    DIAGRAM_EXTENSIONS: List[str] = [".drawio", ".png", ".jpg", ".jpeg", ".svg"]

    # ============= AI/LLM Settings =============
    PDF_TEXT_LIMIT: int = 50000
    LLM_TIMEOUT_SECONDS: float = 120.0
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"

    # ============= Queue Settings =============
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    RQ_QUEUE: str = "diagrams"
    DIAGRAM_JOBS_ENABLED: bool = True
    DIAGRAM_JOB_TIMEOUT: int = 600

    # ============= Logging Settings =============
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def cors_origins(self) -> List[str]:
        """CORS origins as a list; the env var is comma-separated."""
        return [i.strip() for i in self.CORS_ORIGINS.split(",") if i.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()

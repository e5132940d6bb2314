"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Product Imagery API"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Result Store
    # ==========================================================================
    LOCAL_STORAGE_PATH: str = "./data"
    PROCESSED_FOLDER: str = "processed"
    UPLOADS_FOLDER: str = "uploads"

    # Scratch space for the local background-removal tool
    TEMP_DIR: str = "./data/tmp"

    # ==========================================================================
    # Upload Limits
    # ==========================================================================
    MAX_IMAGE_SIZE_BYTES: int = 10485760  # 10MB
    MAX_BATCH_IMAGES: int = 10

    # ==========================================================================
    # Background Removal Providers
    # ==========================================================================
    # Local CLI (rembg)
    REMBG_COMMAND: str = "rembg"
    REMBG_TIMEOUT_SECONDS: float = 30.0

    # Azure Computer Vision segmentation
    AZURE_VISION_ENDPOINT: str = "https://vision-background.cognitiveservices.azure.com"
    AZURE_VISION_API_KEY: Optional[str] = None
    AZURE_VISION_API_VERSION: str = "2023-02-01-preview"

    # PhotoRoom
    PHOTOROOM_API_URL: str = "https://image-api.photoroom.com/v2/edit"
    PHOTOROOM_SANDBOX_API_KEY: Optional[str] = None
    PHOTOROOM_PRODUCTION_API_KEY: Optional[str] = None
    PHOTOROOM_MODEL_VERSION: str = "2024-09-26"

    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 60.0

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "*"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()

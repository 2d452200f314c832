"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings


# Hosts that commonly serve images without a file extension in the URL.
DEFAULT_IMAGE_HOSTS = ",".join([
    "imgur.com",
    "i.imgur.com",
    "images.unsplash.com",
    "unsplash.com",
    "pixabay.com",
    "pexels.com",
    "freepik.com",
    "shutterstock.com",
    "istockphoto.com",
    "getty.com",
    "flickr.com",
    "photobucket.com",
    "tinypic.com",
    "postimg.cc",
    "imgbb.com",
    "imagekit.io",
    "cloudinary.com",
    "amazonaws.com",
    "googleusercontent.com",
    "fbcdn.net",
    "cdninstagram.com",
])


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Storefront Media Ingestion"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Admin Access
    # ==========================================================================
    # Pre-shared key presented by the admin panel backend as a bearer token.
    # When unset every pipeline call is refused.
    ADMIN_API_KEY: Optional[str] = None

    # ==========================================================================
    # Fetch Settings
    # ==========================================================================
    FETCH_TIMEOUT_SECONDS: float = 30.0
    MAX_IMAGE_SIZE_BYTES: int = 10485760  # 10MB
    FETCH_USER_AGENT: str = "StorefrontMedia-ImageFetcher/1.0"
    FETCH_CHUNK_SIZE: int = 64 * 1024
    IMAGE_HOST_ALLOWLIST: str = DEFAULT_IMAGE_HOSTS

    # ==========================================================================
    # Verification / Transcode Settings
    # ==========================================================================
    MAX_IMAGE_DIMENSION: int = 5000
    MAX_OUTPUT_EDGE: int = 1920
    JPEG_QUALITY: int = 85
    WEBP_QUALITY: int = 85
    PNG_COMPRESS_LEVEL: int = 9

    # ==========================================================================
    # Storage Settings (The Bridge Pattern)
    # ==========================================================================
    STORAGE_BACKEND: str = "cloudinary"  # cloudinary, local
    STORAGE_FOLDER_PREFIX: str = ""

    CLOUDINARY_CLOUD_NAME: str = "demo"
    CLOUDINARY_UPLOAD_PRESET: str = "storefront"
    CLOUDINARY_API_KEY: Optional[str] = None
    CLOUDINARY_API_SECRET: Optional[str] = None
    CLOUDINARY_API_BASE: str = "https://api.cloudinary.com"
    CLOUDINARY_DELIVERY_HOST: str = "res.cloudinary.com"
    CLOUDINARY_TRANSFORMATION: Optional[str] = "q_auto,f_auto"

    UPLOAD_TIMEOUT_SECONDS: float = 60.0
    DELETE_TIMEOUT_SECONDS: float = 30.0
    DELETE_CONCURRENCY: int = 5

    # Local storage (development)
    LOCAL_STORAGE_PATH: str = "./data/storage"
    LOCAL_STORAGE_BASE_URL: str = "http://localhost:8000/static/storage"

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def image_hosts(self) -> List[str]:
        return [h.strip().lower() for h in self.IMAGE_HOST_ALLOWLIST.split(",") if h.strip()]


# Global settings instance
settings = Settings()

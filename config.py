"""Configuration settings for the Glowbook booking backend."""

import os
from typing import List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [item.strip().lower() for item in value.split(",") if item.strip()]


class Settings:
    """Application configuration from environment variables."""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "glowbook")

    # WhatsApp Cloud API
    WHATSAPP_API_URL: str = os.getenv("WHATSAPP_API_URL", "https://graph.facebook.com")
    WHATSAPP_API_VERSION: str = os.getenv("WHATSAPP_API_VERSION", "v17.0")
    WHATSAPP_PHONE_NUMBER_ID: str = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
    WHATSAPP_API_TOKEN: str = os.getenv("WHATSAPP_API_TOKEN", "")
    WHATSAPP_TEMPLATE_LANGUAGE: str = os.getenv("WHATSAPP_TEMPLATE_LANGUAGE", "en_US")
    WHATSAPP_TIMEOUT_SECONDS: float = float(os.getenv("WHATSAPP_TIMEOUT_SECONDS", "10"))
    WEBHOOK_VERIFY_TOKEN: str = os.getenv("WEBHOOK_VERIFY_TOKEN", "")

    # Auth
    SECRET_KEY: str = os.getenv("SECRET_KEY", "")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))
    SUPERADMIN_EMAILS: List[str] = _split_csv(os.getenv("SUPERADMIN_EMAILS", ""))

    # Server
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "")
    PORT: int = int(os.getenv("PORT", "8000"))

    # Business rules
    TIMEZONE: str = os.getenv("TIMEZONE", "Asia/Kolkata")
    DRAFT_TTL_MINUTES: int = int(os.getenv("DRAFT_TTL_MINUTES", "30"))
    CANCEL_LIST_LIMIT: int = int(os.getenv("CANCEL_LIST_LIMIT", "5"))
    CURRENCY_SYMBOL: str = os.getenv("CURRENCY_SYMBOL", "₹")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "")

    REQUIRED_FIELDS = (
        "WHATSAPP_API_TOKEN",
        "WHATSAPP_PHONE_NUMBER_ID",
        "WEBHOOK_VERIFY_TOKEN",
        "SECRET_KEY",
    )

    @classmethod
    def validate(cls) -> List[str]:
        """Return the names of required settings that are not configured."""
        return [name for name in cls.REQUIRED_FIELDS if not getattr(cls, name, "")]

    @classmethod
    def to_dict(cls) -> dict:
        """Convert configuration to dictionary (excluding sensitive data)."""
        return {
            "DATABASE_NAME": cls.DATABASE_NAME,
            "WHATSAPP_API_URL": cls.WHATSAPP_API_URL,
            "WHATSAPP_API_VERSION": cls.WHATSAPP_API_VERSION,
            "WHATSAPP_TEMPLATE_LANGUAGE": cls.WHATSAPP_TEMPLATE_LANGUAGE,
            "TIMEZONE": cls.TIMEZONE,
            "DRAFT_TTL_MINUTES": cls.DRAFT_TTL_MINUTES,
            "CANCEL_LIST_LIMIT": cls.CANCEL_LIST_LIMIT,
            "LOG_LEVEL": cls.LOG_LEVEL,
        }


# Global settings instance
settings = Settings()

import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _csv(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    # API settings
    app_name: str = os.getenv("APP_NAME", "Libratech")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "4000"))
    api_prefix: str = os.getenv("API_PREFIX", "/api/v1")
    cors_origins: List[str] = field(
        default_factory=lambda: _csv("CORS_ORIGINS", "https://libra-tech.web.app,http://localhost:5173")
    )

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "libratech.db")
    database_busy_timeout: float = float(os.getenv("DATABASE_BUSY_TIMEOUT", "30"))

    # Session settings
    access_token_secret: str = os.getenv("ACCESS_TOKEN_SECRET", "change-this-secret-in-production")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    access_token_expires_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRES_MINUTES", "60"))
    access_cookie_name: str = os.getenv("ACCESS_COOKIE_NAME", "access_token")
    cookie_secure: bool = _flag("COOKIE_SECURE", "True")
    cookie_samesite: str = os.getenv("COOKIE_SAMESITE", "none")
    admin_emails: List[str] = field(default_factory=lambda: _csv("ADMIN_EMAILS", "admin@libratech.com"))

    # Pagination settings
    books_default_limit: int = int(os.getenv("BOOKS_DEFAULT_LIMIT", "4000"))
    categories_default_limit: int = int(os.getenv("CATEGORIES_DEFAULT_LIMIT", "500"))

    # Application settings
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()

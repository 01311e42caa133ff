"""
Application settings

Built once at process start from environment variables and handed to the
services that need them. Nothing below this module reads os.environ.
"""
import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    secret_key: str = Field("dev-secret-key", description="HMAC key for access and verification tokens")
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = Field(60, gt=0)
    verification_token_expire_minutes: int = Field(60 * 24, gt=0)

    database_url: str = "mongodb://localhost:27017"
    database_name: str = "marketplace"

    base_url: str = Field("http://localhost:8000/", description="Public URL used in email links")

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    mail_sender: str = "no-reply@marketplace.local"

    admin_name: str = "Administrator"
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

    log_level: str = "INFO"


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    env = os.environ
    values = {
        "secret_key": env.get("SECRET_KEY"),
        "jwt_algorithm": env.get("JWT_ALGORITHM"),
        "access_token_expire_minutes": env.get("ACCESS_TOKEN_EXPIRE_MINUTES"),
        "verification_token_expire_minutes": env.get("VERIFICATION_TOKEN_EXPIRE_MINUTES"),
        "database_url": env.get("DATABASE_URL"),
        "database_name": env.get("DATABASE_NAME"),
        "base_url": env.get("BASE_URL"),
        "smtp_host": env.get("SMTP_HOST"),
        "smtp_port": env.get("SMTP_PORT"),
        "smtp_username": env.get("SMTP_USERNAME"),
        "smtp_password": env.get("SMTP_PASSWORD"),
        "smtp_use_tls": _env_flag(env.get("SMTP_USE_TLS"), True),
        "mail_sender": env.get("MAIL_SENDER"),
        "admin_name": env.get("ADMIN_NAME"),
        "admin_email": env.get("ADMIN_EMAIL"),
        "admin_password": env.get("ADMIN_PASSWORD"),
        "log_level": env.get("LOG_LEVEL"),
    }
    return Settings(**{k: v for k, v in values.items() if v is not None})


@lru_cache
def get_settings() -> Settings:
    return load_settings()

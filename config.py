"""Application settings loaded from the environment"""
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

# Searches the current dir and its parents for a .env file
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "development")
    mongodb_uri: Optional[str] = os.getenv("MONGODB_URI")
    db_name: str = os.getenv("DB_NAME", "partyhall_db")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    cors_origins: List[str] = _env_list("CORS_ORIGINS", "*")
    rate_limit: str = os.getenv("RATE_LIMIT", "60/minute")
    rate_limit_enabled: bool = _env_flag("RATE_LIMIT_ENABLED", "true")
    # Name of the header the auth proxy uses to forward the signed-in user
    session_user_header: str = os.getenv("SESSION_USER_HEADER", "X-Auth-User")


settings = Settings()

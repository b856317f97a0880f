from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel
import os

# Load .env automatically
load_dotenv()


def _int_list(raw: str) -> List[int]:
    return [int(part) for part in raw.split(",") if part.strip()]


def _flag(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "development")
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./pocketledger.db")
    database_echo: bool = _flag(os.getenv("DATABASE_ECHO", "false"))
    jwt_secret: str = os.getenv("JWT_SECRET", "change-me")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

    # Aggregation engine
    default_alert_thresholds: List[int] = _int_list(os.getenv("DEFAULT_ALERT_THRESHOLDS", "50,75,90,100"))
    cas_max_retries: int = int(os.getenv("CAS_MAX_RETRIES", "5"))
    recompute_timeout_seconds: float = float(os.getenv("RECOMPUTE_TIMEOUT_SECONDS", "10"))

    # Scheduled jobs; when unset the /jobs endpoints are open
    jobs_token: str = os.getenv("JOBS_TOKEN", "")

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = _flag(os.getenv("LOG_JSON", "true"))

    cors_origins: List[str] = [
        origin.strip()
        for origin in os.getenv(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
        ).split(",")
        if origin.strip()
    ]


# Global settings instance
settings = Settings()

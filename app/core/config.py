import os
from functools import lru_cache
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


class Settings:
    def __init__(self) -> None:
        base_dir = Path(__file__).resolve().parent.parent.parent
        self.APP_NAME: str = os.getenv("APP_NAME", "Gestor de Projetos API")
        self.SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-secret-change-me")
        self.ACCESS_TOKEN_EXPIRE_HOURS: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "24"))
        self.ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
        self.SQLALCHEMY_DATABASE_URI: str = os.getenv(
            "SQLALCHEMY_DATABASE_URI",
            f"sqlite:///{(base_dir / 'gestor.db').as_posix()}",
        )
        self.STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "sql").strip().lower()
        self.ENV: str = os.getenv("ENV", "development")
        self.TIMEZONE: str = os.getenv("TIMEZONE", "America/Sao_Paulo")

        # Automacao de atrasos (SLA)
        self.SCHEDULER_ENABLED: bool = _env_flag("SCHEDULER_ENABLED", "1")
        self.AUTOMATION_WARMUP_SECONDS: int = int(os.getenv("AUTOMATION_WARMUP_SECONDS", "5"))
        self.AUTOMATION_INTERVAL_SECONDS: int = int(os.getenv("AUTOMATION_INTERVAL_SECONDS", "3600"))
        self.AUDIT_AUTOMATED_CHANGES: bool = _env_flag("AUDIT_AUTOMATED_CHANGES", "0")

        # Usuario inicial
        self.SEED_ADMIN: bool = _env_flag("SEED_ADMIN", "1")
        self.ADMIN_USERNAME: str = os.getenv("ADMIN_USERNAME", "admin")
        self.ADMIN_PASSWORD: str = os.getenv("ADMIN_PASSWORD", "admin123")
        self.ADMIN_EMAIL: str = os.getenv("ADMIN_EMAIL", "admin@example.com")

        default_cors = [
            "http://localhost",
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ]
        cors_origins = os.getenv("BACKEND_CORS_ORIGINS")
        self.BACKEND_CORS_ORIGINS: List[str] = (
            [origin.strip() for origin in cors_origins.split(",") if origin.strip()]
            if cors_origins
            else default_cors
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

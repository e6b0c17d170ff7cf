import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional, List

from medqueue.config.constants import AppointmentStatus

env = os.getenv("APP_ENV", "development")
env_file = f".env.{env}"


class Settings(BaseSettings):
    database_url: str
    # CORS origins can be overridden via CORS_ORIGINS env var (JSON list or comma-separated)
    cors_origins: List[str] = Field(default=["http://localhost:3000"])

    # Identity service (doctors / patients directory)
    identity_service_url: str = Field("http://localhost:3001", env="IDENTITY_SERVICE_URL")
    # Service credential used by sweeps and event consumers, where no user token exists
    identity_service_token: Optional[str] = Field(None, env="IDENTITY_SERVICE_TOKEN")
    identity_timeout_seconds: float = 5.0

    # Clinic rules
    clinic_timezone: str = "America/Bogota"
    check_in_early_minutes: int = 30
    check_in_late_minutes: int = 10
    missed_grace_minutes: int = 10
    missed_appointment_status: AppointmentStatus = AppointmentStatus.CANCELLED
    called_timeout_minutes: int = 10
    allow_cancel_completed: bool = True

    model_config = SettingsConfigDict(
        env_file=env_file,
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()

import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    user_id: str = Field("default", alias="STUDYTRACK_USER_ID")
    student_name: str = Field("Student", alias="STUDYTRACK_STUDENT_NAME")
    database_url: Optional[str] = Field(None, alias="STUDYTRACK_DATABASE_URL")
    database_pool_size: int = Field(10, alias="STUDYTRACK_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="STUDYTRACK_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="STUDYTRACK_DATABASE_ECHO")
    remote_url: str = Field("http://127.0.0.1:8000", alias="STUDYTRACK_REMOTE_URL")
    remote_timeout_seconds: float = Field(10.0, alias="STUDYTRACK_REMOTE_TIMEOUT", gt=0)
    local_store_path: Optional[str] = Field(None, alias="STUDYTRACK_LOCAL_STORE_PATH")
    local_store_max_bytes: int = Field(5 * 1024 * 1024, alias="STUDYTRACK_LOCAL_STORE_MAX_BYTES", gt=0)
    sync_max_attempts: int = Field(5, alias="STUDYTRACK_SYNC_MAX_ATTEMPTS", ge=1)
    sync_base_delay_seconds: float = Field(1.0, alias="STUDYTRACK_SYNC_BASE_DELAY", ge=0)
    reconcile_interval_seconds: float = Field(300.0, alias="STUDYTRACK_RECONCILE_INTERVAL", gt=0)
    debounce_idle_seconds: float = Field(1.0, alias="STUDYTRACK_DEBOUNCE_IDLE", ge=0)
    report_weekday: int = Field(4, alias="STUDYTRACK_REPORT_WEEKDAY", ge=0, le=6)
    report_start_hour: int = Field(16, alias="STUDYTRACK_REPORT_START_HOUR", ge=0, le=23)
    report_end_hour: int = Field(21, alias="STUDYTRACK_REPORT_END_HOUR", ge=1, le=24)
    report_timezone: str = Field("UTC", alias="STUDYTRACK_REPORT_TIMEZONE")
    report_recipient: Optional[str] = Field(None, alias="STUDYTRACK_REPORT_RECIPIENT")
    email_subject_template: str = Field(
        "Weekly progress report for {student_name}",
        alias="STUDYTRACK_EMAIL_SUBJECT",
    )
    smtp_host: str = Field("localhost", alias="STUDYTRACK_SMTP_HOST")
    smtp_port: int = Field(587, alias="STUDYTRACK_SMTP_PORT")
    smtp_user: Optional[str] = Field(None, alias="STUDYTRACK_SMTP_USER")
    smtp_password: Optional[str] = Field(None, alias="STUDYTRACK_SMTP_PASSWORD")
    smtp_sender: Optional[str] = Field(None, alias="STUDYTRACK_SMTP_SENDER")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        populate_by_name = True

    @model_validator(mode="after")
    def _check_report_window(self) -> "Settings":
        if self.report_start_hour >= self.report_end_hour:
            raise ValueError("STUDYTRACK_REPORT_START_HOUR must be earlier than STUDYTRACK_REPORT_END_HOUR.")
        return self


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid study tracker configuration: {exc}") from exc

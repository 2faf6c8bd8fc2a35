from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_FILTER_WORDS = (
    "תיווך,פרויקט,משרד,brokerage,project,office,משרד תיווך,סוכנות,נדלן,"
    "real estate,agency,משרד נדלן,סוכנות נדלן,תיווך נדלן"
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str | None = Field(default=None, alias="DATABASE_URL")
    database_fallback_url: str | None = Field(default=None, alias="DATABASE_FALLBACK_URL")
    require_database: bool | None = Field(default=None, alias="REQUIRE_DATABASE")
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=5, alias="DB_MAX_OVERFLOW")
    db_connect_timeout_sec: int = Field(default=30, alias="DB_CONNECT_TIMEOUT_SEC")
    db_pool_recycle_sec: int = Field(default=300, alias="DB_POOL_RECYCLE_SEC")
    seen_ads_file: str = Field(default="seen_ads.json", alias="SEEN_ADS_FILE")

    tracker_urls: str = Field(default="", alias="TRACKER_URLS")
    filter_words: str = Field(default=DEFAULT_FILTER_WORDS, alias="FILTER_WORDS")
    exclude_agency: bool = Field(default=True, alias="EXCLUDE_AGENCY")

    fetcher: str = Field(default="yad2_api", alias="FETCHER")
    mock_data_path: str = Field(default="./mock_payload.json", alias="MOCK_DATA_PATH")
    request_timeout_sec: float = Field(default=10.0, alias="REQUEST_TIMEOUT_SEC")
    fetch_concurrency: int = Field(default=1, alias="FETCH_CONCURRENCY")
    listing_base_url: str = Field(default="https://www.yad2.co.il/item", alias="LISTING_BASE_URL")
    currency_suffix: str = Field(default="₪", alias="CURRENCY_SUFFIX")

    send_emails: bool | None = Field(default=None, alias="SEND_EMAILS")
    email_recipients: str | None = Field(default=None, alias="EMAIL_RECIPIENTS")
    email_from: str | None = Field(default=None, alias="EMAIL_FROM")
    smtp_host: str = Field(default="smtp.gmail.com", alias="SMTP_HOST")
    smtp_port: int = Field(default=465, alias="SMTP_PORT")
    smtp_user: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(default=True, alias="SMTP_USE_TLS")
    smtp_timeout_sec: int = Field(default=30, alias="SMTP_TIMEOUT_SEC")

    schedule_cron: str | None = Field(default=None, alias="SCHEDULE_CRON")
    schedule_interval_min: int = Field(default=15, alias="SCHEDULE_INTERVAL_MIN")
    timezone: str = Field(default="Asia/Jerusalem", alias="TIMEZONE")
    cleanup_days: int = Field(default=30, alias="CLEANUP_DAYS")

    @property
    def strict_database(self) -> bool:
        if self.require_database is not None:
            return self.require_database
        return self.app_env.lower() == "production"

    @property
    def tracker_url_list(self) -> list[str]:
        return split_csv(self.tracker_urls)

    @property
    def filter_word_list(self) -> list[str]:
        return split_csv(self.filter_words)


def split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


settings = Settings()

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """
    App configuration.

    This project uses `config.env` (non-dot env file) because some environments
    block creating `.env*` files. If you do have a `.env`, it will also be read.
    """

    model_config = SettingsConfigDict(
        env_file=(
            str(_PROJECT_ROOT / "config.env"),
            str(_PROJECT_ROOT / ".env"),
            "config.env",
            ".env",
        ),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Full URL wins over the individual DB_* parts (tests use sqlite here)
    database_url_override: str | None = Field(default=None, validation_alias="DATABASE_URL")
    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=5432, validation_alias="DB_PORT")
    db_user: str = Field(default="restos", validation_alias="DB_USER")
    db_password: str = Field(default="restos", validation_alias="DB_PASSWORD")
    db_name: str = Field(default="restos", validation_alias="DB_NAME")

    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")

    secret_key: str = Field(default="CHANGE_THIS_IN_PRODUCTION", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=480, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    admin_password: str = Field(default="CHANGE_THIS_IN_PRODUCTION", validation_alias="ADMIN_PASSWORD")
    is_production: bool = Field(default=False, validation_alias="IS_PRODUCTION")

    cors_origins: str = Field(
        default="http://localhost:3000",
        validation_alias="CORS_ORIGINS"
    )

    # Business rules
    timezone: str = Field(default="America/Mexico_City", validation_alias="TIMEZONE")
    business_cutoff_hour: int = Field(default=12, validation_alias="BUSINESS_CUTOFF_HOUR")
    kitchen_new_item_threshold_ms: int = Field(default=2000, validation_alias="KITCHEN_NEW_ITEM_THRESHOLD_MS")

    # Mercado Pago Point terminal
    mercadopago_access_token: str = Field(default="", validation_alias="MERCADOPAGO_ACCESS_TOKEN")
    mercadopago_api_url: str = Field(
        default="https://api.mercadopago.com/point/integrated_entity/devices",
        validation_alias="MERCADOPAGO_API_URL",
    )
    payment_poll_interval_seconds: float = Field(default=5, validation_alias="PAYMENT_POLL_INTERVAL_SECONDS")
    payment_poll_max_attempts: int = Field(default=120, validation_alias="PAYMENT_POLL_MAX_ATTEMPTS")

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        # SQLModel uses SQLAlchemy under the hood; this uses the psycopg driver (v3).
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


settings = Settings()

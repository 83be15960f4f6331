from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_WEBHOOK_SECRET = "whsec_figurine_development_secret"
ALLOWED_PAYMENT_GATEWAY_MODES = {"fake", "stripe"}
ALLOWED_RUNTIME_PAYMENT_GATEWAY_MODES = {"stripe"}


class Settings(BaseSettings):
    app_name: str = "Figurine Order Service"

    database_url: str = Field(
        default="sqlite+pysqlite:///./figurine.db",
        validation_alias="FIGURINE_DATABASE_URL",
    )
    cors_allowed_origins: str = "http://localhost:3000,http://localhost:5173"
    testing: bool = Field(default=False, validation_alias="FIGURINE_TESTING")

    payment_gateway_mode: str = Field(default="fake", validation_alias="FIGURINE_PAYMENT_GATEWAY")
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = DEFAULT_WEBHOOK_SECRET
    stripe_api_base_url: str = "https://api.stripe.com"
    stripe_timeout_s: float = 5.0
    stripe_max_retries: int = 2
    stripe_webhook_tolerance_s: int = 300
    currency: str = "sgd"

    order_id_prefix: str = "PGC"
    product_size: str = "7cm"

    base_price: int = 129
    domestic_shipping_fee: int = 0
    international_shipping_fee: int = 30
    quantity_discount_percent: int = 15
    quantity_discount_min_units: int = 2
    min_chargeable_amount: int = 1

    upload_session_ttl_s: int = 30 * 60
    upload_max_images: int = 5
    upload_max_image_bytes: int = 10 * 1024 * 1024

    admin_orders_default_limit: int = 50
    admin_orders_max_limit: int = 200

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_s: float = 10.0
    notification_sender: str = ""
    notification_email: str = ""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("payment_gateway_mode")
    @classmethod
    def validate_payment_gateway_mode(cls, value: str) -> str:
        mode = value.lower().strip()
        if mode not in ALLOWED_PAYMENT_GATEWAY_MODES:
            allowed = ", ".join(sorted(ALLOWED_PAYMENT_GATEWAY_MODES))
            raise ValueError(f"FIGURINE_PAYMENT_GATEWAY must be one of: {allowed}")
        return mode

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        currency = value.lower().strip()
        if len(currency) != 3 or not currency.isalpha():
            raise ValueError("currency must be a three-letter ISO code")
        return currency

    @field_validator(
        "upload_session_ttl_s",
        "upload_max_images",
        "upload_max_image_bytes",
        "admin_orders_default_limit",
        "admin_orders_max_limit",
        "min_chargeable_amount",
    )
    @classmethod
    def validate_positive_limit(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("upload/admin/charge limits must be greater than 0")
        return value

    @field_validator("stripe_timeout_s", "smtp_timeout_s")
    @classmethod
    def validate_positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("stripe/smtp timeouts must be greater than 0")
        return value


settings = Settings()


def allowed_origins() -> list[str]:
    return [origin.strip() for origin in settings.cors_allowed_origins.split(",") if origin.strip()]


def smtp_configured() -> bool:
    return bool(settings.smtp_host.strip() and settings.notification_email.strip())


def ensure_secure_runtime_settings() -> None:
    """Fail fast when production-like runtime uses insecure defaults."""
    if settings.testing:
        return
    if settings.payment_gateway_mode not in ALLOWED_RUNTIME_PAYMENT_GATEWAY_MODES:
        raise RuntimeError(
            "FIGURINE_PAYMENT_GATEWAY must be 'stripe' when FIGURINE_TESTING is false"
        )
    if not settings.stripe_secret_key.strip():
        raise RuntimeError("STRIPE_SECRET_KEY must be set when FIGURINE_TESTING is false")
    if settings.stripe_webhook_secret == DEFAULT_WEBHOOK_SECRET:
        raise RuntimeError(
            "STRIPE_WEBHOOK_SECRET must be set to a non-default value "
            "when FIGURINE_TESTING is false"
        )
    if _is_sqlite_url(settings.database_url):
        raise RuntimeError("FIGURINE_DATABASE_URL must use postgres when FIGURINE_TESTING is false")


def _is_sqlite_url(database_url: str) -> bool:
    value = database_url.strip().lower()
    return value.startswith("sqlite")

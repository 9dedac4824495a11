from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Storefront"
    DATABASE_URL: str = "sqlite:///./storefront.db"

    LOG_LEVEL: str = "INFO"

    # New products start with this threshold unless one is given
    DEFAULT_LOW_STOCK_THRESHOLD: int = 10

    # Compare-and-set attempts on a SKU row before giving up
    STOCK_WRITE_RETRIES: int = 3

    ORDER_NUMBER_PREFIX: str = "ORD"

    INVENTORY_HISTORY_LIMIT: int = 50

    # Invoice storage
    INVOICE_DIR: str = "./invoices"

    # Webhook: list of notification URLs (comma-separated)
    WEBHOOK_URLS: str = ""
    WEBHOOK_TIMEOUT: float = 10.0

    # 0 = deliver events inline in the request thread
    NOTIFICATION_WORKERS: int = 2

    model_config = {"env_file": ".env"}


settings = Settings()

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Retail Stock"
    DATABASE_URL: str = "sqlite:///./retail_stock.db"

    LOG_LEVEL: str = "INFO"

    # Actor tokens are issued by the identity service; we only decode them
    SECRET_KEY: str = "change-me-in-production"
    TOKEN_ALGORITHM: str = "HS256"

    # Batches expiring within this many days are reported as near expiry
    NEAR_EXPIRY_DAYS: int = 30

    DEFAULT_PAGE_LIMIT: int = 100

    model_config = {"env_file": ".env"}


settings = Settings()

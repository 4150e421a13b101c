from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Storage
    STORE_BACKEND: str = "memory"  # memory|sql
    DATABASE_URL: str = "sqlite:///./kanban.db"

    # Ordering engine
    LOCK_TIMEOUT_SECONDS: float = 5.0
    KEY_MAX_LENGTH: int = 8
    MOVE_RETRY_LIMIT: int = 3

    # App
    APP_ENV: str = "development"
    ALLOWED_ORIGINS: str = "*"
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()

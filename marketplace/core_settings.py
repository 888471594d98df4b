from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "marketplace"
    POSTGRES_USER: str = "marketplace"
    POSTGRES_PASSWORD: str = "marketplace"
    # Full SQLAlchemy URL, takes precedence over the POSTGRES_* parts
    DATABASE_URL: Optional[str] = None

    # Unset means settings are cached in-process only
    REDIS_URL: Optional[str] = None
    SETTINGS_CACHE_TTL: int = 300

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    DEFAULT_STATE: str = "Punjab"
    DEFAULT_COUNTRY: str = "Pakistan"
    CURRENCY_SYMBOL: str = "Rs"

    ORDER_NUMBER_ATTEMPTS: int = 5
    TRUST_CLIENT_VARIANT_PRICE: bool = True

    LOG_LEVEL: str = "INFO"
    SERVICE_VERSION: str = "1.0.0"

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

@lru_cache
def get_settings() -> Settings:
    return Settings()

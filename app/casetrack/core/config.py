from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "CASETRACK"
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite+pysqlite:///./casetrack.db"
    DEFAULT_ORGANIZATION_CODE: str = "FCASH"
    DEFAULT_ORGANIZATION_NAME: str = "Default Organization"
    BULK_UPDATE_MAX_ITEMS: int = 100
    STATUS_HISTORY_DEFAULT_LIMIT: int = 50
    STATUS_HISTORY_MAX_LIMIT: int = 100
    STATUS_WRITE_MAX_ATTEMPTS: int = 5
    TERRITORY_PERMISSION: str = "clients:read"
    METRICS_ENABLED: bool = True

settings = Settings()

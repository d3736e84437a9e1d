from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "CBAM Desk"

    # Alternative regulatory reference document (YAML). Empty = packaged default.
    REFERENCE_PATH: str | None = None

    DEFAULT_REPORTING_YEAR: int = 2026

    # External certificate price, only used when a caller does not pass one
    CERTIFICATE_PRICE_EUR: float = 75.0

    LOG_LEVEL: str = "INFO"

    class Config:
        env_prefix = "CBAM_"
        env_file = ".env"
        extra = "ignore"


settings = Settings()

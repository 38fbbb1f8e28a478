from pydantic_settings import BaseSettings
from pydantic import ConfigDict

class Settings(BaseSettings):
    model_config = ConfigDict(env_file=".env", extra="ignore")

    ENV: str = "development"

    DATABASE_URL: str = "sqlite:///./checkout.db"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Payment gateway (Wompi)
    WOMPI_BASE_URL: str = "https://sandbox.wompi.co/v1"
    WOMPI_PUBLIC_KEY: str = ""
    WOMPI_PRIVATE_KEY: str = ""
    WOMPI_INTEGRITY_KEY: str = ""
    WOMPI_EVENTS_KEY: str = ""
    WOMPI_TIMEOUT_SECONDS: float = 10.0

    # Pricing, all amounts in cents
    DEFAULT_CURRENCY: str = "COP"
    FREE_SHIPPING_THRESHOLD_CENTS: int = 5_000_000
    SHIPPING_COST_CENTS: int = 1_000_000

    DELIVERY_ESTIMATE_DAYS: int = 3

    # Transaction status polling
    POLL_MAX_ATTEMPTS: int = 5
    POLL_DELAY_SECONDS: float = 3.0

    RATE_LIMIT_ENABLED: bool = True


settings = Settings()

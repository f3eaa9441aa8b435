from pydantic_settings import BaseSettings
from typing import Optional
import os


class Settings(BaseSettings):
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    cache_required: bool = True
    rekkari_api_key: Optional[str] = os.getenv("REKKARI_API_KEY") or None
    rekkari_api_url: str = "https://02rekkari.fi/api/vehicle"
    traficom_url: str = (
        "https://www.traficom.fi/en/transport/drivers-and-vehicles/"
        "buying-and-selling-vehicle/check-vehicle-information"
    )
    scraper_headless: bool = True
    frontend_url: str = os.getenv("FRONTEND_URL", "http://localhost:3000")
    log_level: str = "INFO"
    app_version: str = "1.0.0"

    # Shop details used in chat replies
    shop_phone: str = "050 547 7779"
    shop_email: str = "info@bemufix.fi"
    hourly_rate: int = 89

    class Config:
        env_file = ".env"
        extra = "allow"


settings = Settings()

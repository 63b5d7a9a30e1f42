from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List, Optional


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    DEBUG: bool = True
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # MongoDB
    MONGO_URL: str = "mongodb://localhost:27017"
    DB_NAME: str = "Courier"

    # JWT (émis par le service d'identité, vérifié ici)
    JWT_SECRET: str = "changeme_minimum_32_chars_here_please"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # SMTP
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM: str = "BackStore Support <no-reply@backstore.local>"
    SMTP_STARTTLS: bool = True
    SMTP_TIMEOUT: float = 10.0

    # Twilio
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_SMS_NUMBER: Optional[str] = None

    # Tarifs : coût de base par type de colis + coût au km
    BASE_COSTS: Dict[str, float] = {
        "document":       50.0,
        "small-package":  100.0,
        "medium-package": 200.0,
        "large-package":  400.0,
    }
    PRICE_PER_KM: float = 2.0
    ESTIMATED_DELIVERY_DAYS: int = 3

    # Rate limiting (slowapi)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_BOOK: str = "20/minute"
    RATE_LIMIT_SCAN: str = "60/minute"

    # Live : délai max d'envoi d'une trame avant d'abandonner la session
    LIVE_SEND_TIMEOUT: float = 2.0

    model_config = SettingsConfigDict(
        env_file=[".env", "../.env"],  # cherche dans backend/ puis dans la racine
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()

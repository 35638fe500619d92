from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    DEBUG: bool = True
    COMPANY_NAME: str = "CourierPWA"
    CURRENCY: str = "KES"

    # MongoDB
    MONGO_URL: str = "mongodb://localhost:27017"
    DB_NAME: str = "CourierPWA"
    MONGO_TIMEOUT_MS: int = 5000   # sélection serveur, connexion et socket

    # JWT
    JWT_SECRET: str = "changeme_minimum_32_chars_here_please"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 720

    # Firebase (vérification des ID tokens du login téléphone)
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CREDENTIALS_FILE: str = "firebase-service-account.json"
    AUTH_RATE_LIMIT: str = "10/minute"

    # SMS : "mock" | "africastalking" | "twilio"
    SMS_PROVIDER: str = "mock"
    SMS_TIMEOUT_SECONDS: float = 10.0

    # Africa's Talking ("sandbox" → API sandbox)
    AT_USERNAME: str = "sandbox"
    AT_APIKEY: Optional[str] = None
    AT_SENDER_ID: Optional[str] = None

    # Twilio
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_SMS_NUMBER: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=[".env", "../.env"],  # cherche dans backend/ puis dans la racine
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()

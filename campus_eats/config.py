# campus_eats/config.py
import os
import logging
from decimal import Decimal
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent

class Config:
    """Configuration settings for the ordering service"""

    # Database settings
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_POOL_MIN_SIZE: int = int(os.getenv("DB_POOL_MIN_SIZE", "2"))
    DB_POOL_MAX_SIZE: int = int(os.getenv("DB_POOL_MAX_SIZE", "10"))

    # HTTP server settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))

    # M-Pesa (Daraja) settings
    MPESA_CONSUMER_KEY: str = os.getenv("MPESA_CONSUMER_KEY", "")
    MPESA_CONSUMER_SECRET: str = os.getenv("MPESA_CONSUMER_SECRET", "")
    MPESA_SHORTCODE: str = os.getenv("MPESA_SHORTCODE", "")
    MPESA_PASSKEY: str = os.getenv("MPESA_PASSKEY", "")
    MPESA_BASE_URL: str = os.getenv("MPESA_BASE_URL", "https://sandbox.safaricom.co.ke")
    MPESA_CALLBACK_URL: str = os.getenv(
        "MPESA_CALLBACK_URL",
        f"{os.getenv('BACKEND_URL', 'http://localhost:8080')}/api/payments/mpesa/callback"
    )
    MPESA_TIMEOUT: float = float(os.getenv("MPESA_TIMEOUT", "30"))
    MPESA_TIMEZONE = "Africa/Nairobi"

    # Payment and invoicing rules
    PAYMENT_QUERY_AFTER_SECONDS: int = int(os.getenv("PAYMENT_QUERY_AFTER_SECONDS", "120"))
    INVOICE_DUE_DAYS: int = int(os.getenv("INVOICE_DUE_DAYS", "30"))
    CURRENCY: str = os.getenv("CURRENCY", "KES")
    MONEY_QUANTUM = Decimal("0.01")

    # Other settings
    TIMEZONE: str = os.getenv("TZ", "Africa/Nairobi")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Paths
    LOG_DIR = Path(os.getenv("LOG_DIR", str(BASE_DIR / "logs")))

    @classmethod
    def validate(cls):
        """Check settings required to serve requests"""
        if not cls.DATABASE_URL:
            raise ValueError("No DATABASE_URL set in environment")

    @classmethod
    def mpesa_configured(cls) -> bool:
        return all([
            cls.MPESA_CONSUMER_KEY,
            cls.MPESA_CONSUMER_SECRET,
            cls.MPESA_SHORTCODE,
            cls.MPESA_PASSKEY,
        ])

def setup_logging():
    """Configure logging settings"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    Config.LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = Config.LOG_DIR / "campus_eats.log"

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL),
        format=log_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

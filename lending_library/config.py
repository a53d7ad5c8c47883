import os
from dataclasses import dataclass
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "lending_library.db")
    database_timeout: float = float(os.getenv("DATABASE_TIMEOUT", "5"))

    # Fee rules
    late_fee_rate: Decimal = Decimal(os.getenv("LATE_FEE_RATE", "0.15"))  # 15% of the book price per day
    fee_decimal_places: int = int(os.getenv("FEE_DECIMAL_PLACES", "2"))

    # External catalog (Gutendex)
    catalog_base_url: str = os.getenv("CATALOG_BASE_URL", "https://gutendex.com")
    catalog_timeout: float = float(os.getenv("CATALOG_TIMEOUT", "10"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Lending Library")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()

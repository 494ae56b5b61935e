"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Bearer tokens are issued by the auth service; we only verify them
    JWT_SECRET = os.getenv('JWT_SECRET', 'dev-jwt-secret-change-in-production')
    JWT_ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'crm')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'crm')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'crm')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Payment ledger
    LEDGER_PAYMENT_MAX_RETRIES = int(os.getenv('LEDGER_PAYMENT_MAX_RETRIES', '3'))
    # 'flag' accepts overpayments and logs them, 'reject' refuses them
    LEDGER_OVERPAYMENT_POLICY = os.getenv('LEDGER_OVERPAYMENT_POLICY', 'flag').lower()

    # Listing
    SALES_PAGE_SIZE_DEFAULT = int(os.getenv('SALES_PAGE_SIZE_DEFAULT', '10'))
    SALES_PAGE_SIZE_MAX = int(os.getenv('SALES_PAGE_SIZE_MAX', '100'))

    # Redis Cache Configuration
    # Shared cache layer for the summary/stats report endpoints
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_DEFAULT_TTL = int(os.getenv('CACHE_DEFAULT_TTL', '60'))  # seconds
    CACHE_REPORTS_TTL = int(os.getenv('CACHE_REPORTS_TTL', '60'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'crm')

"""Configuration module for the POS Flask application."""
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
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'pos')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'pos')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'pos')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'
    AUTO_CREATE_SCHEMA = os.getenv('AUTO_CREATE_SCHEMA', 'true').lower() == 'true'

    # Remote data API: 'sql' talks to the database above, 'http' to DATA_API_URL
    DATA_API_BACKEND = os.getenv('DATA_API_BACKEND', 'sql')
    DATA_API_URL = os.getenv('DATA_API_URL', 'http://localhost:8080/api')
    DATA_API_TOKEN = os.getenv('DATA_API_TOKEN', '')
    DATA_API_TIMEOUT = float(os.getenv('DATA_API_TIMEOUT', '10'))

    # Local durable storage (recovery snapshot, settlement saga log)
    STORAGE_BACKEND = os.getenv('STORAGE_BACKEND', 'redis')
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    STORAGE_KEY_PREFIX = os.getenv('STORAGE_KEY_PREFIX', 'pos')
    RECOVERY_KEY = os.getenv('RECOVERY_KEY', 'posState')

    # Checkout
    VAT_RATE = os.getenv('VAT_RATE', '0.10')
    MONEY_QUANTUM = os.getenv('MONEY_QUANTUM', '1')  # VND has no minor unit
    TAKEAWAY_TABLE_ID = os.getenv('TAKEAWAY_TABLE_ID', 'TAKEAWAY')
    DEFAULT_PAYMENT_METHOD = os.getenv('DEFAULT_PAYMENT_METHOD', 'cash')

    # Kitchen dispatch: empty KITCHEN_URL means the in-process kitchen queue
    KITCHEN_URL = os.getenv('KITCHEN_URL', '')
    KITCHEN_TIMEOUT = float(os.getenv('KITCHEN_TIMEOUT', '3'))
    KITCHEN_NOTIFY_ON_SETTLEMENT = os.getenv('KITCHEN_NOTIFY_ON_SETTLEMENT', 'false').lower() == 'true'
    KITCHEN_SERVED_TTL = int(os.getenv('KITCHEN_SERVED_TTL', '60'))  # seconds

    # Business Information (for receipts)
    BUSINESS_NAME = os.getenv('BUSINESS_NAME', 'Cafe POS')
    BUSINESS_ADDRESS = os.getenv('BUSINESS_ADDRESS', '')
    BUSINESS_PHONE = os.getenv('BUSINESS_PHONE', '')

    # Error tracking
    SENTRY_DSN = os.getenv('SENTRY_DSN')


class TestingConfig(Config):
    """Configuration used by the test-suite: in-memory sqlite and storage."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    AUTO_CREATE_SCHEMA = True
    DATA_API_BACKEND = 'sql'
    STORAGE_BACKEND = 'memory'
    KITCHEN_URL = ''
    KITCHEN_NOTIFY_ON_SETTLEMENT = False
    SENTRY_DSN = None

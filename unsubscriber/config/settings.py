"""
Configuration settings for the unsubscribe pipeline.
"""

import os
from pathlib import Path

from dotenv import load_dotenv


class Config:
    """Configuration settings."""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///unsubscriber.db')
    DB_MAX_RETRIES = int(os.getenv('DB_MAX_RETRIES', '3'))

    # Scanner settings
    SCAN_LIMIT = int(os.getenv('SCAN_LIMIT', '1000'))
    SCAN_PAGE_SIZE = int(os.getenv('SCAN_PAGE_SIZE', '50'))
    FETCH_BATCH_SIZE = int(os.getenv('FETCH_BATCH_SIZE', '10'))

    # Sender tracking: hours after an unsubscribe before new mail counts against the sender
    GRACE_PERIOD_HOURS = int(os.getenv('GRACE_PERIOD_HOURS', '24'))

    # Mailbox provider settings
    GMAIL_MIN_REQUEST_INTERVAL = float(os.getenv('GMAIL_MIN_REQUEST_INTERVAL', '0.1'))
    GMAIL_MAX_RETRIES = int(os.getenv('GMAIL_MAX_RETRIES', '3'))

    # Unsubscribe execution settings
    REQUEST_TIMEOUT = int(os.getenv('REQUEST_TIMEOUT', '30'))
    BROWSER_TIMEOUT_MS = int(os.getenv('BROWSER_TIMEOUT_MS', '30000'))
    BROWSER_HEADLESS = os.getenv('BROWSER_HEADLESS', 'true').lower() == 'true'
    PLAYWRIGHT_WS_ENDPOINT = os.getenv('PLAYWRIGHT_WS_ENDPOINT')

    # Object storage for browser traces (unset = keep traces on local disk)
    PRIVATE_BUCKET_NAME = os.getenv('PRIVATE_BUCKET_NAME')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory for storing the database, screenshots and traces."""
        data_dir = Path(os.getenv('DATA_DIR', Path.cwd() / 'data'))
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    @classmethod
    def get_database_path(cls) -> str:
        """Get the database URL with relative sqlite paths placed in the data directory."""
        if cls.DATABASE_URL.startswith('sqlite:///') and ':memory:' not in cls.DATABASE_URL:
            db_file = cls.DATABASE_URL[10:]
            if not os.path.isabs(db_file):
                db_path = cls.get_data_dir() / db_file
                return f"sqlite:///{db_path}"
        return cls.DATABASE_URL

    @classmethod
    def _data_subdir(cls, env_name: str, default: str) -> Path:
        path = Path(os.getenv(env_name, default))
        if not path.is_absolute():
            path = cls.get_data_dir() / path
        path.mkdir(parents=True, exist_ok=True)
        return path

    @classmethod
    def get_screenshots_dir(cls) -> Path:
        """Directory for browser screenshots."""
        return cls._data_subdir('SCREENSHOTS_DIR', 'screenshots')

    @classmethod
    def get_traces_dir(cls) -> Path:
        """Directory for browser trace archives."""
        return cls._data_subdir('TRACES_DIR', 'traces')

    @classmethod
    def get_token_store_path(cls) -> Path:
        """Get the path to the access token store file."""
        store_path = os.getenv('TOKEN_STORE_PATH', 'access_tokens.json')

        # Expand {$DATA_DIR} variable if present
        if '{$DATA_DIR}' in store_path:
            store_path = store_path.replace('{$DATA_DIR}', str(cls.get_data_dir()))

        path = Path(store_path)
        if not path.is_absolute():
            path = cls.get_data_dir() / path

        return path


def load_config_from_env_file(env_file: str = '.env'):
    """Load configuration from environment file."""
    env_path = Path(env_file)
    if env_path.exists():
        load_dotenv(env_path)

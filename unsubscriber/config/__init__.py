"""
Configuration module.
"""

from .settings import Config, load_config_from_env_file
from .credentials import TokenStore, StoredTokenProvider, get_token_store

__all__ = [
    'Config', 'load_config_from_env_file',
    'TokenStore', 'StoredTokenProvider', 'get_token_store',
]

"""
Access token storage for mailbox owners.

The pipeline never refreshes tokens itself; it asks a token provider for a
valid token before every mailbox operation.
"""

import json
import os
from pathlib import Path
from typing import Optional, Dict, List

from ..exceptions import TokenUnavailableError


class TokenStore:
    """Manages stored mailbox access tokens."""

    def __init__(self, store_path: Optional[Path] = None):
        """
        Initialize token store.

        Args:
            store_path: Path to the JSON file storing tokens.
                       If None, tokens are kept in memory only.
        """
        self.store_path = store_path
        self._tokens: Dict[str, str] = {}
        self._load_tokens()

    def _load_tokens(self):
        """Load tokens from disk if the file exists."""
        if self.store_path and self.store_path.exists():
            try:
                with open(self.store_path, 'r') as f:
                    data = json.load(f)
                    self._tokens = data if isinstance(data, dict) else {}
            except (json.JSONDecodeError, IOError):
                # Corrupted or unreadable file, start fresh
                self._tokens = {}

    def _save_tokens(self):
        """Save tokens to disk."""
        if not self.store_path:
            return

        self.store_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.store_path, 'w') as f:
            json.dump(self._tokens, f, indent=2)

        # Owner read/write only
        os.chmod(self.store_path, 0o600)

    def get_token(self, owner_id: str) -> Optional[str]:
        """Get the access token for an owner, or None."""
        return self._tokens.get(owner_id.lower())

    def set_token(self, owner_id: str, token: str):
        """Store the access token for an owner."""
        self._tokens[owner_id.lower()] = token
        self._save_tokens()

    def remove_token(self, owner_id: str) -> bool:
        """
        Remove the stored token for an owner.

        Returns:
            True if a token was removed, False if none was stored
        """
        key = owner_id.lower()
        if key in self._tokens:
            del self._tokens[key]
            self._save_tokens()
            return True
        return False

    def list_owners(self) -> List[str]:
        """Owners with a stored token, sorted."""
        return sorted(self._tokens.keys())

    def has_token(self, owner_id: str) -> bool:
        return owner_id.lower() in self._tokens


class StoredTokenProvider:
    """Token provider backed by a TokenStore."""

    def __init__(self, store: TokenStore):
        self.store = store

    def get_valid_access_token(self, owner_id: str) -> str:
        token = self.store.get_token(owner_id)
        if not token:
            raise TokenUnavailableError(owner_id)
        return token


# Global token store instance
_token_store = None


def get_token_store(store_path: Optional[Path] = None) -> TokenStore:
    """
    Get the global token store instance.

    Args:
        store_path: Path to the token file. If None and no instance exists,
                   the path from Config is used.
    """
    global _token_store

    if _token_store is None:
        if store_path is None:
            # Import here to avoid circular dependency
            from .settings import Config
            store_path = Config.get_token_store_path()

        _token_store = TokenStore(store_path)

    return _token_store

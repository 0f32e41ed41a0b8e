"""
Utility functions for the pipeline.
"""
from cryptography.fernet import Fernet, InvalidToken
from datetime import datetime, timezone
from typing import Any, Optional
from meeting_followup.logging_config import get_logger
from meeting_followup.exceptions import ConfigurationError

logger = get_logger(__name__)


class TokenDecryptor:
    """Encrypts and decrypts per-user integration tokens."""

    def __init__(self, encryption_key: str):
        """Initialize with encryption key."""
        try:
            self.fernet = Fernet(encryption_key.encode())
        except (ValueError, TypeError) as e:
            logger.error("failed_to_initialize_decryptor", error=str(e))
            raise ConfigurationError(f"Invalid encryption key: {str(e)}")

    def encrypt_token(self, token: str) -> str:
        """Encrypt a token for storage."""
        return self.fernet.encrypt(token.encode()).decode()

    def decrypt_token(self, encrypted_token: Optional[str]) -> Optional[str]:
        """
        Decrypt an encrypted token.

        Args:
            encrypted_token: Encrypted token string

        Returns:
            Decrypted token string, or None when the token is absent or cannot
            be decrypted (treated as a missing credential)
        """
        if not encrypted_token:
            return None
        try:
            return self.fernet.decrypt(encrypted_token.encode()).decode()
        except InvalidToken:
            logger.warning("token_decryption_failed")
            return None


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_duration(seconds: float) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string like "2m 30s"
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


def safe_dict_get(d: dict, *keys: str, default: Any = None) -> Any:
    """
    Safely get nested dictionary values.

    Args:
        d: Dictionary to search
        *keys: Keys to traverse
        default: Default value if key not found

    Returns:
        Value or default
    """
    for key in keys:
        try:
            d = d[key]
        except (KeyError, TypeError, IndexError):
            return default
    return d

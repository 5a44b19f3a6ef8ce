"""Credential vault: authenticated encryption of vendor tokens.

Tokens are sealed with Fernet (AES-128-CBC + HMAC-SHA256) under a
per-deployment key taken from ``TOKEN_ENCRYPTION_KEY``.  Ciphertext that was
tampered with or produced under another key fails to decode with a
CredentialError instead of yielding garbage.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from cryptography.fernet import Fernet, InvalidToken

from src.devices.base import utc_now
from src.errors import CredentialError

logger = logging.getLogger("kalori.devices.vault")


class CredentialVault:
    """Stateless encode/decode pair plus token-expiry bookkeeping."""

    def __init__(self, key: str | bytes, token_ttl_seconds: int = 3600) -> None:
        """Initialize the vault.

        Args:
            key:               Fernet key (urlsafe base64 of 32 random bytes).
            token_ttl_seconds: Lifetime assumed for an access token whose
                               vendor did not report an expiry.
        """
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as exc:
            raise CredentialError("TOKEN_ENCRYPTION_KEY is not a valid Fernet key") from exc
        self._ttl = timedelta(seconds=token_ttl_seconds)

    @classmethod
    def ephemeral(cls, token_ttl_seconds: int = 3600) -> CredentialVault:
        """Vault with a random key.  Tokens do not survive a restart."""
        logger.warning(
            "TOKEN_ENCRYPTION_KEY not set — using an ephemeral key; stored tokens "
            "will be unreadable after restart"
        )
        return cls(Fernet.generate_key(), token_ttl_seconds)

    def encode(self, token: str) -> str:
        return self._fernet.encrypt(token.encode("utf-8")).decode("ascii")

    def decode(self, opaque: str) -> str:
        try:
            return self._fernet.decrypt(opaque.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            raise CredentialError("Stored token could not be decrypted") from exc

    def expiry_for(self, now: datetime | None = None) -> datetime:
        """Default expiry for a freshly stored access token."""
        return (now or utc_now()) + self._ttl

    @staticmethod
    def is_expired(
        expires_at: datetime | None,
        buffer_seconds: int = 0,
        now: datetime | None = None,
    ) -> bool:
        """True if the token expires within ``buffer_seconds``.  Unknown expiry never expires."""
        if expires_at is None:
            return False
        return (expires_at - (now or utc_now())).total_seconds() < buffer_seconds

"""*Fernet* encryption helper for tokens stored at rest.

Unlike a process-wide secret loaded at import time, the key is handed in
explicitly so the credential store can be constructed per configuration.
"""

from __future__ import annotations

from cryptography.fernet import Fernet
from cryptography.fernet import InvalidToken

from relay.errors import ConfigError


class TokenCipher:
    """Encrypt/decrypt short UTF-8 strings with a Fernet key."""

    def __init__(self, secret: str):
        if not secret:
            raise ConfigError("RELAY_FERNET_SECRET must be set to persist credentials")
        try:
            self._fernet = Fernet(secret.encode())
        except (ValueError, TypeError) as exc:
            raise ConfigError("RELAY_FERNET_SECRET is not a valid url-safe base64 32-byte key") from exc

    @staticmethod
    def generate_secret() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, text: str) -> str:  # noqa: D401 – thin wrapper
        """Encrypt *text* and return url-safe base64 ciphertext."""

        return self._fernet.encrypt(text.encode()).decode()

    def decrypt(self, token: str) -> str:  # noqa: D401 – thin wrapper
        """Decrypt *token* back to UTF-8 string."""

        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken as exc:
            raise ValueError("decryption failed – invalid key or ciphertext") from exc


__all__ = [
    "TokenCipher",
]

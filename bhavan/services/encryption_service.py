"""
Encryption for payment gateway secrets at rest.

Fernet (AES-128-CBC + HMAC) with a key derived from ENCRYPTION_SECRET via
PBKDF2. Encrypted values carry an "ENC:" prefix so plaintext rows written
before encryption was enabled still read back.
"""

import base64
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from bhavan.config import settings

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    pass


class EncryptionService:

    ENCRYPTED_PREFIX = "ENC:"

    def __init__(self, secret_key: Optional[str] = None, salt: Optional[str] = None):
        self._secret = secret_key or settings.ENCRYPTION_SECRET
        if not self._secret:
            logger.warning(
                "ENCRYPTION_SECRET not set. Falling back to SECRET_KEY for gateway secret encryption."
            )
            self._secret = settings.SECRET_KEY
        self._salt = (salt or settings.ENCRYPTION_SALT).encode()
        self._fernet = self._create_cipher()

    def _create_cipher(self) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=self._salt,
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(self._secret.encode()))
        return Fernet(key)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if not plaintext or plaintext.startswith(self.ENCRYPTED_PREFIX):
            return plaintext
        token = self._fernet.encrypt(plaintext.encode())
        return f"{self.ENCRYPTED_PREFIX}{token.decode()}"

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        """Decrypt an ENC: value. Values without the prefix are returned as-is."""
        if not ciphertext or not ciphertext.startswith(self.ENCRYPTED_PREFIX):
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext[len(self.ENCRYPTED_PREFIX):].encode()).decode()
        except InvalidToken:
            raise EncryptionError("Decryption failed: invalid token or key")

    def is_encrypted(self, value: Optional[str]) -> bool:
        return bool(value) and value.startswith(self.ENCRYPTED_PREFIX)


_encryption_service: Optional[EncryptionService] = None


def get_encryption_service() -> EncryptionService:
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = EncryptionService()
    return _encryption_service

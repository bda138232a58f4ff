"""
Cryptographic utilities for encrypting certificate material at rest (AES-256-GCM)
"""
import base64
import binascii
import hashlib
import secrets
from typing import Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from app.core.config import settings

NONCE_SIZE = 12
TAG_SIZE = 16


class AESEncryption:
    """AES-256-GCM primitives"""

    @staticmethod
    def encrypt_data(data: bytes, key: bytes) -> Tuple[bytes, bytes]:
        """
        Encrypt data using AES-256-GCM

        Returns:
            Tuple of (ciphertext with auth tag appended, nonce)
        """
        nonce = secrets.token_bytes(NONCE_SIZE)

        encryptor = Cipher(algorithms.AES(key), modes.GCM(nonce)).encryptor()
        ciphertext = encryptor.update(data) + encryptor.finalize()

        return ciphertext + encryptor.tag, nonce

    @staticmethod
    def decrypt_data(encrypted_data: bytes, key: bytes, nonce: bytes) -> bytes:
        """
        Decrypt data using AES-256-GCM

        Raises:
            ValueError: If the data was tampered with or the key is wrong
        """
        ciphertext = encrypted_data[:-TAG_SIZE]
        tag = encrypted_data[-TAG_SIZE:]

        decryptor = Cipher(algorithms.AES(key), modes.GCM(nonce, tag)).decryptor()
        try:
            return decryptor.update(ciphertext) + decryptor.finalize()
        except InvalidTag as e:
            raise ValueError("Decryption failed: authentication tag mismatch") from e


class SecureDataManager:
    """
    Encrypts values for database storage with the application encryption key.

    Stored format is base64(nonce + ciphertext + tag).
    """

    def __init__(self, encryption_key: Optional[str] = None):
        self.master_key = self._derive_master_key(encryption_key or settings.ENCRYPTION_KEY)

    @staticmethod
    def _derive_master_key(key_material: str) -> bytes:
        # Consistent 32-byte key regardless of configured length
        return hashlib.sha256(key_material.encode("utf-8")).digest()

    def encrypt_bytes(self, data: bytes) -> str:
        encrypted_data, nonce = AESEncryption.encrypt_data(data, self.master_key)
        return base64.b64encode(nonce + encrypted_data).decode("utf-8")

    def decrypt_bytes(self, encrypted: str) -> bytes:
        """
        Raises:
            ValueError: If decryption fails
        """
        try:
            combined = base64.b64decode(encrypted.encode("utf-8"), validate=True)
        except binascii.Error as e:
            raise ValueError(f"Stored value is not valid base64: {e}") from e
        if len(combined) < NONCE_SIZE + TAG_SIZE:
            raise ValueError("Stored value is too short to decrypt")
        return AESEncryption.decrypt_data(combined[NONCE_SIZE:], self.master_key, combined[:NONCE_SIZE])

    def encrypt_certificate(self, certificate_data: bytes) -> str:
        """Encrypt P12 certificate for database storage"""
        return self.encrypt_bytes(certificate_data)

    def decrypt_certificate(self, encrypted_certificate: str) -> bytes:
        return self.decrypt_bytes(encrypted_certificate)

    def encrypt_password(self, password: str) -> str:
        """Encrypt certificate password for database storage"""
        return self.encrypt_bytes(password.encode("utf-8"))

    def decrypt_password(self, encrypted_password: str) -> str:
        return self.decrypt_bytes(encrypted_password).decode("utf-8")


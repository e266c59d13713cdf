"""
At-rest encryption for stored HMRC OAuth tokens (AES-256-GCM).
"""

import base64
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from hmrc_rti.exceptions import TokenStorageError

ENC_PREFIX = 'ENC:'
MIN_SECRET_LENGTH = 32
NONCE_SIZE = 12
KDF_SALT = b'hmrc_token_salt'
KDF_ITERATIONS = 100000


def derive_key(secret: str) -> bytes:
    """Derive a 256-bit AES key from a configured secret of at least 32 characters"""
    if not secret or len(secret) < MIN_SECRET_LENGTH:
        raise TokenStorageError(
            f"Encryption key must be at least {MIN_SECRET_LENGTH} characters",
            error_code='INVALID_ENCRYPTION_KEY',
        )
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=KDF_SALT,
        iterations=KDF_ITERATIONS,
        backend=default_backend()
    )
    return kdf.derive(secret.encode('utf-8'))


def encrypt_value(plaintext: str, key: bytes) -> str:
    """Encrypt to 'ENC:' + base64(nonce || ciphertext || tag)"""
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode('utf-8'), None)
    return ENC_PREFIX + base64.b64encode(nonce + ciphertext).decode('ascii')


def is_encrypted(value: str) -> bool:
    return bool(value) and value.startswith(ENC_PREFIX)


def decrypt_value(value: str, key: bytes) -> str:
    """Decrypt a stored value. Values written without the ENC: prefix are accepted."""
    payload = value[len(ENC_PREFIX):] if is_encrypted(value) else value
    try:
        data = base64.b64decode(payload)
        nonce, ciphertext = data[:NONCE_SIZE], data[NONCE_SIZE:]
        return AESGCM(key).decrypt(nonce, ciphertext, None).decode('utf-8')
    except (InvalidTag, ValueError) as e:
        raise TokenStorageError("Stored token could not be decrypted", error_code='DECRYPTION_FAILED') from e

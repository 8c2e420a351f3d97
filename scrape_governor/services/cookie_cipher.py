"""
Cookie encryption at rest (AES-256-GCM).

Wire format: base64(nonce[16] || tag[16] || ciphertext).
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from scrape_governor.errors import CookieDecryptError

NONCE_LEN = 16
TAG_LEN = 16
KEY_LEN = 32
KDF_SALT = b"cookie-salt"


def derive_key(secret: str) -> bytes:
    """Use the secret as a hex key when it is one, otherwise stretch it with scrypt."""
    if not secret:
        raise ValueError("An encryption secret is required")
    try:
        key = bytes.fromhex(secret[:64])
        if len(key) == KEY_LEN:
            return key
    except ValueError:
        pass
    kdf = Scrypt(salt=KDF_SALT, length=KEY_LEN, n=2**14, r=8, p=1)
    return kdf.derive(secret.encode("utf-8"))


class CookieCipher:
    def __init__(self, secret: str):
        self._aead = AESGCM(derive_key(secret))

    def encrypt(self, plain: str) -> str:
        nonce = os.urandom(NONCE_LEN)
        sealed = self._aead.encrypt(nonce, plain.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LEN], sealed[-TAG_LEN:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, encrypted: str) -> str:
        try:
            buf = base64.b64decode(encrypted, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CookieDecryptError(f"Not a valid ciphertext encoding: {e}") from e
        if len(buf) < NONCE_LEN + TAG_LEN:
            raise CookieDecryptError("Ciphertext too short")

        nonce = buf[:NONCE_LEN]
        tag = buf[NONCE_LEN:NONCE_LEN + TAG_LEN]
        ciphertext = buf[NONCE_LEN + TAG_LEN:]
        try:
            plain = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise CookieDecryptError("Authentication tag mismatch") from e
        return plain.decode("utf-8")

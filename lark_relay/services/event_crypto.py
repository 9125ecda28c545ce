"""Decryption of Lark event callbacks sent with an Encrypt Key configured.

Lark encrypts the whole event body with AES-256-CBC. The key is the SHA-256
digest of the Encrypt Key, the first 16 bytes of the base64 blob are the IV and
the plaintext is PKCS#7 padded JSON.
"""

import base64
import binascii
import hashlib
import json
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

IV_LENGTH = 16


class DecryptError(ValueError):
    pass


def derive_key(encrypt_key: str) -> bytes:
    return hashlib.sha256(encrypt_key.encode("utf-8")).digest()


def decrypt_payload(encrypt: Optional[str], encrypt_key: Optional[str]) -> Optional[dict]:
    """Return the decrypted event body, or None when there is nothing to decrypt.

    Raises DecryptError when the blob cannot be decrypted into a JSON object.
    """
    if not encrypt or not encrypt_key:
        return None

    try:
        blob = base64.b64decode(encrypt, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptError("encrypt is not valid base64") from e
    if len(blob) <= IV_LENGTH or (len(blob) - IV_LENGTH) % 16:
        raise DecryptError("encrypt has an invalid length")

    decryptor = Cipher(algorithms.AES(derive_key(encrypt_key)), modes.CBC(blob[:IV_LENGTH])).decryptor()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        padded = decryptor.update(blob[IV_LENGTH:]) + decryptor.finalize()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        data = json.loads(plaintext.decode("utf-8"))
    except ValueError as e:
        # bad padding, bad utf-8 and bad json all surface as ValueError
        raise DecryptError("encrypt could not be decrypted") from e

    if not isinstance(data, dict):
        raise DecryptError("decrypted event is not an object")
    return data

import base64
import json
import os

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from lark_relay.services.event_crypto import derive_key
from lark_relay.services.queue_service import MessageQueue

START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "lark-queue.db"


@pytest.fixture
def media_dir(tmp_path):
    return tmp_path / "media"


@pytest.fixture
def queue(db_path, media_dir, clock):
    q = MessageQueue(db_path, media_dir=media_dir, clock=clock)
    yield q
    q.close()


ENCRYPT_KEY = "test-encrypt-key"


@pytest.fixture
def encrypt_event():
    """Encrypt an event body the way Lark does when an Encrypt Key is set."""

    def _encrypt(data, encrypt_key: str = ENCRYPT_KEY) -> str:
        iv = os.urandom(16)
        padder = padding.PKCS7(128).padder()
        plaintext = padder.update(json.dumps(data).encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(derive_key(encrypt_key)), modes.CBC(iv)).encryptor()
        return base64.b64encode(iv + encryptor.update(plaintext) + encryptor.finalize()).decode("ascii")

    return _encrypt

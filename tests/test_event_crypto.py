import base64

import pytest

from lark_relay.services.event_crypto import DecryptError, decrypt_payload

ENCRYPT_KEY = "test-encrypt-key"


class TestDecryptPayload:
    def test_missing_key_returns_none(self):
        assert decrypt_payload("encrypted", "") is None

    def test_missing_data_returns_none(self):
        assert decrypt_payload("", ENCRYPT_KEY) is None

    def test_round_trip(self, encrypt_event):
        event = {"type": "url_verification", "challenge": "abc", "token": "t"}

        assert decrypt_payload(encrypt_event(event), ENCRYPT_KEY) == event

    def test_wrong_key(self, encrypt_event):
        blob = encrypt_event({"type": "url_verification"})

        with pytest.raises(DecryptError):
            decrypt_payload(blob, "another-key")

    def test_not_base64(self):
        with pytest.raises(DecryptError):
            decrypt_payload("%%%not base64%%%", ENCRYPT_KEY)

    def test_truncated_ciphertext(self, encrypt_event):
        blob = base64.b64decode(encrypt_event({"a": 1}))

        with pytest.raises(DecryptError):
            decrypt_payload(base64.b64encode(blob[:20]).decode("ascii"), ENCRYPT_KEY)

    def test_non_object_body(self, encrypt_event):
        with pytest.raises(DecryptError):
            decrypt_payload(encrypt_event(["not", "an", "object"]), ENCRYPT_KEY)

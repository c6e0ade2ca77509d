"""
Test cases for API key encryption.
"""

import pytest

from newsdesk.errors import ConfigurationError, CredentialDecryptionError
from newsdesk.utils.crypto import decrypt_api_key, encrypt_api_key

PASSPHRASE = "correct horse battery staple"


@pytest.mark.parametrize("secret", [
    "pplx-0123456789abcdef",
    "a",
    "with spaces and $dollar$ signs",
    "ünïcødé ✓ 鍵",
    "~!@#%^&*()_+`-={}|[]\\:\";'<>?,./",
])
def test_round_trip(secret):
    ciphertext = encrypt_api_key(secret, PASSPHRASE, iterations=1000)
    assert decrypt_api_key(ciphertext, PASSPHRASE) == secret


def test_ciphertext_is_opaque_versioned_text():
    ciphertext = encrypt_api_key("pplx-secret", PASSPHRASE, iterations=1000)
    assert ciphertext.startswith("v1$1000$")
    assert "pplx-secret" not in ciphertext
    ciphertext.encode("ascii")


def test_salt_differs_per_ciphertext():
    first = encrypt_api_key("pplx-secret", PASSPHRASE, iterations=1000)
    second = encrypt_api_key("pplx-secret", PASSPHRASE, iterations=1000)
    assert first != second


def test_uses_configured_secret_by_default():
    ciphertext = encrypt_api_key("pplx-secret")
    assert decrypt_api_key(ciphertext) == "pplx-secret"


def test_wrong_passphrase():
    ciphertext = encrypt_api_key("pplx-secret", PASSPHRASE, iterations=1000)
    with pytest.raises(CredentialDecryptionError):
        decrypt_api_key(ciphertext, "another passphrase")


@pytest.mark.parametrize("ciphertext", ["", "garbage", "v2$1000$c2FsdA$token", "v1$many$c2FsdA$token", "v1$1000$c2FsdA$not-a-token"])
def test_malformed_ciphertext(ciphertext):
    with pytest.raises(CredentialDecryptionError):
        decrypt_api_key(ciphertext, PASSPHRASE)


def test_missing_passphrase(monkeypatch):
    from newsdesk.utils.config import settings

    monkeypatch.setattr(settings, "ENCRYPTION_SECRET", None)
    with pytest.raises(ConfigurationError):
        encrypt_api_key("pplx-secret")
    with pytest.raises(ConfigurationError):
        decrypt_api_key("v1$1000$c2FsdA$token")
    with pytest.raises(ConfigurationError):
        encrypt_api_key("pplx-secret", "")

"""
Tests for hashing and per-owner encryption.
"""

import pytest

from rssplanet.crypto import CIPHER_PREFIX, OwnerCipher, md5


class TestMD5:
    @pytest.mark.parametrize("message,digest", [
        ("hello", "5d41402abc4b2a76b9719d911017c592"),
        ("", "d41d8cd98f00b204e9800998ecf8427e"),
        ("The quick brown fox jumps over the lazy dog", "9e107d9d372bb6826bd81d3542a419d6"),
    ])
    def test_known_digests(self, message, digest):
        assert md5(message) == digest


class TestOwnerCipher:
    """Tests for AES-GCM encryption keyed by secret and owner."""

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            OwnerCipher("")

    def test_round_trip(self):
        """Should decrypt what it encrypted for the same owner."""
        cipher = OwnerCipher("secret")
        sealed = cipher.encrypt("https://example.com/feed", "alice")
        assert sealed.startswith(CIPHER_PREFIX)
        assert "example.com" not in sealed
        assert cipher.decrypt(sealed, "alice") == "https://example.com/feed"

    def test_nonce_differs_per_call(self):
        """Encrypting the same value twice should not repeat ciphertext."""
        cipher = OwnerCipher("secret")
        assert cipher.encrypt("same", "alice") != cipher.encrypt("same", "alice")

    def test_other_owner_cannot_decrypt(self):
        """A different owner derives a different key."""
        cipher = OwnerCipher("secret")
        sealed = cipher.encrypt("private", "alice")
        assert cipher.decrypt(sealed, "bob") is None

    def test_other_secret_cannot_decrypt(self):
        sealed = OwnerCipher("secret").encrypt("private", "alice")
        assert OwnerCipher("rotated").decrypt(sealed, "alice") is None

    def test_plaintext_passes_through(self):
        """Values without the version prefix are legacy plaintext."""
        cipher = OwnerCipher("secret")
        assert cipher.decrypt("https://example.com/old", "alice") == "https://example.com/old"

    @pytest.mark.parametrize("stored", ["v1:", "v1:not base64!", "v1:AAAA"])
    def test_malformed_ciphertext_returns_none(self, stored):
        assert OwnerCipher("secret").decrypt(stored, "alice") is None

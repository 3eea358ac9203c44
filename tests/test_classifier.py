"""Tests for the ciphertext/plaintext heuristic."""
import pytest

from everkeep.vault.classifier import (
    Ciphertext,
    MAGIC_PREFIX,
    Plaintext,
    classify,
    looks_encrypted,
)
from everkeep.vault.crypto import derive_key, encrypt_text


class TestLooksEncrypted:

    @pytest.mark.parametrize("text", ["x", "Family Photos", "a" * 5000])
    def test_cipher_output_is_recognised(self, text):
        """Everything the cipher produces is classified as ciphertext."""
        key = derive_key("u1", "v1")
        assert looks_encrypted(encrypt_text(text, key)) is True

    def test_empty_and_none(self):
        """Empty or absent values are never ciphertext."""
        assert looks_encrypted("") is False
        assert looks_encrypted(None) is False

    def test_plain_sentences(self):
        """Ordinary text is plaintext."""
        assert looks_encrypted("hello world") is False
        assert looks_encrypted("Grandma's recipes") is False

    def test_magic_prefix_anywhere(self):
        """The salted magic marks a value as ciphertext wherever it appears."""
        assert looks_encrypted(MAGIC_PREFIX) is True
        assert looks_encrypted("prefix " + MAGIC_PREFIX + " suffix") is True

    def test_base64_threshold(self):
        """Pure base64 alphabet only counts when longer than 50 chars."""
        assert looks_encrypted("A" * 50) is False
        assert looks_encrypted("A" * 51) is True
        assert looks_encrypted("Ab+/=" * 11) is True

    def test_trailing_newline_is_not_base64(self):
        """A trailing newline takes a value out of the base64 alphabet."""
        assert looks_encrypted("A" * 51 + "\n") is False
        assert looks_encrypted("A" * 60 + "\nB") is False

    def test_long_text_with_spaces(self):
        """Long text outside the base64 alphabet stays plaintext."""
        assert looks_encrypted("word " * 40) is False


class TestClassify:

    def test_tags(self):
        """classify wraps values in an explicit variant."""
        key = derive_key("u1", "v1")
        blob = encrypt_text("secret", key)
        assert classify(blob) == Ciphertext(blob)
        assert classify("hello world") == Plaintext("hello world")

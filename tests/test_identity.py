"""
Tests for the identity provider.

Tests cover:
- Recipient and secret string forms
- Parsing errors for malformed keys
- Identity files: generation, permissions, loading, empty/invalid files
"""
import os
import stat
import sys

import pytest

from envkey.errors import StoreIOError, ValidationError
from envkey.identity import (
    RECIPIENT_PREFIX,
    SECRET_PREFIX,
    Identity,
    generate_identity_at,
    load_identity_from,
    load_or_generate_identity,
    parse_recipient,
)


class TestKeyStrings:

    def test_public_key_form(self, alice):
        """Test that the recipient string carries the envkey1 prefix."""
        assert alice.public_key.startswith(RECIPIENT_PREFIX)
        assert len(alice.public_key) == len(RECIPIENT_PREFIX) + 43

    def test_secret_round_trip(self, alice):
        """Test that the secret form reloads to the same keypair."""
        secret = alice.to_secret()
        assert secret.startswith(SECRET_PREFIX)
        assert Identity.from_secret(secret).public_key == alice.public_key

    def test_repr_hides_secret(self, alice):
        assert alice.to_secret() not in repr(alice)
        assert alice.public_key in repr(alice)

    def test_generated_identities_differ(self):
        assert Identity.generate().public_key != Identity.generate().public_key

    def test_parse_recipient_accepts_surrounding_whitespace(self, alice):
        parse_recipient(f"  {alice.public_key}\n")

    @pytest.mark.parametrize("text", [
        "",
        "age1qqqq",
        RECIPIENT_PREFIX,
        RECIPIENT_PREFIX + "!" * 43,
        RECIPIENT_PREFIX + "A" * 42,
    ])
    def test_parse_recipient_rejects_malformed(self, text):
        with pytest.raises(ValidationError, match="invalid public key"):
            parse_recipient(text)

    def test_secret_is_not_a_recipient(self, alice):
        with pytest.raises(ValidationError):
            parse_recipient(alice.to_secret())

    def test_from_secret_rejects_malformed(self, alice):
        with pytest.raises(ValidationError, match="invalid identity"):
            Identity.from_secret(alice.public_key)


class TestIdentityFiles:

    def test_generate_and_load(self, tmp_path):
        """Test that a generated identity reloads with the same public key."""
        path = tmp_path / "keys" / "identity.key"
        generated = generate_identity_at(path)
        loaded = load_identity_from(path)
        assert generated.public_key == loaded.public_key
        assert path.read_text().endswith("\n")

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_permissions_are_restricted(self, tmp_path):
        path = tmp_path / "identity.key"
        generate_identity_at(path)
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_empty_file(self, tmp_path):
        path = tmp_path / "identity.key"
        path.write_text("\n")
        with pytest.raises(ValidationError, match="is empty"):
            load_identity_from(path)

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "identity.key"
        path.write_text("garbage\n")
        with pytest.raises(ValidationError, match="invalid identity in"):
            load_identity_from(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(StoreIOError, match="failed to read identity"):
            load_identity_from(tmp_path / "missing.key")

    def test_load_or_generate(self, tmp_path):
        """Test generate-once then reuse, and forced regeneration."""
        path = tmp_path / "identity.key"
        first, generated = load_or_generate_identity(path)
        assert generated is True
        again, generated = load_or_generate_identity(path)
        assert generated is False
        assert again.public_key == first.public_key
        forced, generated = load_or_generate_identity(path, force=True)
        assert generated is True
        assert forced.public_key != first.public_key

"""
Identity Provider — X25519 keypairs and their string forms.

An identity is the private half of a keypair; its recipient string
(``envkey1...``) is what gets recorded in the team table. Identity files
hold a single ``ENVKEY-SECRET-KEY-...`` line and are written with 0600
permissions.

Security Note:
    Never log the secret string form. Only public keys and paths are
    safe to log.
"""
import os
import re
import base64
import logging
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)

from .errors import StoreIOError, ValidationError

logger = logging.getLogger("envkey")

RECIPIENT_PREFIX = "envkey1"
SECRET_PREFIX = "ENVKEY-SECRET-KEY-"
KEY_SIZE = 32  # raw X25519 key length

_B64_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]{43}$")


def _encode_key(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _decode_key(text: str) -> bytes:
    if not _B64_KEY_PATTERN.match(text):
        raise ValueError("expected 43 url-safe base64 characters")
    return base64.urlsafe_b64decode(text + "=")


def parse_recipient(text: str) -> X25519PublicKey:
    """Parse a recipient string into an X25519 public key.

    Raises:
        ValidationError: If the string is not a well-formed recipient.
    """
    value = (text or "").strip()
    if not value.startswith(RECIPIENT_PREFIX):
        raise ValidationError(
            f"invalid public key `{text}`: must start with {RECIPIENT_PREFIX}"
        )
    try:
        raw = _decode_key(value[len(RECIPIENT_PREFIX):])
        return X25519PublicKey.from_public_bytes(raw)
    except ValueError as err:
        raise ValidationError(f"invalid public key `{text}`: {err}") from err


def recipient_to_string(public_key: X25519PublicKey) -> str:
    raw = public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return RECIPIENT_PREFIX + _encode_key(raw)


class Identity:
    """A private key held in memory for the duration of one invocation."""

    __slots__ = ("_private_key", "_public_key")

    def __init__(self, private_key: X25519PrivateKey):
        self._private_key = private_key
        self._public_key = recipient_to_string(private_key.public_key())

    def __repr__(self) -> str:
        return f"<Identity {self._public_key}>"

    @classmethod
    def generate(cls) -> "Identity":
        return cls(X25519PrivateKey.generate())

    @classmethod
    def from_secret(cls, text: str) -> "Identity":
        """Parse the ``ENVKEY-SECRET-KEY-...`` form.

        Raises:
            ValidationError: If the text is not a valid secret key.
        """
        value = (text or "").strip()
        if not value.startswith(SECRET_PREFIX):
            raise ValidationError(
                f"invalid identity: must start with {SECRET_PREFIX}"
            )
        try:
            raw = _decode_key(value[len(SECRET_PREFIX):])
            return cls(X25519PrivateKey.from_private_bytes(raw))
        except ValueError as err:
            raise ValidationError(f"invalid identity: {err}") from err

    @property
    def public_key(self) -> str:
        """Recipient string recorded in the team table."""
        return self._public_key

    @property
    def public_bytes(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def exchange(self, peer: X25519PublicKey) -> bytes:
        """X25519 shared secret with ``peer``."""
        return self._private_key.exchange(peer)

    def to_secret(self) -> str:
        raw = self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return SECRET_PREFIX + _encode_key(raw)


def generate_identity() -> Identity:
    return Identity.generate()


def identity_exists(path: Path) -> bool:
    return Path(path).is_file()


def generate_identity_at(path: Path) -> Identity:
    """Generate a new identity and write it to ``path`` with 0600 permissions.

    Parent directories are created as needed. An existing file is
    overwritten.

    Returns:
        The freshly generated identity, re-read from disk.
    """
    path = Path(path)
    identity = Identity.generate()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as fp:
            fp.write(identity.to_secret())
            fp.write("\n")
        os.chmod(path, 0o600)
    except OSError as err:
        raise StoreIOError(
            f"failed to write identity at {path}: {err}"
        ) from err
    logger.info("Generated identity at %s (%s)", path, identity.public_key)
    return load_identity_from(path)


def load_identity_from(path: Path) -> Identity:
    """Load an identity file.

    Raises:
        StoreIOError: If the file cannot be read.
        ValidationError: If the file is empty or holds an invalid key.
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as err:
        raise StoreIOError(
            f"failed to read identity at {path}: {err}"
        ) from err
    key = raw.strip()
    if not key:
        raise ValidationError(f"identity file {path} is empty")
    try:
        return Identity.from_secret(key)
    except ValidationError as err:
        raise ValidationError(f"invalid identity in {path}: {err}") from err


def load_or_generate_identity(
    path: Path, force: bool = False,
) -> tuple[Identity, bool]:
    """Return ``(identity, generated)``; generate when missing or forced."""
    if force or not identity_exists(path):
        return generate_identity_at(path), True
    return load_identity_from(path), False

"""
Envelope Crypto Engine — multi-recipient encryption of single secret values.

Every call to :func:`encrypt_value` draws a fresh 32-byte file key. The file
key is wrapped once per recipient (X25519 with an ephemeral key, HKDF-SHA256,
AEAD) and the value is encrypted once under a key derived from it:

    stanza_i = AEAD(HKDF(X25519(eph_i, recipient_i), salt=eph_i|recipient_i),
                    file_key)
    body     = AEAD(HKDF(file_key, "envkey/v1/payload"), value, aad=header)

The envelope is an orjson document carrying the stanzas, the body and the
AEAD algorithm used, armored as a single base64 string.

Security Note:
    Never log plaintext or ciphertext values.
    Nonces are random 96-bit; every key is used for one message only.
"""
import os
import base64
import binascii
import logging
from collections.abc import Sequence
from typing import Any, Optional

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import CryptoError, EmptyRecipientsError, ValidationError
from .identity import Identity, parse_recipient

logger = logging.getLogger("envkey")

ENVELOPE_VERSION = 1
NONCE_SIZE = 12  # 96-bit nonce
KEY_LENGTH = 32  # file key, wrap keys and payload keys
X25519_SIZE = 32

WRAP_CONTEXT = "envkey/v1/x25519"
PAYLOAD_CONTEXT = "envkey/v1/payload"

CIPHERS: dict[str, type] = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


def _get_cipher_name() -> str:
    """Return the AEAD used for new envelopes from ENVKEY_CIPHER_BACKEND."""
    backend = os.environ.get("ENVKEY_CIPHER_BACKEND", "aesgcm").lower()
    if backend == "chacha20":
        return "chacha20"
    return "aesgcm"


# Resolved once at module load. Decryption always follows the "alg"
# recorded in the envelope, so existing secrets stay readable.
CIPHER_NAME = _get_cipher_name()


def _b64e(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _raw_public(public_key: X25519PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(seed: bytes, context: str, salt: Optional[bytes] = None) -> bytes:
    """Derive a 32-byte key using HKDF-SHA256.

    Args:
        seed: Input key material (X25519 shared secret or file key).
        context: Context string for domain separation.
        salt: Optional salt; stanzas bind both public keys here.

    Returns:
        32-byte derived key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


def _header_bytes(alg: str, stanzas: list[dict[str, str]]) -> bytes:
    """Canonical header bytes, authenticated as AAD of the body."""
    return orjson.dumps(
        {"v": ENVELOPE_VERSION, "alg": alg, "stanzas": stanzas},
        option=orjson.OPT_SORT_KEYS,
    )


# ---------------------------------------------------------------------------
# Encryption
# ---------------------------------------------------------------------------

def _wrap_for(
    file_key: bytes, recipient: X25519PublicKey, cipher_cls: type,
) -> dict[str, str]:
    ephemeral = X25519PrivateKey.generate()
    ephemeral_raw = _raw_public(ephemeral.public_key())
    shared = ephemeral.exchange(recipient)
    wrap_key = derive_key(
        shared, WRAP_CONTEXT, salt=ephemeral_raw + _raw_public(recipient),
    )
    nonce = os.urandom(NONCE_SIZE)
    wrapped = cipher_cls(wrap_key).encrypt(nonce, file_key, None)
    return {
        "epk": _b64e(ephemeral_raw),
        "nonce": _b64e(nonce),
        "key": _b64e(wrapped),
    }


def encrypt_value(
    plaintext: str,
    recipients: Sequence[str],
    cipher: Optional[str] = None,
) -> str:
    """Encrypt ``plaintext`` so that any one of ``recipients`` can decrypt it.

    Args:
        plaintext: Secret value.
        recipients: Recipient strings (``envkey1...``); must not be empty.
        cipher: AEAD name overriding the module default.

    Returns:
        Armored envelope (base64 text).

    Raises:
        EmptyRecipientsError: If ``recipients`` is empty.
        ValidationError: If a recipient cannot be parsed or the cipher is
            unknown.
    """
    if not recipients:
        raise EmptyRecipientsError(
            "no team recipients found in .envkey; cannot encrypt"
        )
    public_keys = [parse_recipient(r) for r in recipients]
    alg = cipher or CIPHER_NAME
    cipher_cls = CIPHERS.get(alg)
    if cipher_cls is None:
        raise ValidationError(f"Unsupported cipher backend: {alg}")

    file_key = os.urandom(KEY_LENGTH)
    stanzas = [_wrap_for(file_key, pk, cipher_cls) for pk in public_keys]

    payload_key = derive_key(file_key, PAYLOAD_CONTEXT)
    nonce = os.urandom(NONCE_SIZE)
    body = cipher_cls(payload_key).encrypt(
        nonce, plaintext.encode("utf-8"), _header_bytes(alg, stanzas),
    )
    envelope = {
        "v": ENVELOPE_VERSION,
        "alg": alg,
        "stanzas": stanzas,
        "nonce": _b64e(nonce),
        "body": _b64e(body),
    }
    logger.debug("Encrypted value for %d recipient(s)", len(stanzas))
    return _b64e(orjson.dumps(envelope))


# ---------------------------------------------------------------------------
# Decryption
# ---------------------------------------------------------------------------

def _invalid_envelope(detail: str) -> ValidationError:
    return ValidationError(f"ciphertext is not a valid envkey envelope: {detail}")


def _field(doc: dict[str, Any], name: str, size: Optional[int] = None) -> bytes:
    value = doc.get(name)
    if not isinstance(value, str):
        raise _invalid_envelope(f"missing field {name}")
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as err:
        raise _invalid_envelope(f"field {name} is not base64") from err
    if size is not None and len(raw) != size:
        raise _invalid_envelope(f"field {name} has wrong length")
    return raw


def parse_envelope(armored: str) -> dict[str, Any]:
    """Decode and structurally validate an armored envelope.

    Raises:
        ValidationError: If the text is not base64 or not a well-formed
            envelope document.
    """
    try:
        raw = base64.b64decode((armored or "").strip(), validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValidationError("ciphertext is not valid base64") from err
    try:
        doc = orjson.loads(raw)
    except orjson.JSONDecodeError as err:
        raise _invalid_envelope("not a JSON document") from err
    if not isinstance(doc, dict):
        raise _invalid_envelope("not a mapping")
    if doc.get("v") != ENVELOPE_VERSION:
        raise _invalid_envelope(f"unsupported version {doc.get('v')!r}")
    if doc.get("alg") not in CIPHERS:
        raise _invalid_envelope(f"unsupported algorithm {doc.get('alg')!r}")
    stanzas = doc.get("stanzas")
    if not isinstance(stanzas, list) or not stanzas:
        raise _invalid_envelope("no recipient stanzas")
    for stanza in stanzas:
        if not isinstance(stanza, dict):
            raise _invalid_envelope("stanza is not a mapping")
        _field(stanza, "epk", X25519_SIZE)
        _field(stanza, "nonce", NONCE_SIZE)
        _field(stanza, "key")
    _field(doc, "nonce", NONCE_SIZE)
    _field(doc, "body")
    return doc


def _unwrap(
    stanza: dict[str, str], identity: Identity, cipher_cls: type,
) -> Optional[bytes]:
    """Return the file key if ``stanza`` is addressed to ``identity``."""
    ephemeral_raw = _field(stanza, "epk", X25519_SIZE)
    try:
        shared = identity.exchange(X25519PublicKey.from_public_bytes(ephemeral_raw))
    except ValueError:
        # low-order point; cannot be ours
        return None
    wrap_key = derive_key(
        shared, WRAP_CONTEXT, salt=ephemeral_raw + identity.public_bytes,
    )
    try:
        file_key = cipher_cls(wrap_key).decrypt(
            _field(stanza, "nonce", NONCE_SIZE), _field(stanza, "key"), None,
        )
    except InvalidTag:
        return None
    if len(file_key) != KEY_LENGTH:
        return None
    return file_key


def decrypt_value(armored: str, identity: Identity) -> str:
    """Decrypt an armored envelope with ``identity``.

    Raises:
        ValidationError: If the envelope encoding is malformed.
        CryptoError: If no stanza is addressed to ``identity`` or the
            envelope was tampered with.
    """
    doc = parse_envelope(armored)
    alg = doc["alg"]
    cipher_cls = CIPHERS[alg]
    stanzas = doc["stanzas"]

    file_key = None
    for stanza in stanzas:
        file_key = _unwrap(stanza, identity, cipher_cls)
        if file_key is not None:
            break
    if file_key is None:
        raise CryptoError("failed to decrypt value: no matching recipient")

    payload_key = derive_key(file_key, PAYLOAD_CONTEXT)
    try:
        plaintext = cipher_cls(payload_key).decrypt(
            _field(doc, "nonce", NONCE_SIZE),
            _field(doc, "body"),
            _header_bytes(alg, stanzas),
        )
    except InvalidTag as err:
        raise CryptoError(
            "failed to decrypt value: envelope is corrupt or tampered"
        ) from err
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as err:
        raise ValidationError("decrypted value is not valid UTF-8") from err


def recipient_count(armored: str) -> int:
    """Number of recipient stanzas in an envelope."""
    return len(parse_envelope(armored)["stanzas"])

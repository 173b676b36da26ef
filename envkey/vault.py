"""
Vault — store initialization and secret operations.

Provides the secret-facing API of envkey:
- ``init_store(store, identity, username)`` - create ``.envkey`` with the
  caller as sole admin
- ``set_secret(...)`` - encrypt a value for every team member and persist it
- ``get_secret(...)`` - decrypt a value with the caller's identity
- ``list_secrets(...)`` / ``list_members(...)`` - metadata rows, no values

The identity and the store handle are passed into every call; nothing is
read from process-wide state.

Security Note:
    Never log plaintext or ciphertext values. Only log key names, member
    names and counts.
"""
import logging
from dataclasses import dataclass

from .crypto import decrypt_value, encrypt_value
from .errors import EmptyRecipientsError, StateConflictError
from .identity import Identity
from .model import (
    DEFAULT_ENV,
    EnvkeyFile,
    SecretEntry,
    now_date,
    now_timestamp,
    require_supported_env,
    validate_secret_key,
)
from .storage import EnvkeyStore

logger = logging.getLogger("envkey")


@dataclass
class InitResult:
    created: bool
    public_key: str


@dataclass
class SetResult:
    key: str
    env: str
    recipients: int


@dataclass
class SecretRow:
    env: str
    key: str
    set_by: str
    modified: str


@dataclass
class MemberRow:
    name: str
    role: str
    environments: str
    added: str


def init_store(
    store: EnvkeyStore,
    identity: Identity,
    username: str,
    force: bool = False,
) -> InitResult:
    """Create the store with ``username`` as the sole admin.

    An existing store is left untouched; a second identity running init never
    adds itself to the team.

    Args:
        force: The caller regenerated its identity. Refused when the store
            already exists, since the old admin key would be lost.

    Raises:
        StateConflictError: ``force`` on an existing store.
    """
    created = False
    with store.locked():
        if store.exists():
            if force:
                raise StateConflictError(
                    "force is blocked when .envkey already exists; "
                    "remove .envkey first"
                )
        else:
            file = EnvkeyFile.new(username, identity.public_key, now_date())
            store.write(file)
            created = True
    if created:
        logger.info("Created %s with %s as admin", store.path, username)
    else:
        logger.info("%s already exists", store.path)
    return InitResult(created=created, public_key=identity.public_key)


def set_secret(
    store: EnvkeyStore,
    identity: Identity,
    env: str,
    key: str,
    value: str,
    set_by: str,
) -> SetResult:
    """Encrypt ``value`` for every team member and store it under ``key``.

    The new envelope is decrypted with the caller's identity before it is
    written, so a caller outside the team cannot overwrite secrets it could
    never read back.

    Raises:
        ValidationError: Unsupported environment or invalid key name.
        EmptyRecipientsError: The team is empty.
        CryptoError: The caller is not a recipient.
    """
    require_supported_env(env)
    validate_secret_key(key)

    with store.locked():
        file = store.read()
        recipients = file.recipients()
        if not recipients:
            raise EmptyRecipientsError(
                "no team recipients found in .envkey; cannot encrypt"
            )
        encrypted = encrypt_value(value, recipients, cipher=store.cipher)
        decrypt_value(encrypted, identity)
        file.insert_secret(
            env,
            key,
            SecretEntry(value=encrypted, set_by=set_by, modified=now_timestamp()),
        )
        store.write(file)

    logger.info(
        "Encrypted %s for %d recipient(s) (%s)", key, len(recipients), env,
    )
    return SetResult(key=key, env=env, recipients=len(recipients))


def get_secret(
    store: EnvkeyStore,
    identity: Identity,
    env: str,
    key: str,
) -> str:
    """Decrypt and return the value stored under ``key``.

    Reads without taking the lock; writers replace the file atomically.

    Raises:
        ValidationError: Unsupported environment or malformed ciphertext.
        StateConflictError: Environment or key not found.
        CryptoError: The caller is not a recipient.
    """
    require_supported_env(env)
    file = store.read()
    entries = file.environments.get(env)
    if entries is None:
        raise StateConflictError(f"{env} environment not found in .envkey")
    entry = entries.get(key)
    if entry is None:
        raise StateConflictError(f"secret key not found: {key}")
    return decrypt_value(entry.value, identity)


def list_secrets(store: EnvkeyStore, env: str = DEFAULT_ENV) -> list[SecretRow]:
    """Secret metadata sorted by key. Values are never included."""
    require_supported_env(env)
    file = store.read()
    entries = file.environments.get(env) or {}
    return [
        SecretRow(env=env, key=key, set_by=entry.set_by, modified=entry.modified)
        for key, entry in sorted(entries.items())
    ]


def list_members(store: EnvkeyStore) -> list[MemberRow]:
    """Team rows sorted by name, roles as lowercase tokens."""
    file = store.read()
    return [
        MemberRow(
            name=name,
            role=member.role.value,
            environments=",".join(member.environments or [DEFAULT_ENV]),
            added=member.added,
        )
        for name, member in sorted(file.team.items())
    ]

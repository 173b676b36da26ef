"""envkey — team secrets without servers.

Secrets live encrypted in a ``.envkey`` file next to the source. Every team
member is a recipient of every secret; any change to the team re-encrypts
the whole store.

Security Note (Threat Model):
    A removed member keeps whatever plaintext they read before removal.
    Re-encryption only guarantees they cannot decrypt the current file;
    rotate the underlying credentials when that matters.
"""

from .version import __version__
from .config import EnvkeyConfig
from .errors import (
    EnvkeyError,
    ValidationError,
    AuthorizationError,
    StateConflictError,
    AbortedError,
    EmptyRecipientsError,
    CryptoError,
    StoreIOError,
    StoreNotFoundError,
)
from .identity import (
    Identity,
    generate_identity,
    generate_identity_at,
    load_identity_from,
    load_or_generate_identity,
    parse_recipient,
)
from .crypto import encrypt_value, decrypt_value
from .model import EnvkeyFile, Role, SecretEntry, TeamMember
from .storage import EnvkeyStore, envkey_path
from .rotation import (
    RotationResult,
    add_member,
    remove_member,
    update_member,
    set_member_role,
)
from .vault import (
    init_store,
    set_secret,
    get_secret,
    list_secrets,
    list_members,
)

__all__ = [
    "__version__",
    "EnvkeyConfig",
    "EnvkeyError",
    "ValidationError",
    "AuthorizationError",
    "StateConflictError",
    "AbortedError",
    "EmptyRecipientsError",
    "CryptoError",
    "StoreIOError",
    "StoreNotFoundError",
    "Identity",
    "generate_identity",
    "generate_identity_at",
    "load_identity_from",
    "load_or_generate_identity",
    "parse_recipient",
    "encrypt_value",
    "decrypt_value",
    "EnvkeyFile",
    "Role",
    "SecretEntry",
    "TeamMember",
    "EnvkeyStore",
    "envkey_path",
    "RotationResult",
    "add_member",
    "remove_member",
    "update_member",
    "set_member_role",
    "init_store",
    "set_secret",
    "get_secret",
    "list_secrets",
    "list_members",
]

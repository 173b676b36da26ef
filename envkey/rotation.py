"""
Team Key Rotation — team mutations with mandatory re-encryption.

Every change to the team table (add, remove, public key update, role change)
re-encrypts every stored secret for the post-mutation team:

    lock -> read -> authorize caller as admin -> check gates
         -> mutate an in-memory copy -> re-encrypt all secrets
         -> atomic write -> unlock

The re-encryption pass runs entirely in memory before the write. If any
secret fails to decrypt with the caller's identity the whole operation is
aborted and the store file is left untouched, so the store is always
observed either fully before or fully after a mutation.

Security Note:
    Plaintext exists in memory only while each entry is re-encrypted.
    Never log plaintext or ciphertext values.
"""
import logging
from dataclasses import dataclass
from collections.abc import Callable
from typing import Optional

from .crypto import decrypt_value, encrypt_value
from .errors import (
    AbortedError,
    AuthorizationError,
    CryptoError,
    EmptyRecipientsError,
    StateConflictError,
    ValidationError,
)
from .identity import Identity, parse_recipient
from .model import EnvkeyFile, Role, TeamMember, now_date
from .storage import EnvkeyStore

logger = logging.getLogger("envkey")


@dataclass
class RotationResult:
    """Outcome of a successful team mutation."""

    name: str
    role: Role
    members: int
    reencrypted: int
    # Private key generated for a CI member; shown once, never stored.
    generated_secret: Optional[str] = None


def resolve_member_for_identity(
    file: EnvkeyFile, identity: Identity,
) -> tuple[str, TeamMember]:
    found = file.member_for_pubkey(identity.public_key)
    if found is None:
        raise AuthorizationError("current identity is not an admin in .envkey")
    return found


def require_admin_identity(file: EnvkeyFile, identity: Identity) -> str:
    """Return the caller's member name if they are an admin.

    Raises:
        AuthorizationError: If the caller is not in the team or not admin.
    """
    name, member = resolve_member_for_identity(file, identity)
    if not member.role.is_admin:
        raise AuthorizationError("current identity is not an admin in .envkey")
    return name


def reencrypt_all_secrets(
    file: EnvkeyFile, identity: Identity, cipher: Optional[str] = None,
) -> int:
    """Re-encrypt every secret in ``file`` for its current team, in place.

    Entries are processed in environment, then key order. Only ``value``
    changes; ``set_by`` and ``modified`` are preserved.

    Returns:
        Number of secrets re-encrypted.

    Raises:
        EmptyRecipientsError: If the team is empty.
        CryptoError: If the caller cannot decrypt one of the secrets.
    """
    recipients = file.recipients()
    if not recipients:
        raise EmptyRecipientsError(
            "no team recipients found in .envkey; cannot encrypt"
        )
    count = 0
    for env, key, entry in file.iter_secrets():
        try:
            plaintext = decrypt_value(entry.value, identity)
        except CryptoError as err:
            raise CryptoError(f"cannot re-encrypt {key} in {env}: {err}") from err
        entry.value = encrypt_value(plaintext, recipients, cipher=cipher)
        count += 1
    return count


def _rotate(
    store: EnvkeyStore,
    identity: Identity,
    mutate: Callable[[EnvkeyFile, str], None],
) -> tuple[EnvkeyFile, int]:
    """Run one authorized mutation followed by the re-encryption pass."""
    with store.locked():
        current = store.read()
        caller = require_admin_identity(current, identity)
        updated = current.copy_snapshot()
        mutate(updated, caller)
        count = reencrypt_all_secrets(updated, identity, cipher=store.cipher)
        store.write(updated)
    return updated, count


def _require_member(file: EnvkeyFile, name: str) -> TeamMember:
    member = file.get_member(name)
    if member is None:
        raise StateConflictError(f"team member not found: {name}")
    return member


def _validated_pubkey(name: str, pubkey: str) -> str:
    try:
        parse_recipient(pubkey)
    except ValidationError as err:
        raise ValidationError(f"invalid public key for {name}: {err}") from err
    return pubkey.strip()


def _require_unused_pubkey(file: EnvkeyFile, name: str, pubkey: str) -> None:
    """One public key maps to exactly one member."""
    found = file.member_for_pubkey(pubkey)
    if found is not None and found[0] != name:
        raise StateConflictError(f"public key already belongs to {found[0]}")


def _coerce_role(role) -> Role:
    if isinstance(role, Role):
        return role
    return Role.parse(role)


def _validated_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("team member name cannot be empty")
    return name


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def add_member(
    store: EnvkeyStore,
    identity: Identity,
    name: str,
    pubkey: Optional[str] = None,
    role: Role = Role.MEMBER,
) -> RotationResult:
    """Add a team member and re-encrypt every secret to include them.

    A CI member added without a public key gets a freshly generated keypair;
    its private half is returned in ``generated_secret`` and never written.

    Raises:
        ValidationError: Missing or malformed public key.
        AuthorizationError: Caller is not an admin.
        StateConflictError: ``name`` is already a member, or ``pubkey``
            belongs to another member.
    """
    name = _validated_name(name)
    role = _coerce_role(role)
    generated = None
    if pubkey is None:
        if role is not Role.CI:
            raise ValidationError("public key is required unless role ci is used")
        generated = Identity.generate()
        pubkey = generated.public_key
    else:
        pubkey = _validated_pubkey(name, pubkey)

    def mutate(file: EnvkeyFile, caller: str) -> None:
        if file.get_member(name) is not None:
            raise StateConflictError(f"team member already exists: {name}")
        _require_unused_pubkey(file, name, pubkey)
        file.insert_member(
            name, TeamMember(pubkey=pubkey, role=role, added=now_date()),
        )

    updated, count = _rotate(store, identity, mutate)
    logger.info(
        "Added member %s (%s); re-encrypted %d secret(s) for %d member(s)",
        name, role, count, len(updated.team),
    )
    return RotationResult(
        name=name,
        role=role,
        members=len(updated.team),
        reencrypted=count,
        generated_secret=generated.to_secret() if generated else None,
    )


def remove_member(
    store: EnvkeyStore,
    identity: Identity,
    name: str,
    confirm: Optional[Callable[[str], bool]] = None,
) -> RotationResult:
    """Remove a team member and re-encrypt every secret without them.

    Args:
        confirm: Called with ``name`` once all checks pass; returning False
            aborts. ``None`` means already confirmed.

    Raises:
        AuthorizationError: Caller is not an admin.
        StateConflictError: Unknown member or caller removing themself.
        AbortedError: ``confirm`` declined.
    """
    removed: list[TeamMember] = []

    def mutate(file: EnvkeyFile, caller: str) -> None:
        _require_member(file, name)
        if name == caller:
            raise StateConflictError("cannot remove your own admin identity")
        if confirm is not None and not confirm(name):
            raise AbortedError("aborted")
        removed.append(file.remove_member(name))

    updated, count = _rotate(store, identity, mutate)
    logger.info(
        "Removed member %s; re-encrypted %d secret(s) for %d member(s)",
        name, count, len(updated.team),
    )
    return RotationResult(
        name=name,
        role=removed[0].role,
        members=len(updated.team),
        reencrypted=count,
    )


def update_member(
    store: EnvkeyStore,
    identity: Identity,
    name: str,
    pubkey: str,
) -> RotationResult:
    """Replace a member's public key and re-encrypt every secret.

    An admin cannot rotate their own key; another admin has to, so there is
    always an admin able to reach the store.

    Raises:
        ValidationError: Malformed public key.
        AuthorizationError: Caller is not an admin.
        StateConflictError: Unknown member, unchanged key, key owned by
            another member, or self-rotation.
    """
    pubkey = _validated_pubkey(name, pubkey)
    roles: list[Role] = []

    def mutate(file: EnvkeyFile, caller: str) -> None:
        member = _require_member(file, name)
        if member.pubkey == pubkey:
            raise StateConflictError(
                f"new public key matches existing key for {name}"
            )
        _require_unused_pubkey(file, name, pubkey)
        if name == caller:
            raise StateConflictError(
                "cannot rotate your own key; ask another admin to update it"
            )
        member.pubkey = pubkey
        roles.append(member.role)

    updated, count = _rotate(store, identity, mutate)
    logger.info(
        "Updated public key of %s; re-encrypted %d secret(s)", name, count,
    )
    return RotationResult(
        name=name, role=roles[0], members=len(updated.team), reencrypted=count,
    )


def set_member_role(
    store: EnvkeyStore,
    identity: Identity,
    name: str,
    role: Role,
) -> RotationResult:
    """Change a member's role.

    Roles do not decide who can decrypt, yet every secret is still
    re-encrypted so that any team-table write refreshes all envelopes.

    Raises:
        AuthorizationError: Caller is not an admin.
        StateConflictError: Unknown member, unchanged role, or caller
            changing their own role.
    """
    role = _coerce_role(role)

    def mutate(file: EnvkeyFile, caller: str) -> None:
        member = _require_member(file, name)
        if member.role == role:
            raise StateConflictError(f"member {name} already has role {role}")
        if name == caller:
            raise StateConflictError("cannot change your own admin role")
        member.role = role

    updated, count = _rotate(store, identity, mutate)
    logger.info(
        "Set role of %s to %s; re-encrypted %d secret(s)", name, role, count,
    )
    return RotationResult(
        name=name, role=role, members=len(updated.team), reencrypted=count,
    )

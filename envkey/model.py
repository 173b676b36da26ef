"""
Team & Secret Data Model — the in-memory form of the ``.envkey`` file.

The persisted document looks like::

    version: 1
    team:
      alice:
        pubkey: envkey1...
        role: admin
        added: '2026-02-26'
        environments: null
    environments:
      default:
        API_KEY:
          value: <armored envelope>
          set_by: alice
          modified: '2026-02-26T00:00:00Z'

All operations here are pure; nothing in this module touches the disk.
"""
import re
from enum import Enum
from typing import Optional
from datetime import date, datetime, timezone

from pydantic import BaseModel, Field, field_validator

from .errors import ValidationError

SUPPORTED_VERSION = 1
DEFAULT_ENV = "default"

_SECRET_KEY_TAIL = re.compile(r"[A-Z0-9_]*")


class Role(str, Enum):
    """Administrative role of a team member.

    Role governs who may change the team; every member, whatever the role,
    is an encryption recipient.
    """

    ADMIN = "admin"
    MEMBER = "member"
    CI = "ci"
    READONLY = "readonly"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str) -> "Role":
        try:
            return cls(str(text).strip().lower())
        except ValueError as err:
            choices = ", ".join(r.value for r in cls)
            raise ValidationError(
                f"invalid role `{text}`: expected one of {choices}"
            ) from err

    @property
    def is_admin(self) -> bool:
        return self is Role.ADMIN


class TeamMember(BaseModel):
    """A team member, keyed by name in :attr:`EnvkeyFile.team`."""

    pubkey: str
    role: Role
    added: str
    # Reserved for per-environment scoping; always None for now.
    environments: Optional[list[str]] = None

    @field_validator("added", mode="before")
    @classmethod
    def coerce_date(cls, v):
        """Unquoted YAML dates load as date objects."""
        if isinstance(v, date):
            return v.isoformat()
        return v


class SecretEntry(BaseModel):
    value: str
    set_by: str
    modified: str

    @field_validator("modified", mode="before")
    @classmethod
    def coerce_timestamp(cls, v):
        if isinstance(v, datetime):
            return v.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return v


class EnvkeyFile(BaseModel):
    """The persisted root of the store."""

    version: int = SUPPORTED_VERSION
    team: dict[str, TeamMember] = Field(default_factory=dict)
    environments: dict[str, dict[str, SecretEntry]] = Field(default_factory=dict)

    @classmethod
    def new(cls, admin_name: str, pubkey: str, added: str) -> "EnvkeyFile":
        """Fresh store with ``admin_name`` as the sole admin."""
        return cls(
            version=SUPPORTED_VERSION,
            team={
                admin_name: TeamMember(pubkey=pubkey, role=Role.ADMIN, added=added),
            },
            environments={DEFAULT_ENV: {}},
        )

    def ensure_supported_version(self) -> None:
        ensure_supported_version(self.version)

    def copy_snapshot(self) -> "EnvkeyFile":
        """Deep copy to mutate without touching the loaded snapshot."""
        return self.model_copy(deep=True)

    def to_document(self) -> dict:
        """Plain mapping ready for YAML serialization."""
        return self.model_dump(mode="json")

    # ------------------------------------------------------------------
    # Team
    # ------------------------------------------------------------------

    def get_member(self, name: str) -> Optional[TeamMember]:
        return self.team.get(name)

    def insert_member(self, name: str, member: TeamMember) -> None:
        self.team[name] = member

    def remove_member(self, name: str) -> Optional[TeamMember]:
        return self.team.pop(name, None)

    def recipients(self) -> list[str]:
        """Public keys of every member, ordered by member name."""
        return [self.team[name].pubkey for name in sorted(self.team)]

    def member_for_pubkey(self, pubkey: str) -> Optional[tuple[str, TeamMember]]:
        return member_for_pubkey(self.team, pubkey)

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def default_env(self) -> Optional[dict[str, SecretEntry]]:
        return self.environments.get(DEFAULT_ENV)

    def env_mut(self, env: str) -> dict[str, SecretEntry]:
        return self.environments.setdefault(env, {})

    def get_secret(self, env: str, key: str) -> Optional[SecretEntry]:
        return self.environments.get(env, {}).get(key)

    def insert_secret(self, env: str, key: str, entry: SecretEntry) -> None:
        self.env_mut(env)[key] = entry

    def iter_secrets(self):
        """Yield ``(env, key, entry)`` ordered by environment, then key."""
        for env in sorted(self.environments):
            entries = self.environments[env]
            for key in sorted(entries):
                yield env, key, entries[key]

    def secret_count(self) -> int:
        return sum(len(entries) for entries in self.environments.values())


def member_for_pubkey(
    team: dict[str, TeamMember], pubkey: str,
) -> Optional[tuple[str, TeamMember]]:
    """Find the member whose recorded public key equals ``pubkey``."""
    for name in sorted(team):
        if team[name].pubkey == pubkey:
            return name, team[name]
    return None


def ensure_supported_version(version) -> None:
    if version != SUPPORTED_VERSION or isinstance(version, bool):
        raise ValidationError(f"unsupported .envkey version: {version}")


def validate_secret_key(key: str) -> None:
    """Secret key names look like environment variables: ``[A-Z_][A-Z0-9_]*``.

    Raises:
        ValidationError: If the name is empty or uses other characters.
    """
    if not key:
        raise ValidationError("secret key cannot be empty")
    first = key[0]
    if not (first == "_" or ("A" <= first <= "Z")):
        raise ValidationError(
            f"invalid secret key `{key}`: must start with A-Z or _"
        )
    if not _SECRET_KEY_TAIL.fullmatch(key[1:]):
        raise ValidationError(
            f"invalid secret key `{key}`: use only A-Z, 0-9, _"
        )


def require_supported_env(env: str) -> None:
    if env != DEFAULT_ENV:
        raise ValidationError(
            f"only the {DEFAULT_ENV} environment is supported; got `{env}`"
        )


def now_date() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def now_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

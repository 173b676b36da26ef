"""
envkey Configuration — validated settings for one invocation.

Reads from environment variables:
    ENVKEY_ROOT = <directory holding .envkey>   (default: current directory)
    ENVKEY_CIPHER_BACKEND = aesgcm | chacha20   (default: aesgcm)

Security Note:
    Settings never carry key material. The identity is loaded by the caller
    and passed explicitly into each operation.
"""
import os
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from . import vault
from .crypto import CIPHERS
from .identity import Identity
from .model import DEFAULT_ENV
from .storage import ENVKEY_FILE_NAME, EnvkeyStore

logger = logging.getLogger("envkey")


class EnvkeyConfig(BaseModel):
    """Validated envkey configuration."""

    root: Path
    file_name: str = Field(default=ENVKEY_FILE_NAME, min_length=1)
    environment: str = Field(default=DEFAULT_ENV)
    cipher_backend: str = Field(default="aesgcm")

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in CIPHERS:
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Only the default environment is supported."""
        if v != DEFAULT_ENV:
            raise ValueError(
                f"only the {DEFAULT_ENV} environment is supported; got `{v}`"
            )
        return v

    @field_validator("file_name")
    @classmethod
    def validate_file_name(cls, v: str) -> str:
        if os.sep in v or v in (".", ".."):
            raise ValueError(f"file_name must be a bare file name, got {v!r}")
        return v

    @property
    def store_path(self) -> Path:
        return self.root / self.file_name

    def store(self) -> EnvkeyStore:
        return EnvkeyStore(self.store_path, cipher=self.cipher_backend)

    # Secret operations bound to the configured store and environment.

    def set_secret(
        self, identity: Identity, key: str, value: str, set_by: str,
    ) -> vault.SetResult:
        return vault.set_secret(
            self.store(), identity, self.environment, key, value, set_by,
        )

    def get_secret(self, identity: Identity, key: str) -> str:
        return vault.get_secret(self.store(), identity, self.environment, key)

    def list_secrets(self) -> list[vault.SecretRow]:
        return vault.list_secrets(self.store(), self.environment)

    @classmethod
    def from_env(cls, cwd: Optional[Path] = None) -> "EnvkeyConfig":
        """Create EnvkeyConfig by loading values from environment.

        Args:
            cwd: Fallback root when ENVKEY_ROOT is unset; defaults to the
                current working directory.

        Returns:
            Populated EnvkeyConfig instance.
        """
        root = os.environ.get("ENVKEY_ROOT") or cwd or Path.cwd()
        cipher_backend = os.environ.get("ENVKEY_CIPHER_BACKEND", "aesgcm")
        config = cls(root=Path(root), cipher_backend=cipher_backend)
        logger.debug("Using store %s", config.store_path)
        return config

"""
Atomic Store & Concurrency Guard — persistence of the ``.envkey`` file.

Writes go to a uniquely named temporary file in the same directory and are
renamed over the store, so readers never see a partial document. Commands
that read and then write hold an exclusive advisory lock on a sibling
``.envkey.lock`` file for the whole read-mutate-persist sequence.

Known limitations:
    - Lock acquisition blocks indefinitely. A process that hangs while
      holding the lock stalls every other invocation; a process that dies
      releases it (the OS drops the flock with the descriptor).
    - A crash after the temporary file is written but before the rename
      leaves an orphan ``.envkey.tmp.*`` file behind. The store itself is
      intact.
"""
import os
import fcntl
import string
import secrets
import logging
from pathlib import Path
from typing import Optional
from contextlib import contextmanager
from collections.abc import Iterator

import yaml
import pydantic

from .errors import StoreIOError, StoreNotFoundError, ValidationError
from .model import EnvkeyFile, ensure_supported_version

logger = logging.getLogger("envkey")

ENVKEY_FILE_NAME = ".envkey"
LOCK_SUFFIX = ".lock"
TMP_INFIX = ".tmp."
TMP_SUFFIX_LENGTH = 8

_ALPHANUMERIC = string.ascii_letters + string.digits


def envkey_path(cwd: Path) -> Path:
    return Path(cwd) / ENVKEY_FILE_NAME


def _random_suffix(length: int = TMP_SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def parse_document(raw: str, path: Path) -> EnvkeyFile:
    """Parse YAML text into an :class:`EnvkeyFile`.

    The version is checked before anything else is interpreted.

    Raises:
        ValidationError: On invalid YAML, an unsupported version, or a
            document that does not match the data model.
    """
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as err:
        raise ValidationError(f"invalid .envkey YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise ValidationError(
            f"invalid .envkey YAML in {path}: top level must be a mapping"
        )
    if "version" not in data:
        raise ValidationError(f"invalid .envkey YAML in {path}: missing version")
    ensure_supported_version(data["version"])
    # Null sections are treated as empty.
    if data.get("team") is None:
        data["team"] = {}
    environments = data.get("environments")
    if environments is None:
        data["environments"] = {}
    elif isinstance(environments, dict):
        data["environments"] = {
            env: ({} if entries is None else entries)
            for env, entries in environments.items()
        }
    try:
        return EnvkeyFile.model_validate(data)
    except pydantic.ValidationError as err:
        raise ValidationError(f"invalid .envkey content in {path}: {err}") from err


def dump_document(file: EnvkeyFile) -> str:
    return yaml.safe_dump(
        file.to_document(),
        sort_keys=True,
        default_flow_style=False,
        allow_unicode=True,
    )


class EnvkeyStore:
    """Handle on one ``.envkey`` file and its companion lock file.

    The store is passed explicitly into every vault and rotation operation.
    """

    def __init__(self, path: Path, cipher: Optional[str] = None):
        self.path = Path(path)
        # AEAD for envelopes written through this store; None uses the
        # ENVKEY_CIPHER_BACKEND default.
        self.cipher = cipher

    def __repr__(self) -> str:
        return f"<EnvkeyStore {self.path}>"

    @classmethod
    def in_directory(cls, cwd: Path) -> "EnvkeyStore":
        return cls(envkey_path(cwd))

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + LOCK_SUFFIX)

    def exists(self) -> bool:
        return self.path.exists()

    def require(self) -> None:
        """Raise :class:`StoreNotFoundError` when the store has not been created."""
        if not self.exists():
            raise StoreNotFoundError(
                f"missing {self.path.name} in {self.path.parent}; "
                "run `envkey init` first"
            )

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def read(self) -> EnvkeyFile:
        """Load and validate the store.

        Raises:
            StoreNotFoundError: If the file does not exist.
            StoreIOError: If the file cannot be read.
            ValidationError: If the content is invalid or the version is
                unsupported.
        """
        self.require()
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as err:
            raise StoreIOError(f"failed to read {self.path}: {err}") from err
        file = parse_document(raw, self.path)
        logger.debug(
            "Loaded %s: %d member(s), %d secret(s)",
            self.path, len(file.team), file.secret_count(),
        )
        return file

    def write(self, file: EnvkeyFile) -> None:
        """Persist the full snapshot atomically.

        The snapshot is written to ``.envkey.tmp.<random>`` beside the store,
        flushed to disk, then renamed over the store.

        Raises:
            StoreIOError: If the temporary file cannot be written or the
                rename fails. The previous store content is left intact.
        """
        file.ensure_supported_version()
        payload = dump_document(file).encode("utf-8")
        parent = self.path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise StoreIOError(f"failed to create {parent}: {err}") from err

        tmp_path = parent / f"{self.path.name}{TMP_INFIX}{_random_suffix()}"
        try:
            fd = os.open(
                str(tmp_path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644,
            )
            with os.fdopen(fd, "wb") as fp:
                fp.write(payload)
                fp.flush()
                os.fsync(fp.fileno())
        except OSError as err:
            raise StoreIOError(
                f"failed to write temporary file {tmp_path}: {err}"
            ) from err

        try:
            os.replace(tmp_path, self.path)
        except OSError as err:
            try:
                tmp_path.unlink()
            except OSError:
                logger.warning("Could not remove temporary file %s", tmp_path)
            raise StoreIOError(
                f"failed to replace {self.path} atomically: {err}"
            ) from err
        logger.debug("Wrote %s (%d bytes)", self.path, len(payload))

    # ------------------------------------------------------------------
    # Mutual exclusion
    # ------------------------------------------------------------------

    @contextmanager
    def locked(self) -> Iterator["EnvkeyStore"]:
        """Hold the exclusive store lock for the duration of the block.

        Blocks without timeout until the lock is available; released on
        every exit path.

        Raises:
            StoreIOError: If the lock file cannot be opened or locked.
        """
        lock_path = self.lock_path
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(lock_path), os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as err:
            raise StoreIOError(
                f"failed to open lock file {lock_path}: {err}"
            ) from err
        try:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
            except OSError as err:
                raise StoreIOError(
                    f"failed to acquire lock {lock_path}: {err}"
                ) from err
            logger.debug("Acquired lock %s", lock_path)
            try:
                yield self
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                logger.debug("Released lock %s", lock_path)
        finally:
            os.close(fd)

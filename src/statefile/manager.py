from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union
from uuid import uuid4

from .errors import EmptyEncoding, ReadError, StateError, WriteError
from .formats import DEFAULT_SERIALIZATION_TYPE, FormatAdapter, SerializationType
from .registry import TypeRegistry


logger = logging.getLogger(__name__)

# Environment variable names for convenience configuration
ENV_PATH = "STATEFILE_PATH"
ENV_FORMAT = "STATEFILE_FORMAT"

DEFAULT_STATE_FILE_NAME = ".state"
TEMP_SUFFIX = ".tmp"
FILE_MODE = 0o600


def _default_state_file() -> Path:
    try:
        home = Path.home()
    except RuntimeError as ex:
        raise StateError("failed to resolve home directory for default state file") from ex
    return home / DEFAULT_STATE_FILE_NAME


@dataclass(frozen=True)
class StateConfig:
    file_path: Path
    serialization_type: SerializationType


class StateManager:
    """
    Single-file persistence for an in-memory record.

    Usage
    - `save(record)` encodes the record and atomically replaces the file.
    - `load(target)` reads the file and decodes it into `target` in place.
    - `exists()` reports whether the file is present.

    Save and load hold one lock for their whole duration, so calls from
    multiple threads run one at a time. Nothing is cached; every call hits disk.
    Writes go to a unique `<path>.tmp-<hex>` sibling first and are moved over
    the target with `os.replace`, so readers only ever observe a complete old or new file.
    Not coordinated across processes.

    Environment variables (optional, see `from_env`)
    - `STATEFILE_PATH`:   path of the state file (default: ~/.state)
    - `STATEFILE_FORMAT`: json, yaml, bin or state (default: bin)
    """

    def __init__(
        self,
        file_path: Optional[Union[str, os.PathLike[str]]] = None,
        serialization_type: Optional[Union[SerializationType, str]] = None,
        *,
        registry: Optional[TypeRegistry] = None,
    ) -> None:
        path = Path(file_path) if file_path else _default_state_file()
        fmt = (
            SerializationType.parse(serialization_type)
            if serialization_type is not None
            else DEFAULT_SERIALIZATION_TYPE
        )
        self._config = StateConfig(file_path=path, serialization_type=fmt)
        self._adapter = FormatAdapter(registry)
        self._lock = threading.Lock()

    # -------- Construction helpers --------
    @classmethod
    def from_env(cls, *, registry: Optional[TypeRegistry] = None) -> "StateManager":
        path = os.environ.get(ENV_PATH) or None
        fmt = os.environ.get(ENV_FORMAT) or None
        return cls(file_path=path, serialization_type=fmt, registry=registry)

    @property
    def config(self) -> StateConfig:
        return self._config

    @property
    def file_path(self) -> Path:
        return self._config.file_path

    @property
    def serialization_type(self) -> SerializationType:
        return self._config.serialization_type

    @property
    def adapter(self) -> FormatAdapter:
        return self._adapter

    def _temp_path(self) -> Path:
        # Unique per save so writers sharing a path never share a temp file
        path = self._config.file_path
        return path.with_name(f"{path.name}{TEMP_SUFFIX}-{uuid4().hex}")

    # -------- Core operations --------
    def save(self, record: Any) -> None:
        """Encode `record` and atomically replace the state file.

        Raises:
        - UnsupportedFormat / EncodeError from the format adapter.
        - EmptyEncoding if the encoder produced no bytes.
        - WriteError on any filesystem failure; the temp file is removed when possible.
        """
        with self._lock:
            payload = self._adapter.encode(record, self.serialization_type)
            if not payload:
                raise EmptyEncoding(f"no data was encoded for {type(record).__name__}")

            tmp = self._temp_path()
            try:
                self._write_temp(tmp, payload)
                os.replace(tmp, self.file_path)
            except OSError as ex:
                # Best-effort cleanup of the temp file
                try:
                    tmp.unlink(missing_ok=True)
                except OSError:
                    pass
                raise WriteError(f"failed to write state file {self.file_path}") from ex

            logger.debug(
                "saved %d bytes to %s (%s)", len(payload), self.file_path, self.serialization_type.value
            )

    @staticmethod
    def _write_temp(tmp: Path, payload: bytes) -> None:
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, FILE_MODE)
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())

    def load(self, target: Any) -> None:
        """Read the state file and decode it into `target`.

        Raises:
        - ReadError if the file is missing or unreadable.
        - InvalidTarget if `target` cannot be mutated.
        - DecodeError (or UnknownType) on malformed content.
        """
        with self._lock:
            try:
                payload = self.file_path.read_bytes()
            except OSError as ex:
                raise ReadError(f"failed to read state file {self.file_path}") from ex

            self._adapter.decode(payload, self.serialization_type, target)
            logger.debug(
                "loaded %d bytes from %s (%s)", len(payload), self.file_path, self.serialization_type.value
            )

    def exists(self) -> bool:
        try:
            return self.file_path.exists()
        except OSError:
            return False


# -------- Convenience top-level helpers --------
def save_state(
    record: Any,
    *,
    file_path: Optional[Union[str, os.PathLike[str]]] = None,
    serialization_type: Optional[Union[SerializationType, str]] = None,
    registry: Optional[TypeRegistry] = None,
) -> None:
    manager = StateManager(file_path, serialization_type, registry=registry)
    manager.save(record)


def load_state(
    target: Any,
    *,
    file_path: Optional[Union[str, os.PathLike[str]]] = None,
    serialization_type: Optional[Union[SerializationType, str]] = None,
    registry: Optional[TypeRegistry] = None,
) -> None:
    manager = StateManager(file_path, serialization_type, registry=registry)
    manager.load(target)

from __future__ import annotations

import io
import pickle
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Set, Tuple, Union

import yaml
from pydantic import TypeAdapter, ValidationError
from pydantic.errors import PydanticSchemaGenerationError

from .errors import (
    DecodeError,
    EncodeError,
    InvalidTarget,
    UnknownType,
    UnsupportedFormat,
)
from .fields import copy_fields, declared_classes, is_frozen, is_record
from .registry import TypeRegistry, default_registry
from .selective import marshal_selective, unmarshal_selective


class SerializationType(str, Enum):
    JSON = "json"
    YAML = "yaml"
    BIN = "bin"
    STATE = "state"

    @classmethod
    def parse(cls, value: Union["SerializationType", str]) -> "SerializationType":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise UnsupportedFormat(f"unsupported serialization format: {value!r}")


DEFAULT_SERIALIZATION_TYPE = SerializationType.BIN

# Globals any pickled record may reference regardless of registration
_SAFE_GLOBALS: Set[Tuple[str, str]] = {
    ("builtins", name)
    for name in (
        "bool", "bytearray", "bytes", "complex", "dict", "float", "frozenset",
        "int", "list", "range", "set", "slice", "str", "tuple",
    )
} | {
    ("collections", "OrderedDict"),
    ("collections", "defaultdict"),
    ("datetime", "date"),
    ("datetime", "datetime"),
    ("datetime", "time"),
    ("datetime", "timedelta"),
    ("datetime", "timezone"),
    ("decimal", "Decimal"),
    ("pathlib", "PosixPath"),
    ("pathlib", "PurePosixPath"),
    ("pathlib", "WindowsPath"),
    ("pathlib", "PureWindowsPath"),
    ("uuid", "UUID"),
}


class _RegistryUnpickler(pickle.Unpickler):
    def __init__(self, data: bytes, allowed: Iterable[type]) -> None:
        super().__init__(io.BytesIO(data))
        self._allowed: Dict[Tuple[str, str], type] = {
            (t.__module__, t.__qualname__): t for t in allowed
        }

    def find_class(self, module: str, name: str) -> Any:
        allowed = self._allowed.get((module, name))
        if allowed is not None:
            return allowed
        if (module, name) in _SAFE_GLOBALS:
            return super().find_class(module, name)
        raise UnknownType(
            f"type {module}.{name} is not registered; call register_types() before loading"
        )


def _check_target(target: Any) -> None:
    if target is None or isinstance(target, type):
        raise InvalidTarget(f"decode target must be a record instance, got {target!r}")
    if isinstance(target, dict):
        return
    if not is_record(target):
        raise InvalidTarget(
            f"decode target must be a dataclass, pydantic model or dict, got {type(target).__name__}"
        )
    if is_frozen(target):
        raise InvalidTarget(f"decode target {type(target).__name__} is frozen")


def _adapter_for(cls: type) -> TypeAdapter:
    try:
        return TypeAdapter(cls)
    except PydanticSchemaGenerationError as ex:
        raise EncodeError(f"no structural schema for {cls.__name__}") from ex


def _assign(target: Any, value: Any) -> None:
    if isinstance(target, dict):
        target.clear()
        target.update(value)
    else:
        copy_fields(target, value)


class FormatAdapter:
    """
    Encode/decode strategies keyed by `SerializationType`.

    - json:  pydantic structural dump, aliases honored, indented.
    - yaml:  pydantic structural dump rendered with PyYAML.
    - bin:   pickle; decode only instantiates the target's declared classes,
             safe builtins, and classes from the type registry.
    - state: selective projection of ``state``-annotated fields (see selective).

    Decoding always mutates the caller's `target` in place.
    """

    def __init__(self, registry: Optional[TypeRegistry] = None) -> None:
        self._registry = registry if registry is not None else default_registry

    @property
    def registry(self) -> TypeRegistry:
        return self._registry

    # -------- Encode --------
    def encode(self, record: Any, serialization_type: Union[SerializationType, str]) -> bytes:
        fmt = SerializationType.parse(serialization_type)
        if fmt is SerializationType.STATE:
            return marshal_selective(record)
        if fmt is SerializationType.BIN:
            return self._encode_bin(record)

        adapter = _adapter_for(type(record))
        try:
            if fmt is SerializationType.JSON:
                return adapter.dump_json(record, by_alias=True, indent=2)
            data = adapter.dump_python(record, mode="json", by_alias=True)
            return yaml.safe_dump(data, sort_keys=False, allow_unicode=True).encode("utf-8")
        except (ValueError, TypeError, yaml.YAMLError) as ex:
            # pydantic serialization errors subclass ValueError
            raise EncodeError(f"failed to encode {type(record).__name__} as {fmt.value}") from ex

    def _encode_bin(self, record: Any) -> bytes:
        try:
            return pickle.dumps(record, protocol=pickle.HIGHEST_PROTOCOL)
        except (pickle.PicklingError, TypeError, AttributeError) as ex:
            raise EncodeError(f"failed to pickle {type(record).__name__}") from ex

    # -------- Decode --------
    def decode(
        self,
        data: bytes,
        serialization_type: Union[SerializationType, str],
        target: Any,
    ) -> None:
        fmt = SerializationType.parse(serialization_type)
        _check_target(target)

        if fmt is SerializationType.STATE:
            unmarshal_selective(data, target)
            return
        if fmt is SerializationType.BIN:
            _assign(target, self._decode_bin(data, target))
            return

        try:
            adapter = _adapter_for(type(target))
        except EncodeError as ex:
            raise InvalidTarget(str(ex)) from ex
        try:
            if fmt is SerializationType.JSON:
                value = adapter.validate_json(data)
            else:
                raw = yaml.safe_load(data.decode("utf-8"))
                value = adapter.validate_python({} if raw is None else raw)
        except (ValidationError, UnicodeDecodeError, yaml.YAMLError) as ex:
            raise DecodeError(f"failed to decode {fmt.value} into {type(target).__name__}") from ex
        _assign(target, value)

    def _decode_bin(self, data: bytes, target: Any) -> Any:
        allowed = declared_classes(type(target)) | self._registry.types()
        try:
            value = _RegistryUnpickler(data, allowed).load()
        except UnknownType:
            raise
        except Exception as ex:
            raise DecodeError("failed to decode binary data") from ex
        if not isinstance(value, type(target)):
            raise DecodeError(
                f"binary payload holds {type(value).__name__}, expected {type(target).__name__}"
            )
        return value

"""
Local single-file persistence for in-memory records.

A `StateManager` owns a file path and a serialization type, encodes a
record through the `FormatAdapter` and writes it atomically; loading
reverses the process into a caller-supplied record.

Formats: json, yaml, bin (pickle, default) and state (selective projection
of fields annotated under the ``state`` key).
"""

from .errors import (
    DecodeError,
    EmptyEncoding,
    EncodeError,
    InvalidTarget,
    ReadError,
    StateError,
    UnknownType,
    UnsupportedFieldType,
    UnsupportedFormat,
    WriteError,
)
from .fields import STATE_ANNOTATION_KEY, state_field
from .formats import FormatAdapter, SerializationType
from .manager import StateConfig, StateManager, load_state, save_state
from .registry import TypeRegistry, default_registry, register_types
from .selective import FieldOutcome, marshal_selective, unmarshal_selective

__all__ = [
    "STATE_ANNOTATION_KEY",
    "DecodeError",
    "EmptyEncoding",
    "EncodeError",
    "FieldOutcome",
    "FormatAdapter",
    "InvalidTarget",
    "ReadError",
    "SerializationType",
    "StateConfig",
    "StateError",
    "StateManager",
    "TypeRegistry",
    "UnknownType",
    "UnsupportedFieldType",
    "UnsupportedFormat",
    "WriteError",
    "default_registry",
    "load_state",
    "marshal_selective",
    "register_types",
    "save_state",
    "state_field",
    "unmarshal_selective",
]

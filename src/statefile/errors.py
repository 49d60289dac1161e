from __future__ import annotations


class StateError(RuntimeError):
    """Base error for statefile."""


class UnsupportedFormat(StateError, ValueError):
    """Serialization type is not one of json, yaml, bin or state."""


class EncodeError(StateError):
    """The record could not be converted to bytes."""


class UnsupportedFieldType(EncodeError):
    """An annotated field holds a value the selective format cannot represent."""


class DecodeError(StateError):
    """Persisted bytes are malformed or do not fit the target record."""


class UnknownType(DecodeError):
    """Binary payload references a class that was never registered."""


class InvalidTarget(StateError, TypeError):
    """Decode target is not a mutable record instance."""


class EmptyEncoding(StateError):
    """Encoder produced zero bytes."""


class WriteError(StateError):
    """Filesystem failure while writing the state file."""


class ReadError(StateError):
    """State file is missing or unreadable."""

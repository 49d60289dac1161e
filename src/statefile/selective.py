"""
Selective field projection ("state" format).

Only fields annotated under the ``state`` key are written, using the
annotation value as the external key. The projection is stored as YAML.
Decoding is best-effort per field: a value that cannot be coerced into the
field's type leaves the field untouched and is reported, never raised.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import re
from collections import Counter
from enum import Enum
from typing import Any, Dict, Tuple

import yaml
from pydantic import BaseModel, ValidationError

from .errors import DecodeError, EncodeError, InvalidTarget, UnsupportedFieldType
from .fields import FieldKind, field_kind, is_frozen, is_record, record_fields


logger = logging.getLogger(__name__)

_INT_RE = re.compile(r"[+-]?[0-9]+")
_UINT_RE = re.compile(r"\+?[0-9]+")
_TRUE_TOKENS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_TOKENS = {"0", "f", "F", "FALSE", "false", "False"}


class FieldOutcome(str, Enum):
    APPLIED = "applied"
    SKIPPED_MISSING = "skipped_missing"
    SKIPPED_INVALID = "skipped_invalid"
    SKIPPED_UNSUPPORTED = "skipped_unsupported"
    SKIPPED_PRIVATE = "skipped_private"


# -------- Coercion --------
def _coerce_int(value: Any, *, unsigned: bool) -> Tuple[bool, Any]:
    if isinstance(value, bool):
        return (False, None)
    if isinstance(value, int):
        out = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            return (False, None)
        # Truncates toward zero; large magnitudes keep the float's exact integer value
        out = int(value)
    elif isinstance(value, str):
        pattern = _UINT_RE if unsigned else _INT_RE
        if not pattern.fullmatch(value):
            return (False, None)
        out = int(value, 10)
    else:
        return (False, None)
    if unsigned and out < 0:
        return (False, None)
    return (True, out)


def _coerce_float(value: Any) -> Tuple[bool, Any]:
    if isinstance(value, bool):
        return (False, None)
    if isinstance(value, (int, float)):
        return (True, float(value))
    if isinstance(value, str):
        try:
            return (True, float(value))
        except ValueError:
            return (False, None)
    return (False, None)


def _coerce_bool(value: Any) -> Tuple[bool, Any]:
    if isinstance(value, bool):
        return (True, value)
    if isinstance(value, str):
        if value in _TRUE_TOKENS:
            return (True, True)
        if value in _FALSE_TOKENS:
            return (True, False)
    return (False, None)


def coerce(kind: FieldKind, value: Any) -> Tuple[bool, Any]:
    """Coerce a decoded value into a primitive field kind.

    Returns `(ok, coerced)`; `ok` is False when the value does not fit.
    """
    if kind is FieldKind.STRING:
        return (True, value) if isinstance(value, str) else (False, None)
    if kind is FieldKind.INT:
        return _coerce_int(value, unsigned=False)
    if kind is FieldKind.UINT:
        return _coerce_int(value, unsigned=True)
    if kind is FieldKind.FLOAT:
        return _coerce_float(value)
    if kind is FieldKind.BOOL:
        return _coerce_bool(value)
    return (False, None)


# -------- Encode --------
def _plain(value: Any, path: str) -> Any:
    """Reduce a field value to YAML-representable builtins, keeping native scalars."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, BaseModel):
        return _plain(value.model_dump(mode="json"), path)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _plain(dataclasses.asdict(value), path)
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if not isinstance(k, (str, int, float, bool)):
                raise UnsupportedFieldType(f"field {path!r}: unsupported mapping key {k!r}")
            out[k] = _plain(v, f"{path}.{k}")
        return out
    if isinstance(value, (list, tuple)):
        return [_plain(v, f"{path}[{i}]") for i, v in enumerate(value)]
    raise UnsupportedFieldType(f"field {path!r}: unsupported value type {type(value).__name__}")


def marshal_selective(record: Any) -> bytes:
    """Serialize the annotated fields of `record` to YAML bytes.

    Raises
    - EncodeError if `record` is not a dataclass or pydantic model instance.
    - UnsupportedFieldType if an annotated field holds an unrepresentable value.
    """
    if isinstance(record, type) or not is_record(record):
        raise EncodeError(
            f"selective format needs a dataclass or pydantic model, got {type(record).__name__}"
        )

    values: Dict[str, Any] = {}
    for spec in record_fields(record):
        if spec.state_key is None:
            continue
        values[spec.state_key] = _plain(getattr(record, spec.name), spec.name)

    try:
        text = yaml.safe_dump(values, sort_keys=False, allow_unicode=True)
    except yaml.YAMLError as ex:
        raise EncodeError("failed to encode selective fields as YAML") from ex
    return text.encode("utf-8")


# -------- Decode --------
def _load_mapping(data: bytes) -> Dict[Any, Any]:
    try:
        raw = yaml.safe_load(data.decode("utf-8"))
    except (UnicodeDecodeError, yaml.YAMLError) as ex:
        raise DecodeError("failed to parse selective YAML") from ex
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise DecodeError(f"selective payload must be a mapping, got {type(raw).__name__}")
    return raw


def unmarshal_selective(data: bytes, target: Any) -> Dict[str, FieldOutcome]:
    """Populate `target` from selective YAML bytes.

    Each field resolves its key from the ``state`` annotation, or its lowercased
    name when unannotated. Only str/int/float/bool fields (optionally wrapped in
    Optional) are assigned. Returns the outcome per field name.

    Raises
    - InvalidTarget if `target` is not a mutable record instance.
    - DecodeError if the payload is not a YAML mapping.
    """
    if isinstance(target, type) or not is_record(target):
        raise InvalidTarget(
            f"decode target must be a dataclass or pydantic model instance, got {target!r}"
        )
    if is_frozen(target):
        raise InvalidTarget(f"decode target {type(target).__name__} is frozen")

    values = _load_mapping(data)
    outcomes: Dict[str, FieldOutcome] = {}

    for spec in record_fields(target):
        key = spec.external_key
        if key not in values:
            outcomes[spec.name] = FieldOutcome.SKIPPED_MISSING
            continue
        if spec.private:
            outcomes[spec.name] = FieldOutcome.SKIPPED_PRIVATE
            continue
        if spec.frozen:
            outcomes[spec.name] = FieldOutcome.SKIPPED_INVALID
            continue

        kind, _nullable = field_kind(spec)
        if kind is FieldKind.OTHER:
            outcomes[spec.name] = FieldOutcome.SKIPPED_UNSUPPORTED
            continue

        # Optional fields get a fresh value and are only assigned on success
        ok, coerced = coerce(kind, values[key])
        if not ok:
            outcomes[spec.name] = FieldOutcome.SKIPPED_INVALID
            continue
        try:
            setattr(target, spec.name, coerced)
        except ValidationError as ex:
            # Rejected by the model's own assignment validation
            logger.debug("field %s rejected by %s: %s", spec.name, type(target).__name__, ex)
            outcomes[spec.name] = FieldOutcome.SKIPPED_INVALID
            continue
        outcomes[spec.name] = FieldOutcome.APPLIED

    if logger.isEnabledFor(logging.DEBUG):
        counts = Counter(o.value for o in outcomes.values())
        logger.debug("selective decode into %s: %s", type(target).__name__, dict(counts))
    return outcomes

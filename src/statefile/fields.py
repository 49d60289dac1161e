"""
Runtime field introspection for dataclass and pydantic records.

Both the selective format and the structural formats need the same view of
a record: its fields in declaration order, the resolved annotation of each,
and the external name found under the ``state`` annotation key.
"""

from __future__ import annotations

import dataclasses
import logging
import types
import typing
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from pydantic import BaseModel


logger = logging.getLogger(__name__)

STATE_ANNOTATION_KEY = "state"

_SIMPLE_NAMES = {"str": str, "int": int, "float": float, "bool": bool}


class FieldKind(str, Enum):
    STRING = "string"
    INT = "int"
    UINT = "uint"
    FLOAT = "float"
    BOOL = "bool"
    OTHER = "other"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    annotation: Any
    metadata: Tuple[Any, ...] = ()
    state_key: Optional[str] = None
    frozen: bool = False

    @property
    def private(self) -> bool:
        return self.name.startswith("_")

    @property
    def external_key(self) -> str:
        """Key used by selective decode: the annotation, else the lowercased name."""
        return self.state_key or self.name.lower()


def state_field(name: str, **kwargs: Any) -> Any:
    """Dataclass field carrying the ``state`` annotation.

    Extra keyword arguments are passed to :func:`dataclasses.field`.
    """
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[STATE_ANNOTATION_KEY] = name
    return dataclasses.field(metadata=metadata, **kwargs)


def is_record(obj: Any) -> bool:
    cls = obj if isinstance(obj, type) else type(obj)
    return dataclasses.is_dataclass(cls) or issubclass(cls, BaseModel)


def is_frozen(obj: Any) -> bool:
    cls = type(obj)
    if dataclasses.is_dataclass(cls):
        return bool(cls.__dataclass_params__.frozen)  # type: ignore[attr-defined]
    if issubclass(cls, BaseModel):
        return bool(cls.model_config.get("frozen"))
    return False


def _type_hints(cls: type) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(cls, include_extras=True)
    except (NameError, TypeError, AttributeError) as ex:
        # Unresolvable forward references; callers fall back to raw annotations.
        logger.debug("could not resolve annotations for %s: %s", cls.__name__, ex)
        return {}


def _resolve_raw(annotation: Any) -> Any:
    if isinstance(annotation, str):
        return _SIMPLE_NAMES.get(annotation.strip(), annotation)
    return annotation


def record_fields(obj: Any) -> List[FieldSpec]:
    """Return the fields of a dataclass or pydantic record (instance or class).

    Raises
    - TypeError if `obj` is neither.
    """
    cls = obj if isinstance(obj, type) else type(obj)

    if dataclasses.is_dataclass(cls):
        hints = _type_hints(cls)
        specs = []
        for f in dataclasses.fields(cls):
            ann = hints.get(f.name, _resolve_raw(f.type))
            ann, meta = _split_annotated(ann)
            key = f.metadata.get(STATE_ANNOTATION_KEY)
            specs.append(FieldSpec(f.name, ann, meta, key if isinstance(key, str) and key else None))
        return specs

    if issubclass(cls, BaseModel):
        specs = []
        for name, info in cls.model_fields.items():
            ann, meta = _split_annotated(info.annotation)
            meta = meta + tuple(info.metadata)
            extra = info.json_schema_extra
            key = extra.get(STATE_ANNOTATION_KEY) if isinstance(extra, dict) else None
            specs.append(
                FieldSpec(
                    name,
                    ann,
                    meta,
                    key if isinstance(key, str) and key else None,
                    frozen=bool(info.frozen),
                )
            )
        return specs

    raise TypeError(f"{cls.__name__} is not a dataclass or pydantic model")


def _split_annotated(annotation: Any) -> Tuple[Any, Tuple[Any, ...]]:
    meta: Tuple[Any, ...] = ()
    while typing.get_origin(annotation) is typing.Annotated:
        meta = meta + tuple(annotation.__metadata__)
        annotation = typing.get_args(annotation)[0]
    return annotation, meta


def _unwrap_optional(annotation: Any) -> Tuple[Any, bool]:
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1 and len(typing.get_args(annotation)) == 2:
            return args[0], True
    return annotation, False


def _non_negative(metadata: Tuple[Any, ...]) -> bool:
    for m in metadata:
        ge = getattr(m, "ge", None)
        if isinstance(ge, (int, float)) and ge >= 0:
            return True
        gt = getattr(m, "gt", None)
        if isinstance(gt, (int, float)) and gt >= 0:
            return True
    return False


def field_kind(spec: FieldSpec) -> Tuple[FieldKind, bool]:
    """Return `(kind, nullable)` for a field.

    `nullable` is True for ``Optional[X]`` annotations, where X decides the kind.
    """
    annotation, nullable = _unwrap_optional(spec.annotation)
    annotation, inner_meta = _split_annotated(_resolve_raw(annotation))
    metadata = spec.metadata + inner_meta

    if annotation is str:
        kind = FieldKind.STRING
    elif annotation is bool:
        kind = FieldKind.BOOL
    elif annotation is int:
        kind = FieldKind.UINT if _non_negative(metadata) else FieldKind.INT
    elif annotation is float:
        kind = FieldKind.FLOAT
    else:
        kind = FieldKind.OTHER
    return kind, nullable


def copy_fields(target: Any, source: Any) -> None:
    """Assign every declared field of `source` onto `target`."""
    for spec in record_fields(target):
        setattr(target, spec.name, getattr(source, spec.name))
    if isinstance(target, BaseModel) and source.__pydantic_extra__ is not None:
        target.__pydantic_extra__ = dict(source.__pydantic_extra__)


def _classes_in(annotation: Any) -> Iterator[type]:
    annotation = _resolve_raw(annotation)
    if isinstance(annotation, type) and typing.get_origin(annotation) is None:
        yield annotation
    for arg in typing.get_args(annotation):
        yield from _classes_in(arg)


def declared_classes(cls: type) -> Set[type]:
    """Classes reachable from `cls` through its declared field annotations."""
    seen: Set[type] = set()
    pending = [cls]
    while pending:
        current = pending.pop()
        if current in seen:
            continue
        seen.add(current)
        if not is_record(current):
            continue
        for spec in record_fields(current):
            pending.extend(_classes_in(spec.annotation))
    return seen

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .errors import DeserializationError, UnrecognizedKindError

# values carried literally by a PrimitiveRecord (exact types only)
PRIMITIVE_TYPES = (type(None), bool, int, float, str)

# flavours an ArrayRecord may name besides the default list
ARRAY_FLAVOURS = ("tuple", "set", "frozenset")


@dataclass
class AttributeDescriptor:
    """Metadata of one attribute that does not fit the plain ``refs`` bucket.

    Accessor descriptors carry ``get``/``set``; data descriptors carry
    ``value`` and ``writable``. Indices point into the graph's content array.
    """
    configurable: bool
    enumerable: bool
    get: Optional[int] = None
    set: Optional[int] = None
    value: Optional[int] = None
    writable: Optional[bool] = None

    @property
    def is_accessor(self) -> bool:
        return self.get is not None or self.set is not None

    def references(self) -> Iterator[int]:
        for idx in (self.get, self.set, self.value):
            if idx is not None:
                yield idx

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for key in ("get", "set", "value"):
            idx = getattr(self, key)
            if idx is not None:
                out[key] = idx
        out["configurable"] = self.configurable
        if self.writable is not None:
            out["writable"] = self.writable
        out["enumerable"] = self.enumerable
        return out

    @classmethod
    def from_json(cls, d: Dict[str, Any]) -> "AttributeDescriptor":
        writable = d.get("writable")
        return cls(
            configurable=bool(d.get("configurable", False)),
            enumerable=bool(d.get("enumerable", False)),
            get=d.get("get"),
            set=d.get("set"),
            value=d.get("value"),
            writable=None if writable is None else bool(writable),
        )


# ===== content records ======================================================

@dataclass
class ContentRecord:
    """Base of the seven record kinds; ``kind`` is the wire tag."""

    def references(self) -> Iterator[int]:
        return iter(())

    def to_json(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass
class PrimitiveRecord(ContentRecord):
    kind: str = field(default="primitive", init=False)
    value: Any = None

    def to_json(self):
        return {"kind": self.kind, "value": self.value}

    @classmethod
    def from_json(cls, d):
        value = d.get("value")
        if type(value) not in PRIMITIVE_TYPES:
            raise DeserializationError(f"Primitive value must be a scalar, got {type(value).__name__}")
        return cls(value=value)


@dataclass
class ArrayRecord(ContentRecord):
    kind: str = field(default="array", init=False)
    refs: List[int] = field(default_factory=list)
    type: Optional[str] = None          # None = list

    def references(self):
        return iter(self.refs)

    def to_json(self):
        out = {"kind": self.kind, "refs": list(self.refs)}
        if self.type is not None:
            out["type"] = self.type
        return out

    @classmethod
    def from_json(cls, d):
        flavour = d.get("type")
        if flavour is not None and flavour not in ARRAY_FLAVOURS:
            raise DeserializationError(f"Unknown array flavour '{flavour}'")
        return cls(refs=list(d["refs"]), type=flavour)


@dataclass
class ObjectRecord(ContentRecord):
    """A structured value: instance, mapping or class.

    ``items`` holds ``[key, value]`` index pairs for mapping entries kept out
    of ``refs``; ``args``/``kwargs`` point to the constructor arguments of
    values that cannot be allocated empty.

    Values rebuilt through the copy protocol also carry ``factory`` (the
    callable that replaces ``prototype.__new__``), ``state`` (handed to
    ``__setstate__``) and ``elements`` (appended after creation).
    """
    kind: str = field(default="object", init=False)
    prototype: int = -1
    refs: Dict[str, int] = field(default_factory=dict)
    descriptions: Dict[str, AttributeDescriptor] = field(default_factory=dict)
    items: List[Tuple[int, int]] = field(default_factory=list)
    args: Optional[int] = None
    kwargs: Optional[int] = None
    factory: Optional[int] = None
    state: Optional[int] = None
    elements: List[int] = field(default_factory=list)

    def references(self):
        yield self.prototype
        yield from _attribute_references(self.refs, self.descriptions)
        for key, value in self.items:
            yield key
            yield value
        for idx in (self.args, self.kwargs, self.factory, self.state):
            if idx is not None:
                yield idx
        yield from self.elements

    def to_json(self):
        out = {
            "kind": self.kind,
            "prototype": self.prototype,
            "refs": dict(self.refs),
            "descriptions": _descriptions_to_json(self.descriptions),
        }
        if self.items:
            out["items"] = [[k, v] for k, v in self.items]
        if self.args is not None:
            out["args"] = self.args
        if self.kwargs is not None:
            out["kwargs"] = self.kwargs
        if self.factory is not None:
            out["factory"] = self.factory
        if self.state is not None:
            out["state"] = self.state
        if self.elements:
            out["elements"] = list(self.elements)
        return out

    @classmethod
    def from_json(cls, d):
        items = []
        for pair in d.get("items", ()):
            if len(pair) != 2:
                raise DeserializationError(f"Malformed mapping entry {pair!r}")
            items.append((pair[0], pair[1]))
        return cls(
            prototype=d["prototype"],
            refs=dict(d.get("refs", {})),
            descriptions=_descriptions_from_json(d.get("descriptions", {})),
            items=items,
            args=d.get("args"),
            kwargs=d.get("kwargs"),
            factory=d.get("factory"),
            state=d.get("state"),
            elements=list(d.get("elements", ())),
        )


@dataclass
class FunctionRecord(ContentRecord):
    kind: str = field(default="function", init=False)
    source: str = ""
    closure: int = -1
    prototype: int = -1
    refs: Dict[str, int] = field(default_factory=dict)
    descriptions: Dict[str, AttributeDescriptor] = field(default_factory=dict)

    def references(self):
        yield self.closure
        yield self.prototype
        yield from _attribute_references(self.refs, self.descriptions)

    def to_json(self):
        return {
            "kind": self.kind,
            "source": self.source,
            "closure": self.closure,
            "prototype": self.prototype,
            "refs": dict(self.refs),
            "descriptions": _descriptions_to_json(self.descriptions),
        }

    @classmethod
    def from_json(cls, d):
        return cls(
            source=d["source"],
            closure=d["closure"],
            prototype=d["prototype"],
            refs=dict(d.get("refs", {})),
            descriptions=_descriptions_from_json(d.get("descriptions", {})),
        )


@dataclass
class BuiltinRecord(ContentRecord):
    kind: str = field(default="builtin", init=False)
    name: str = ""

    def to_json(self):
        return {"kind": self.kind, "name": self.name}

    @classmethod
    def from_json(cls, d):
        return cls(name=d["name"])


@dataclass
class DateRecord(ContentRecord):
    kind: str = field(default="date", init=False)
    value: str = ""

    def to_json(self):
        return {"kind": self.kind, "value": self.value}

    @classmethod
    def from_json(cls, d):
        return cls(value=d["value"])


@dataclass
class RegexRecord(ContentRecord):
    kind: str = field(default="regex", init=False)
    value: str = ""

    def to_json(self):
        return {"kind": self.kind, "value": self.value}

    @classmethod
    def from_json(cls, d):
        return cls(value=d["value"])


RECORD_KINDS = {
    "primitive": PrimitiveRecord,
    "array":     ArrayRecord,
    "object":    ObjectRecord,
    "function":  FunctionRecord,
    "builtin":   BuiltinRecord,
    "date":      DateRecord,
    "regex":     RegexRecord,
}


def record_from_json(d: Any) -> ContentRecord:
    if not isinstance(d, dict):
        raise DeserializationError(f"Content record must be a JSON object, got {type(d).__name__}")
    kind = d.get("kind")
    try:
        cls = RECORD_KINDS[kind]
    except (KeyError, TypeError):
        raise UnrecognizedKindError(kind) from None
    try:
        return cls.from_json(d)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise DeserializationError(f"Malformed '{kind}' record: {e!r}") from e


# ── helpers ────────────────────────────────────────────────────────────────
def _attribute_references(refs, descriptions):
    yield from refs.values()
    for desc in descriptions.values():
        yield from desc.references()


def _descriptions_to_json(descriptions):
    return {name: desc.to_json() for name, desc in descriptions.items()}


def _descriptions_from_json(d):
    return {name: AttributeDescriptor.from_json(desc) for name, desc in d.items()}

"""Flat record list → live values.

Every container is published in the memo table *before* its children are
decoded. Functions are created around fresh, empty cells, memoized, and only
then is their closure snapshot decoded and poured into the cells, so a
function that (transitively) captures itself sees its final identity.
"""
from __future__ import annotations

import builtins
import logging
import types
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterable, Optional

from .encoder import CALL_CONSTRUCTED, CLASS_DESCRIBED
from .errors import DeserializationError, UnknownBuiltinError, UnrecognizedKindError
from .literals import parse_pattern, parse_timestamp
from .models import (
    ArrayRecord,
    BuiltinRecord,
    DateRecord,
    FunctionRecord,
    ObjectRecord,
    PrimitiveRecord,
    RegexRecord,
)
from .registry import Registry, default_registry
from .source import owner_class, synthesize_code

LOGGER = logging.getLogger("closure_graph.decoder")
LOGGER.addHandler(logging.NullHandler())

# class namespace entries that must exist when the class object is created
_NAMESPACE_REFS = ("__module__", "__doc__", "__slots__")
_DEFAULT_MODULE = "__closure_graph__"

_MISSING = object()


class GraphDecoder:
    def __init__(self, registry: Optional[Registry] = None):
        self.registry = registry if registry is not None else default_registry()
        self._data: list = []
        self._memo: Dict[int, Any] = {}
        self._handlers: Dict[type, Callable[[int, Any], Any]] = {
            PrimitiveRecord: self._primitive,
            ArrayRecord:     self._array,
            ObjectRecord:    self._object,
            FunctionRecord:  self._function,
            BuiltinRecord:   self._builtin,
            DateRecord:      self._date,
            RegexRecord:     self._regex,
        }

    def decode(self, graph) -> Any:
        self._data, self._memo = graph.data, {}
        try:
            value = self._get(graph.root_index)
            LOGGER.debug("decoded %d of %d records", len(self._memo), len(self._data))
            return value
        finally:
            self._data, self._memo = [], {}

    # ------------------------------------------------------------------
    def _get(self, idx: Any) -> Any:
        if type(idx) is not int or not 0 <= idx < len(self._data):
            raise DeserializationError(f"Index {idx!r} is out of range for {len(self._data)} records")
        value = self._memo.get(idx, _MISSING)
        if value is not _MISSING:
            return value
        record = self._data[idx]
        handler = self._handlers.get(type(record))
        if handler is None:
            raise UnrecognizedKindError(getattr(record, "kind", type(record).__name__))
        return handler(idx, record)

    def _primitive(self, idx, record: PrimitiveRecord):
        self._memo[idx] = record.value
        return record.value

    def _builtin(self, idx, record: BuiltinRecord):
        value = self.registry.value_of(record.name)
        if value is None:
            raise UnknownBuiltinError(record.name)
        self._memo[idx] = value
        return value

    def _date(self, idx, record: DateRecord):
        value = self._memo[idx] = parse_timestamp(record.value)
        return value

    def _regex(self, idx, record: RegexRecord):
        value = self._memo[idx] = parse_pattern(record.value)
        return value

    # ── sequences ──────────────────────────────────────────────────────────
    def _array(self, idx, record: ArrayRecord):
        flavour = record.type
        if flavour is None:
            out = self._memo[idx] = []
            for ref in record.refs:
                out.append(self._get(ref))
            return out
        if flavour == "set":
            out = self._memo[idx] = set()
            for ref in record.refs:
                out.add(self._get(ref))
            return out
        if flavour not in ("tuple", "frozenset"):
            raise DeserializationError(f"Unknown array flavour '{flavour}'")

        # immutable: elements first; a cycle through them may have built us already
        items = [self._get(ref) for ref in record.refs]
        if idx in self._memo:
            return self._memo[idx]
        out = self._memo[idx] = tuple(items) if flavour == "tuple" else frozenset(items)
        return out

    # ── objects & classes ──────────────────────────────────────────────────
    def _object(self, idx, record: ObjectRecord):
        proto = self._get(record.prototype)
        if not isinstance(proto, type):
            raise DeserializationError(f"Prototype of record {idx} is not a class: {proto!r}")
        if idx in self._memo:
            return self._memo[idx]
        if record.factory is not None:
            return self._reduced(idx, record, proto)
        if issubclass(proto, type):
            return self._class(idx, record, proto)

        args = () if record.args is None else self._get(record.args)
        kwargs = {} if record.kwargs is None else self._get(record.kwargs)
        if idx in self._memo:
            return self._memo[idx]
        if issubclass(proto, CALL_CONSTRUCTED):
            value = proto(*args, **kwargs)
        else:
            value = proto.__new__(proto, *args, **kwargs)
        self._memo[idx] = value
        self._install(value, record)
        self._restore(value, record)
        return value

    def _reduced(self, idx, record: ObjectRecord, proto: type):
        factory = self._get(record.factory)
        args = () if record.args is None else self._get(record.args)
        kwargs = {} if record.kwargs is None else self._get(record.kwargs)
        if idx in self._memo:
            return self._memo[idx]
        if not callable(factory):
            raise DeserializationError(f"Factory of record {idx} is not callable: {factory!r}")
        value = factory(*args, **kwargs)
        if not isinstance(value, proto):
            raise DeserializationError(
                f"Factory of record {idx} built {type(value).__qualname__}, not {proto.__qualname__}"
            )
        self._memo[idx] = value
        self._install(value, record)
        self._restore(value, record)
        return value

    def _restore(self, value, record: ObjectRecord) -> None:
        if record.elements:
            items = [self._get(ref) for ref in record.elements]
            extend = getattr(value, "extend", None)
            if extend is not None:
                extend(items)
            else:
                for item in items:
                    value.append(item)
        if record.state is not None:
            _set_state(value, self._get(record.state))

    def _class(self, idx, record: ObjectRecord, meta: type):
        described = {}
        for key in CLASS_DESCRIBED:
            desc = record.descriptions.get(key)
            if desc is None or desc.value is None:
                raise DeserializationError(f"Class record {idx} lacks '{key}'")
            described[key] = self._get(desc.value)
        namespace = {"__qualname__": described["__qualname__"]}
        for key in _NAMESPACE_REFS:
            if key in record.refs:
                namespace[key] = self._get(record.refs[key])
        if idx in self._memo:
            return self._memo[idx]

        cls = meta(described["__name__"], tuple(described["__bases__"]), namespace)
        self._memo[idx] = cls
        self._install(cls, record, skip=set(namespace) | set(CLASS_DESCRIBED))
        return cls

    # ── functions ──────────────────────────────────────────────────────────
    def _function(self, idx, record: FunctionRecord):
        names = self._closure_names(idx, record)
        qualname = self._literal(record, "__qualname__")
        module = self._literal(record, "__module__")
        code = synthesize_code(record.source, names, owner_class(qualname))

        scope = {"__builtins__": builtins, "__name__": module or _DEFAULT_MODULE}
        cells = tuple(types.CellType() for _ in code.co_freevars)
        func = types.FunctionType(code, scope, code.co_name, None, cells or None)
        self._memo[idx] = func

        snapshot = self._get(record.closure)
        if not isinstance(snapshot, Mapping):
            raise DeserializationError(f"Closure of function record {idx} is not a mapping")
        by_name = dict(zip(code.co_freevars, cells))
        for name, value in snapshot.items():
            cell = by_name.get(name)
            if cell is not None:
                cell.cell_contents = value
            else:
                scope[name] = value

        proto = self._get(record.prototype)
        if not (isinstance(proto, type) and isinstance(func, proto)):
            raise DeserializationError(f"Prototype of function record {idx} is not a function type: {proto!r}")
        self._install(func, record)
        return func

    def _closure_names(self, idx, record: FunctionRecord):
        """Captured names, read without decoding the snapshot itself."""
        if type(record.closure) is int and 0 <= record.closure < len(self._data):
            closure = self._data[record.closure]
            if isinstance(closure, ObjectRecord) and not closure.items:
                return list(closure.refs)
        done = self._memo.get(record.closure, _MISSING)
        if isinstance(done, Mapping):
            return list(done)
        raise DeserializationError(f"Closure of function record {idx} must be a name-keyed object record")

    def _literal(self, record, key: str) -> Optional[str]:
        # only plain strings are read before the function exists
        desc = record.descriptions.get(key)
        if desc is None or desc.value is None or not 0 <= desc.value < len(self._data):
            return None
        target = self._data[desc.value]
        if isinstance(target, PrimitiveRecord) and isinstance(target.value, str):
            return target.value
        return None

    # ── attributes ─────────────────────────────────────────────────────────
    def _install(self, target, record, skip: Iterable[str] = ()) -> None:
        skip = set(skip)
        is_class = isinstance(target, type)
        plain_setattr = is_class or isinstance(target, types.FunctionType)

        for key, ref in record.refs.items():
            if key in skip:
                continue
            value = self._get(ref)
            if type(target) is dict:
                target[key] = value
            elif plain_setattr:
                setattr(target, key, value)
                if is_class:
                    _set_name(target, key, value)
            else:
                _instance_state(target)[key] = value

        for key, desc in record.descriptions.items():
            if key in skip:
                continue
            if desc.is_accessor:
                if not is_class:
                    raise DeserializationError(f"Accessor attribute '{key}' on a non-class value")
                fget = None if desc.get is None else self._get(desc.get)
                fset = None if desc.set is None else self._get(desc.set)
                setattr(target, key, property(fget, fset))
                continue
            value = None if desc.value is None else self._get(desc.value)
            if plain_setattr:
                setattr(target, key, value)
            else:
                object.__setattr__(target, key, value)

        for key_ref, value_ref in getattr(record, "items", ()):
            target[self._get(key_ref)] = self._get(value_ref)


# ── helpers ────────────────────────────────────────────────────────────────
def _instance_state(target) -> dict:
    try:
        return object.__getattribute__(target, "__dict__")
    except AttributeError:
        raise DeserializationError(
            f"'{type(target).__qualname__}' instances have no attribute dict"
        ) from None


def _set_name(owner: type, key: str, value) -> None:
    hook = getattr(type(value), "__set_name__", None)
    if hook is not None:
        hook(value, owner, key)


def _set_state(target, state) -> None:
    setstate = getattr(target, "__setstate__", None)
    if setstate is not None:
        setstate(state)
        return
    slot_state = None
    if isinstance(state, tuple) and len(state) == 2:
        state, slot_state = state
    if state:
        _instance_state(target).update(state)
    for key, value in (slot_state or {}).items():
        setattr(target, key, value)

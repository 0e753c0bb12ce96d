"""Value graph → flat record list.

Every distinct identity gets one index. The index is reserved (and the
identity registered) *before* the record is computed, so a value reachable
from itself resolves to its own, already reserved, index.
"""
from __future__ import annotations

import collections
import copyreg
import datetime
import enum
import functools
import logging
import re
import types
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Tuple

from .config import GRAPH_CONFIG
from .errors import SerializationError, UnsupportedValueError
from .models import (
    PRIMITIVE_TYPES,
    ArrayRecord,
    AttributeDescriptor,
    BuiltinRecord,
    ContentRecord,
    DateRecord,
    FunctionRecord,
    ObjectRecord,
    PrimitiveRecord,
    RegexRecord,
)
from .literals import format_pattern, format_timestamp
from .registry import Registry, default_registry
from .snapshot import snapshot_accessor
from .source import function_source

LOGGER = logging.getLogger("closure_graph.encoder")
LOGGER.addHandler(logging.NullHandler())

# rebuilt by calling the type with recorded arguments; no empty allocation exists
CALL_CONSTRUCTED = (
    staticmethod,
    classmethod,
    property,
    types.MethodType,
    functools.partial,
    collections.defaultdict,
    enum.Enum,
)

# function attributes recorded as non-enumerable descriptions
FUNCTION_DESCRIBED = (
    "__name__", "__qualname__", "__module__", "__doc__",
    "__defaults__", "__kwdefaults__", "__annotations__",
)
CLASS_DESCRIBED = ("__name__", "__qualname__", "__bases__")

# class namespace entries the interpreter maintains itself
CLASS_INTERNAL = frozenset((
    "__dict__", "__weakref__", "_abc_impl",
    "__annotate__", "__annotate_func__", "__annotations_cache__",
))
_MEMBER_DESCRIPTORS = (types.MemberDescriptorType, types.GetSetDescriptorType)

_SEQUENCE_TYPES = (list, tuple, set, frozenset)

# enum class entries re-installed after the functional API built the members
_ENUM_METHODS = (types.FunctionType, staticmethod, classmethod, property)

# rebuilt from arguments that do not hold the value itself
_COPY_ARGS = {
    bytes: lambda v: (list(v),),
    bytearray: lambda v: (list(v),),
    complex: lambda v: (v.real, v.imag),
}


class GraphEncoder:
    def __init__(self, registry: Optional[Registry] = None,
                 config: Optional[Mapping[str, Any]] = None):
        self.registry = registry if registry is not None else default_registry()
        self.config = {**GRAPH_CONFIG, **(config or {})}
        self._data: List[Optional[ContentRecord]] = []
        # id(value) → (index, value); holding the value pins its id for the call
        self._seen: Dict[int, Tuple[int, Any]] = {}

    def encode(self, value: Any):
        from .graph import Graph

        self._data, self._seen = [], {}
        try:
            root = self._visit(value)
            graph = Graph(root, self._data)
        finally:
            self._seen = {}
            self._data = []
        LOGGER.debug("encoded %d records, root %d", len(graph.data), graph.root_index)
        return graph

    # ------------------------------------------------------------------
    def _visit(self, value: Any) -> int:
        hit = self._seen.get(id(value))
        if hit is not None:
            return hit[0]
        idx = len(self._data)
        self._data.append(None)
        self._seen[id(value)] = (idx, value)
        self._data[idx] = self._classify(value)
        return idx

    def _classify(self, value: Any) -> ContentRecord:
        name = self.registry.name_of(value)
        if name is not None:
            return BuiltinRecord(name=name)
        vtype = type(value)
        if vtype in PRIMITIVE_TYPES:
            return PrimitiveRecord(value=value)
        if vtype in _SEQUENCE_TYPES:
            return self._sequence(value)
        if isinstance(value, types.FunctionType):
            return self._function(value)
        if isinstance(value, datetime.date):
            return DateRecord(value=format_timestamp(value))
        if isinstance(value, re.Pattern) and isinstance(value.pattern, str):
            return RegexRecord(value=format_pattern(value))
        if isinstance(value, type):
            return self._class(value)
        return self._object(value)

    # ── sequences ──────────────────────────────────────────────────────────
    def _sequence(self, value) -> ArrayRecord:
        vtype = type(value)
        items = value
        if vtype in (set, frozenset):
            items = self._set_order(value)
        refs = [self._visit(item) for item in items]
        return ArrayRecord(refs=refs, type=None if vtype is list else vtype.__name__)

    def _set_order(self, value):
        if self.config["sort_sets"]:
            try:
                return sorted(value)
            except TypeError:
                pass            # mixed element types: iteration order
        return list(value)

    # ── functions ──────────────────────────────────────────────────────────
    def _function(self, func: types.FunctionType) -> FunctionRecord:
        attr = self.config["snapshot_attr"]
        source = function_source(func)
        accessor = snapshot_accessor(func, attr, self.config["capture_globals"])
        snapshot = accessor()
        if snapshot is None:
            snapshot = {}
        if not isinstance(snapshot, Mapping):
            raise SerializationError(
                f"Closure snapshot of '{func.__qualname__}' must be a mapping, "
                f"got {type(snapshot).__name__}"
            )
        if type(snapshot) is not dict:
            snapshot = dict(snapshot)

        record = FunctionRecord(source=source)
        record.closure = self._visit(snapshot)
        record.prototype = self._visit(type(func))
        for key, value in vars(func).items():
            if key != attr:
                record.refs[key] = self._visit(value)
        for key in FUNCTION_DESCRIBED:
            try:
                value = getattr(func, key)
            except NameError:
                continue        # lazily evaluated annotations naming a missing global
            if value is None or (isinstance(value, (dict, tuple)) and not value):
                continue
            record.descriptions[key] = self._described(value)
        return record

    def _described(self, value) -> AttributeDescriptor:
        return AttributeDescriptor(
            configurable=False, enumerable=False, value=self._visit(value), writable=True
        )

    # ── classes ────────────────────────────────────────────────────────────
    def _class(self, cls: type) -> ObjectRecord:
        if isinstance(cls, enum.EnumMeta):
            return self._enum_class(cls)
        record = ObjectRecord(prototype=self._visit(type(cls)))
        for key in CLASS_DESCRIBED:
            record.descriptions[key] = self._described(getattr(cls, key))
        for key, value in vars(cls).items():
            if key in CLASS_INTERNAL or isinstance(value, _MEMBER_DESCRIPTORS):
                continue
            if type(value) is property and value.fdel is None and (value.fget or value.fset):
                record.descriptions[key] = AttributeDescriptor(
                    configurable=True,
                    enumerable=True,
                    get=None if value.fget is None else self._visit(value.fget),
                    set=None if value.fset is None else self._visit(value.fset),
                )
            else:
                record.refs[key] = self._visit(value)
        return record

    def _enum_class(self, cls) -> ObjectRecord:
        # the metaclass needs its members at creation: rebuilt by the functional API
        base = next(b for b in cls.__mro__[1:] if isinstance(b, enum.EnumMeta))
        members = [(name, member._value_) for name, member in cls.__members__.items()]
        kwargs = {"module": cls.__module__, "qualname": cls.__qualname__}
        if cls._member_type_ is not base._member_type_:
            kwargs["type"] = cls._member_type_

        record = ObjectRecord(prototype=self._visit(type(cls)))
        record.factory = self._visit(base)
        record.args = self._visit((cls.__name__, members))
        record.kwargs = self._visit(kwargs)
        for key, value in vars(cls).items():
            if key in cls.__members__:
                continue
            if key == "__doc__" and isinstance(value, str):
                record.refs[key] = self._visit(value)
            elif isinstance(value, _ENUM_METHODS) and not _inherited(base, key, value):
                record.refs[key] = self._visit(value)
        return record

    # ── everything else ────────────────────────────────────────────────────
    def _object(self, value: Any) -> ObjectRecord:
        cls = type(value)
        record = ObjectRecord(prototype=self._visit(cls))
        args, kwargs, stateful = _constructor_args(value)
        if args is not None:
            record.args = self._visit(args)
        if kwargs:
            record.kwargs = self._visit(kwargs)
        if not stateful:
            return record

        state = _instance_dict(value)
        slots = _slot_values(value)
        if (state is None and slots is None and not isinstance(value, dict)
                and cls is not object and args is None):
            return self._reduced(value, record)

        if isinstance(value, dict):
            if cls is dict and all(type(k) is str for k in value):
                for key, item in value.items():
                    record.refs[key] = self._visit(item)
            else:
                record.items = [(self._visit(k), self._visit(v)) for k, v in value.items()]
        if state:
            for key, item in state.items():
                record.refs[key] = self._visit(item)
        for key, item in (slots or {}).items():
            record.descriptions[key] = AttributeDescriptor(
                configurable=True, enumerable=False, value=self._visit(item), writable=True
            )
        return record

    def _reduced(self, value: Any, record: ObjectRecord) -> ObjectRecord:
        """C-level state: replayed through the copy protocol."""
        factory, args, kwargs, state, elements, items = _reduce(value)
        if factory is not None:
            record.factory = self._visit(factory)
        record.args = self._visit(args)
        if kwargs:
            record.kwargs = self._visit(kwargs)
        if state is not None:
            record.state = self._visit(state)
        record.elements = [self._visit(item) for item in elements]
        record.items = [(self._visit(k), self._visit(v)) for k, v in items]
        return record


# ── helpers ────────────────────────────────────────────────────────────────
def _constructor_args(value) -> Tuple[Optional[tuple], Optional[dict], bool]:
    """(args, kwargs, stateful) a decoder needs to allocate *value*."""
    if isinstance(value, enum.Enum):
        return (value._value_,), None, False
    if isinstance(value, (staticmethod, classmethod)):
        return (value.__func__,), None, False
    if isinstance(value, property):
        return (value.fget, value.fset, value.fdel, value.__doc__), None, False
    if isinstance(value, types.MethodType):
        return (value.__func__, value.__self__), None, False
    if isinstance(value, functools.partial):
        return (value.func,) + value.args, dict(value.keywords), True
    if isinstance(value, collections.defaultdict):
        return (value.default_factory,), None, True

    cls = type(value)
    if cls.__module__ == "builtins":
        return None, None, True
    if hasattr(cls, "__getnewargs_ex__"):
        args, kwargs = value.__getnewargs_ex__()
        return tuple(args), dict(kwargs), True
    if hasattr(cls, "__getnewargs__"):
        return tuple(value.__getnewargs__()), None, True
    return None, None, True


def _instance_dict(value) -> Optional[dict]:
    try:
        return object.__getattribute__(value, "__dict__")
    except (AttributeError, TypeError):
        return None


def _slot_values(value) -> Optional[Dict[str, Any]]:
    """Values of the ``__slots__`` along the MRO; None if no class declares any."""
    found = None
    for klass in type(value).__mro__:
        if klass is object or "__slots__" not in vars(klass):
            continue
        found = {} if found is None else found
        names = vars(klass)["__slots__"]
        if isinstance(names, str):
            names = (names,)
        for name in names:
            if name in ("__dict__", "__weakref__"):
                continue
            if name.startswith("__") and not name.endswith("__"):
                name = f"_{klass.__name__.lstrip('_')}{name}"
            try:
                found[name] = object.__getattribute__(value, name)
            except AttributeError:
                continue    # unset slot
    return found


def _inherited(base: type, key: str, value) -> bool:
    return any(vars(klass).get(key) is value for klass in base.__mro__)


def _reduce(value):
    """(factory, args, kwargs, state, elements, items) from ``__reduce_ex__``.

    A None factory means ``type(value).__new__`` with the arguments.
    """
    cls = type(value)
    by_value = _COPY_ARGS.get(cls)
    if by_value is not None:
        return cls, by_value(value), None, None, [], []
    try:
        rv = value.__reduce_ex__(2)
    except TypeError as e:
        raise UnsupportedValueError(value) from e
    if isinstance(rv, str) or len(rv) < 2:
        raise UnsupportedValueError(value)
    factory, args, state, elements, items = tuple(rv) + (None,) * (5 - len(rv))
    kwargs = None
    if factory is copyreg.__newobj__:
        klass, args = args[0], args[1:]
        factory = None
    elif factory is copyreg.__newobj_ex__:
        klass, args, kwargs = args
        factory = None
    else:
        klass = cls
    if klass is not cls:
        raise UnsupportedValueError(value)
    return factory, tuple(args), kwargs, state, list(elements or ()), list(items or ())

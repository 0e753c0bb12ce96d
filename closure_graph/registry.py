"""Builtin registry: stable names for well-known runtime values.

The encoder asks :meth:`Registry.name_of` before anything else and emits a
``builtin`` record on a hit; the decoder resolves the name back with
:meth:`Registry.value_of`. Lookups are identity based.

Besides the explicit table, a registry can name importable globals:
modules become ``module:<name>`` and module-level classes and builtin
functions become ``<module>:<qualname>``. Such names resolve by importing,
the way ``pickle`` resolves globals. Python functions only get an import
name when they come from the standard library (or a package listed in
``packages``); everything else travels as source.
"""
from __future__ import annotations

import builtins
import functools
import importlib
import logging
import sys
import types
from typing import Any, Dict, FrozenSet, Iterable, Optional

from .models import PRIMITIVE_TYPES

LOGGER = logging.getLogger("closure_graph.registry")
LOGGER.addHandler(logging.NullHandler())

DEFAULT_MODULES = (
    "math", "operator", "functools", "itertools", "collections", "re",
    "json", "string", "datetime", "types", "copy", "random", "time",
)
MODULE_PREFIX = "module:"

_MISSING = object()
_IMPORTABLE = (type, types.FunctionType, types.BuiltinFunctionType)


class Registry:
    def __init__(self, import_globals: bool = True, packages: Iterable[str] = ()):
        self.import_globals = import_globals
        self.packages = frozenset(packages)
        self._values: Dict[str, Any] = {}
        self._names: Dict[int, str] = {}     # id(value) → first name registered

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, name: str) -> bool:
        return name in self._values

    # ------------------------------------------------------------------
    def register(self, name: str, value: Any) -> bool:
        """Register *value* under *name*. Primitives are skipped (they are
        always carried by value); returns whether the value was registered."""
        if type(value) in PRIMITIVE_TYPES:
            return False
        existing = self._values.get(name, _MISSING)
        if existing is not _MISSING and existing is not value:
            raise ValueError(f"Builtin name '{name}' is already registered")
        self._values[name] = value
        self._names.setdefault(id(value), name)
        return True

    def register_module(self, module: types.ModuleType, prefix: Optional[str] = None) -> int:
        """Register *module* and its public attributes as ``prefix.attr``."""
        prefix = prefix or module.__name__
        count = int(self.register(prefix, module))
        for attr in dir(module):
            if attr.startswith("_"):
                continue
            value = getattr(module, attr, _MISSING)
            if value is not _MISSING:
                count += self.register(f"{prefix}.{attr}", value)
        return count

    def copy(self) -> "Registry":
        clone = Registry(import_globals=self.import_globals, packages=self.packages)
        clone._values = dict(self._values)
        clone._names = dict(self._names)
        return clone

    # ------------------------------------------------------------------
    def name_of(self, value: Any) -> Optional[str]:
        name = self._names.get(id(value))
        if name is not None or not self.import_globals:
            return name
        return import_name(value, self.packages)

    def value_of(self, name: str) -> Any:
        value = self._values.get(name, _MISSING)
        if value is not _MISSING:
            return value
        if ":" in name:
            return resolve_import_name(name)
        return None


# ── importable globals ─────────────────────────────────────────────────────
def import_name(value: Any, packages: FrozenSet[str] = frozenset()) -> Optional[str]:
    """Name under which *value* can be re-imported, or None."""
    if isinstance(value, types.ModuleType):
        name = getattr(value, "__name__", None)
        if name and sys.modules.get(name) is value:
            return MODULE_PREFIX + name
        return None
    if not isinstance(value, _IMPORTABLE):
        return None
    module = getattr(value, "__module__", None)
    qualname = getattr(value, "__qualname__", None)
    if not module or not qualname or module == "__main__" or "<locals>" in qualname:
        return None
    if isinstance(value, types.FunctionType) and not is_library_module(module, packages):
        return None
    mod = sys.modules.get(module)
    if mod is None or _lookup(mod, qualname) is not value:
        return None
    return f"{module}:{qualname}"


def is_library_module(name: str, packages: FrozenSet[str] = frozenset()) -> bool:
    top = name.partition(".")[0]
    return top in sys.stdlib_module_names or top in packages


def resolve_import_name(name: str) -> Any:
    if name.startswith(MODULE_PREFIX):
        return _import(name[len(MODULE_PREFIX):])
    module, _, qualname = name.partition(":")
    mod = _import(module)
    if mod is None or not qualname:
        return None
    return _lookup(mod, qualname)


def _import(name: str):
    try:
        return importlib.import_module(name)
    except ImportError:
        return None


def _lookup(obj, qualname: str):
    for part in qualname.split("."):
        obj = getattr(obj, part, _MISSING)
        if obj is _MISSING:
            return None
    return obj


# ── default registry ───────────────────────────────────────────────────────
@functools.lru_cache(maxsize=None)
def default_registry() -> Registry:
    """Registry of ``builtins`` plus the modules in DEFAULT_MODULES.

    Shared and meant to be read only; use :meth:`Registry.copy` to extend it.
    """
    registry = Registry()
    registry.register("builtins", builtins)
    for name in dir(builtins):
        if not name.startswith("_"):
            registry.register(name, getattr(builtins, name))
    for module_name in DEFAULT_MODULES:
        registry.register_module(importlib.import_module(module_name))
    LOGGER.debug("default registry holds %d builtins", len(registry))
    return registry

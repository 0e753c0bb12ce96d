"""Closure snapshot accessor.

A snapshot maps each variable a function closes over to its current value.
Callables may publish their own accessor under ``__closure_snapshot__``
(a zero-argument callable returning a dict); everything else gets one built
from the function's cells and, optionally, the module globals its code reads.
"""
from __future__ import annotations

import dis
import logging
import types
from functools import partial
from typing import Any, Callable, Dict, List

LOGGER = logging.getLogger("closure_graph.snapshot")
LOGGER.addHandler(logging.NullHandler())

# LOAD_NAME and LOAD_FROM_DICT_OR_GLOBALS: class bodies nested in the code
_GLOBAL_LOADS = frozenset(("LOAD_GLOBAL", "LOAD_NAME", "LOAD_FROM_DICT_OR_GLOBALS"))


def global_names(code: types.CodeType) -> List[str]:
    """Names *code* and its nested code objects look up as globals.

    Only global loads count: attribute and import names share ``co_names``.
    """
    names: List[str] = []
    seen = set()
    stack = [code]
    while stack:
        co = stack.pop()
        for instr in dis.get_instructions(co):
            if instr.opname not in _GLOBAL_LOADS:
                continue
            name = instr.argval
            if name not in seen:
                seen.add(name)
                names.append(name)
        stack.extend(c for c in reversed(co.co_consts) if isinstance(c, types.CodeType))
    return names


def closure_snapshot(func: types.FunctionType, capture_globals: bool = True) -> Dict[str, Any]:
    snapshot: Dict[str, Any] = {}
    code = func.__code__
    for name, cell in zip(code.co_freevars, func.__closure__ or ()):
        try:
            snapshot[name] = cell.cell_contents
        except ValueError:
            LOGGER.warning("skipping empty closure cell '%s' of %s", name, func.__qualname__)
    if not capture_globals:
        return snapshot

    scope = func.__globals__
    for name in global_names(code):
        if name in scope and name not in snapshot:
            snapshot[name] = scope[name]
    return snapshot


def snapshot_accessor(func, attr: str = "__closure_snapshot__",
                      capture_globals: bool = True) -> Callable[[], Dict[str, Any]]:
    explicit = getattr(func, attr, None)
    if explicit is not None:
        return explicit
    return partial(closure_snapshot, func, capture_globals)

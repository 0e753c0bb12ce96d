"""Function source recovery (encode) and code synthesis (decode).

Encode side: the text of a ``def`` statement (decorators excluded) or of a
bare ``lambda`` expression is cut out of the defining file with ``inspect``
and ``ast``.

Decode side: the text is parsed and spliced into a factory

    def __closure_factory__(<captured names>):
        [class <Owner>:]
            <def or __closure_target__ = lambda>

so every captured name the callable reads becomes a free variable, exactly as
in the original scope. The factory is only compiled, never run: the code
object of the callable is taken out of the factory's constants and the caller
builds the function object around fresh cells.
"""
from __future__ import annotations

import ast
import inspect
import keyword
import linecache
import logging
import textwrap
import tokenize
import types
from typing import Dict, List, Optional, Sequence

import xxhash

from .errors import DeserializationError, SourceUnavailableError

LOGGER = logging.getLogger("closure_graph.source")
LOGGER.addHandler(logging.NullHandler())

FACTORY_NAME = "__closure_factory__"
TARGET_NAME = "__closure_target__"
LAMBDA_NAME = "<lambda>"

_CODE_CACHE: Dict[str, types.CodeType] = {}


# ═════════════════════════════ encode side ═════════════════════════════════
def function_source(func: types.FunctionType) -> str:
    code = func.__code__
    try:
        # the code object, not the function: inspect would follow __wrapped__
        lines, _ = inspect.getsourcelines(code)
    except (OSError, TypeError, SyntaxError, tokenize.TokenError) as e:
        raise SourceUnavailableError(func, str(e)) from e
    block = "".join(lines)
    if not block.strip():
        raise SourceUnavailableError(func, "empty source block")
    if code.co_name == LAMBDA_NAME:
        return _lambda_source(func, block)
    return _def_source(func, block)


def _parse_block(block: str):
    # indented blocks (methods, nested defs) are parsed under a dummy header
    text = "if 1:\n" + block if block[:1].isspace() else block
    first_line = 2 if text is not block else 1
    return ast.parse(text), text, first_line


def _def_source(func, block: str) -> str:
    try:
        tree, text, _ = _parse_block(block)
    except SyntaxError as e:
        raise SourceUnavailableError(func, f"unparsable block: {e.msg}") from e
    name = func.__code__.co_name
    for node in ast.walk(tree):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == name:
            break
    else:
        raise SourceUnavailableError(func, f"no definition of '{name}' in source block")

    segment = textwrap.dedent(ast.get_source_segment(text, node, padded=True))
    if segment[:1].isspace():
        # a continuation line left of the def (multi-line string) blocks dedent
        segment = ast.get_source_segment(text, node)
    return segment


def _lambda_source(func, block: str) -> str:
    code = func.__code__
    try:
        tree, text, first_line = _parse_block(block)
    except SyntaxError:
        # lambda inside an expression spanning lines before or after the block
        return _pick_lambda(func, _scan_lambdas(func, block))

    candidates = [
        ast.get_source_segment(text, node) for node in ast.walk(tree)
        if isinstance(node, ast.Lambda) and node.lineno == first_line
        and _same_signature(node.args, code)
    ]
    return _pick_lambda(func, candidates or _scan_lambdas(func, block))


def _scan_lambdas(func, block: str) -> List[str]:
    code = func.__code__
    first_line_end = block.find("\n")
    if first_line_end < 0:
        first_line_end = len(block)
    ends = sorted({i for i, ch in enumerate(block) if ch in ",)]}\n"} | {len(block)}, reverse=True)

    found = []
    start = block.find("lambda", 0, first_line_end)
    while start >= 0:
        for end in ends:
            if end <= start:
                break
            candidate = block[start:end]
            try:
                expr = ast.parse("(" + candidate + "\n)", mode="eval").body
            except SyntaxError:
                continue
            if not isinstance(expr, ast.Lambda):
                continue        # e.g. a tuple of lambdas: try a shorter span
            if _same_signature(expr.args, code):
                found.append(candidate.strip())
            break
        start = block.find("lambda", start + 1, first_line_end)
    return found


def _pick_lambda(func, candidates: List[str]) -> str:
    """The one candidate whose compiled code is *func*'s."""
    unique = list(dict.fromkeys(candidates))
    if len(unique) == 1:
        return unique[0]
    if not unique:
        raise SourceUnavailableError(func, "no matching lambda expression in source block")
    matching = [text for text in unique if _same_code(text, func.__code__)]
    if len(matching) != 1:
        raise SourceUnavailableError(
            func, f"{len(unique)} lambda expressions on line {func.__code__.co_firstlineno} share its signature"
        )
    return matching[0]


def _same_code(candidate: str, code: types.CodeType) -> bool:
    try:
        other = synthesize_code(candidate, code.co_freevars)
    except (SyntaxError, DeserializationError):
        return False
    return (other.co_code == code.co_code and other.co_names == code.co_names
            and _plain_consts(other) == _plain_consts(code))


def _plain_consts(code: types.CodeType) -> tuple:
    # nested code objects compare by bytecode; their line numbers differ
    return tuple(c.co_code if isinstance(c, types.CodeType) else c for c in code.co_consts)


def _same_signature(args: ast.arguments, code: types.CodeType) -> bool:
    names = [a.arg for a in getattr(args, "posonlyargs", [])]
    names += [a.arg for a in args.args]
    names += [a.arg for a in args.kwonlyargs]
    if args.vararg is not None:
        names.append(args.vararg.arg)
    if args.kwarg is not None:
        names.append(args.kwarg.arg)
    count = code.co_argcount + code.co_kwonlyargcount
    count += bool(code.co_flags & inspect.CO_VARARGS)
    count += bool(code.co_flags & inspect.CO_VARKEYWORDS)
    return names == list(code.co_varnames[:count])


# ═════════════════════════════ decode side ═════════════════════════════════
def owner_class(qualname: Optional[str]) -> Optional[str]:
    """Innermost class enclosing a function, read off its qualname.

    A part followed by anything but ``<locals>`` names a class:
    ``Vault.make.<locals>.inner`` is owned by ``Vault``.
    """
    if not qualname:
        return None
    parts = qualname.split(".")
    for pos in range(len(parts) - 2, -1, -1):
        owner = parts[pos]
        if owner == "<locals>" or parts[pos + 1] == "<locals>":
            continue
        if not owner.isidentifier() or keyword.iskeyword(owner):
            return None
        return owner
    return None


def synthesize_code(source: str, names: Sequence[str], owner: Optional[str] = None) -> types.CodeType:
    """Code object of the callable *source* defines, compiled so that *names*
    are its enclosing scope.

    Malformed source raises the ``SyntaxError`` of the parser.
    """
    names = list(names)
    for name in names:
        if not isinstance(name, str) or not name.isidentifier() or keyword.iskeyword(name):
            raise DeserializationError(f"Captured name {name!r} is not an identifier")

    key = "\n".join([owner or "", ",".join(names), source])
    digest = xxhash.xxh64(key.encode("utf-8", "surrogatepass")).hexdigest()
    cached = _CODE_CACHE.get(digest)
    if cached is not None:
        LOGGER.debug("synthesized code cache hit %s", digest)
        return cached

    filename = f"<closure-graph-{digest}>"
    target = _target_statement(source)
    stmt = target
    if owner is not None:
        holder = ast.parse(f"class {owner}:\n    pass\n").body[0]
        holder.body = [target]
        stmt = holder
    module = ast.parse(f"def {FACTORY_NAME}({', '.join(names)}):\n    pass\n")
    module.body[0].body = [stmt]
    ast.fix_missing_locations(module)

    code = compile(module, filename, "exec", dont_inherit=True)
    code = _only_code(code)                      # factory
    if owner is not None:
        code = _only_code(code)                  # class body
    code = _only_code(code)                      # callable

    # decoded functions stay inspectable, so they can be serialized again
    linecache.cache[filename] = (len(source), None, source.splitlines(True), filename)
    _CODE_CACHE[digest] = code
    LOGGER.debug("synthesized %s for %s (%d captured names)", filename, code.co_name, len(names))
    return code


def _target_statement(source: str) -> ast.stmt:
    if source.lstrip().startswith("lambda"):
        expr = ast.parse("(" + source + "\n)", mode="eval").body
        if not isinstance(expr, ast.Lambda):
            raise DeserializationError("Function source is not a lambda expression")
        _strip_arguments(expr.args)
        stmt = ast.parse(f"{TARGET_NAME} = None").body[0]
        stmt.value = expr
        return stmt

    body = ast.parse(source).body
    if len(body) != 1 or not isinstance(body[0], (ast.FunctionDef, ast.AsyncFunctionDef)):
        raise DeserializationError("Function source must hold exactly one def statement or lambda")
    node = body[0]
    # restored from the recorded attributes instead of being re-evaluated
    node.decorator_list = []
    node.returns = None
    _strip_arguments(node.args)
    return node


def _strip_arguments(args: ast.arguments) -> None:
    args.defaults = []
    args.kw_defaults = [None] * len(args.kwonlyargs)
    for arg in getattr(args, "posonlyargs", []) + args.args + args.kwonlyargs:
        arg.annotation = None
    for arg in (args.vararg, args.kwarg):
        if arg is not None:
            arg.annotation = None


def _only_code(code: types.CodeType) -> types.CodeType:
    found = [c for c in code.co_consts if isinstance(c, types.CodeType)]
    if len(found) != 1:
        raise DeserializationError(f"Expected one nested code object in '{code.co_name}', found {len(found)}")
    return found[0]

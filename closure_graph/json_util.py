"""JSON text boundary.

orjson does the work; the stdlib codec only takes over for payloads orjson
refuses to encode (integers wider than 64 bits, strings holding lone
surrogates) and for payloads holding NaN or infinite floats, which orjson
would write as ``null``. Its ``NaN`` / ``Infinity`` tokens read back through
the same fallback.
"""
import json
from typing import Any

import orjson

def dumps(o: Any, indent: bool = False, finite: bool = True) -> str:
    if finite:
        option = orjson.OPT_INDENT_2 if indent else 0
        try:
            return orjson.dumps(o, option=option).decode()
        except orjson.JSONEncodeError:
            pass
    if indent:
        return json.dumps(o, indent=2)
    return json.dumps(o, separators=(",", ":"))

def loads(s) -> Any:
    try:
        return orjson.loads(s)
    except orjson.JSONDecodeError:
        return json.loads(s)

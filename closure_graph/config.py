"""closure_graph default options"""
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


GRAPH_CONFIG = {
    # capture module globals a function reads, not only its cells
    "capture_globals": _env_flag("CLOSURE_GRAPH_CAPTURE_GLOBALS", True),
    "snapshot_attr": "__closure_snapshot__",   # explicit accessor name
    "sort_sets": True,                         # deterministic set element order
    "json_indent": False,                      # orjson OPT_INDENT_2
}

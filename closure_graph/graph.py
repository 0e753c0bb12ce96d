"""Graph container and the JSON boundary.

    {"root": <index>, "data": [<record>, ...]}

``Graph.from_json`` converts every record eagerly and validates every index,
so a graph that decodes at all is structurally sound.
"""
from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Union

from .config import GRAPH_CONFIG
from .errors import DeserializationError
from .json_util import dumps as _json_dumps, loads as _json_loads
from .models import ContentRecord, PrimitiveRecord, record_from_json


class Graph:
    def __init__(self, root_index: int, data: List[ContentRecord]):
        self.root_index = root_index
        self.data = data

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return f"Graph(root={self.root_index}, records={len(self.data)})"

    # ------------------------------------------------------------------
    @classmethod
    def serialize(cls, value: Any, registry=None, config: Optional[Mapping] = None) -> "Graph":
        from .encoder import GraphEncoder
        return GraphEncoder(registry, config).encode(value)

    @property
    def root(self) -> Any:
        """Decoded root value; every access decodes afresh."""
        return self.decode()

    def decode(self, registry=None) -> Any:
        from .decoder import GraphDecoder
        return GraphDecoder(registry).decode(self)

    # ── JSON boundary ──────────────────────────────────────────────────────
    def to_json(self) -> Dict[str, Any]:
        return {"root": self.root_index, "data": [record.to_json() for record in self.data]}

    @classmethod
    def from_json(cls, obj: Any) -> "Graph":
        if not isinstance(obj, Mapping):
            raise DeserializationError(f"Graph must be a JSON object, got {type(obj).__name__}")
        if "root" not in obj or "data" not in obj:
            raise DeserializationError("Graph requires 'root' and 'data'")
        data = obj["data"]
        if not isinstance(data, list):
            raise DeserializationError("Graph 'data' must be an array")
        graph = cls(obj["root"], [record_from_json(d) for d in data])
        graph.validate()
        return graph

    def validate(self) -> None:
        n = len(self.data)
        if not _valid_index(self.root_index, n):
            raise DeserializationError(f"Root index {self.root_index!r} is out of range for {n} records")
        for pos, record in enumerate(self.data):
            for idx in record.references():
                if not _valid_index(idx, n):
                    raise DeserializationError(
                        f"Record {pos} ({record.kind}) references invalid index {idx!r}"
                    )

    def dumps(self, indent: Optional[bool] = None) -> str:
        if indent is None:
            indent = GRAPH_CONFIG["json_indent"]
        finite = not any(_non_finite(record) for record in self.data)
        return _json_dumps(self.to_json(), indent=indent, finite=finite)

    @classmethod
    def loads(cls, text: Union[str, bytes]) -> "Graph":
        try:
            obj = _json_loads(text)
        except ValueError as e:
            raise DeserializationError(f"Graph text is not valid JSON: {e}") from e
        return cls.from_json(obj)


def _valid_index(idx: Any, n: int) -> bool:
    return type(idx) is int and 0 <= idx < n


def _non_finite(record) -> bool:
    return (isinstance(record, PrimitiveRecord) and type(record.value) is float
            and not math.isfinite(record.value))


# ── module level API ───────────────────────────────────────────────────────
def serialize(value: Any, registry=None, config: Optional[Mapping] = None) -> Graph:
    return Graph.serialize(value, registry, config)


def deserialize(graph: Union[Graph, str, bytes, Mapping], registry=None) -> Any:
    if isinstance(graph, (str, bytes)):
        graph = Graph.loads(graph)
    elif not isinstance(graph, Graph):
        graph = Graph.from_json(graph)
    return graph.decode(registry)


def dumps(value: Any, registry=None, config: Optional[Mapping] = None) -> str:
    options = {**GRAPH_CONFIG, **(config or {})}
    return serialize(value, registry, config).dumps(indent=options["json_indent"])


def loads(text: Union[str, bytes], registry=None) -> Any:
    return Graph.loads(text).decode(registry)

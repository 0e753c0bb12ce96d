"""
tests/test_edge_cases.py
────────────────────────
1) malformed graphs: unknown kind, bad index, missing root
2) C-level values rebuilt by the copy protocol; values the encoder refuses
3) date / pattern literals and the JSON text boundary
"""
import collections
import datetime
import decimal
import json
import math
import re

import pytest

import closure_graph
from closure_graph import (
    DeserializationError,
    Graph,
    PrimitiveRecord,
    SourceUnavailableError,
    UnrecognizedKindError,
    UnsupportedValueError,
)
from closure_graph.config import _env_flag
from closure_graph.literals import format_pattern, parse_pattern, parse_timestamp
from closure_graph.source import synthesize_code


# ----------------------------- malformed graphs -----------------------
def test_unrecognized_kind():
    text = json.dumps({"root": 0, "data": [{"kind": "mystery", "value": 1}]})
    with pytest.raises(UnrecognizedKindError) as err:
        closure_graph.loads(text)
    assert err.value.kind == "mystery"


def test_unrecognized_record_object_in_memory():
    with pytest.raises(UnrecognizedKindError):
        Graph(0, [object()]).root


@pytest.mark.parametrize(
    "payload",
    [
        {"data": [{"kind": "primitive", "value": 1}]},
        {"root": 1, "data": [{"kind": "primitive", "value": 1}]},
        {"root": True, "data": [{"kind": "primitive", "value": 1}]},
        {"root": 0, "data": [{"kind": "array", "refs": [0, 5]}]},
        {"root": 0, "data": [{"kind": "array", "refs": [], "type": "deque"}]},
        {"root": 0, "data": [{"kind": "object", "refs": {}}]},
        {"root": 0, "data": "not a list"},
        [1, 2, 3],
    ],
)
def test_malformed_graphs_are_rejected(payload):
    with pytest.raises(DeserializationError):
        closure_graph.deserialize(payload)


def test_invalid_json_text():
    with pytest.raises(DeserializationError):
        closure_graph.loads("{not json")


def test_function_closure_must_be_an_object():
    graph = {
        "root": 0,
        "data": [
            {"kind": "function", "source": "lambda: 1", "closure": 1,
             "prototype": 2, "refs": {}, "descriptions": {}},
            {"kind": "array", "refs": []},
            {"kind": "builtin", "name": "types.FunctionType"},
        ],
    }
    with pytest.raises(DeserializationError):
        closure_graph.deserialize(graph)


def test_malformed_source_raises_syntax_error():
    graph = {
        "root": 0,
        "data": [
            {"kind": "function", "source": "def broken(:\n    return", "closure": 1,
             "prototype": 2, "refs": {}, "descriptions": {}},
            {"kind": "object", "prototype": 3, "refs": {}, "descriptions": {}},
            {"kind": "builtin", "name": "types.FunctionType"},
            {"kind": "builtin", "name": "dict"},
        ],
    }
    with pytest.raises(SyntaxError):
        closure_graph.deserialize(graph)


def test_hand_written_function_record():
    graph = {
        "root": 0,
        "data": [
            {"kind": "function", "source": "lambda v: v * k", "closure": 1,
             "prototype": 3, "refs": {}, "descriptions": {}},
            {"kind": "object", "prototype": 4, "refs": {"k": 2}, "descriptions": {}},
            {"kind": "primitive", "value": 6},
            {"kind": "builtin", "name": "types.FunctionType"},
            {"kind": "builtin", "name": "dict"},
        ],
    }
    fn = closure_graph.deserialize(graph)
    assert fn(7) == 42
    assert fn.__module__ == "__closure_graph__"


def test_synthesized_code_is_cached():
    first = synthesize_code("def f(a):\n    return a + b", ["b"])
    second = synthesize_code("def f(a):\n    return a + b", ["b"])
    assert first is second
    assert first.co_freevars == ("b",)
    assert first.co_filename.startswith("<closure-graph-")


def test_captured_names_must_be_identifiers():
    with pytest.raises(DeserializationError):
        synthesize_code("lambda: 1", ["not valid"])


# ----------------------------- copy protocol --------------------------
@pytest.mark.parametrize(
    "value",
    [
        b"raw",
        b"\x00\xff",
        bytearray(b"ab"),
        3 + 4j,
        collections.deque([1, [2, 3]]),
        datetime.timedelta(days=1, seconds=5),
        datetime.time(12, 30),
        datetime.time(1, tzinfo=datetime.timezone.utc),
        decimal.Decimal("1.5"),
        range(2, 9, 3),
    ],
)
def test_values_rebuilt_by_the_copy_protocol(value):
    out = closure_graph.loads(closure_graph.dumps(value))
    assert out == value
    assert type(out) is type(value)


def test_bytes_record_carries_a_factory():
    graph = closure_graph.serialize(b"ab")
    record = graph.to_json()["data"][0]
    assert graph.to_json()["data"][record["factory"]] == {"kind": "builtin", "name": "bytes"}
    assert graph.root == b"ab"


def test_deque_keeps_maxlen_and_self_reference():
    bounded = closure_graph.loads(closure_graph.dumps(collections.deque([1, 2], maxlen=3)))
    assert bounded.maxlen == 3
    assert list(bounded) == [1, 2]

    loop = collections.deque()
    loop.append(loop)
    out = closure_graph.loads(closure_graph.dumps(loop))
    assert out[0] is out


def test_value_without_replayable_state():
    with pytest.raises(UnsupportedValueError):
        closure_graph.serialize(i for i in range(3))


def test_function_without_source():
    namespace = {}
    exec("def made_up():\n    return 1\n", namespace)
    with pytest.raises(SourceUnavailableError):
        closure_graph.serialize(namespace["made_up"])


def test_snapshot_accessor_must_return_a_mapping():
    def f():
        return None

    f.__closure_snapshot__ = lambda: ["not", "a", "mapping"]
    with pytest.raises(closure_graph.SerializationError):
        closure_graph.serialize(f)


# ----------------------------- literals -------------------------------
@pytest.mark.parametrize(
    "value",
    [
        datetime.date(2024, 1, 2),
        datetime.datetime(2024, 5, 17, 13, 45, 30),
        datetime.datetime(2024, 5, 17, 13, 45, 30, 123456, tzinfo=datetime.timezone.utc),
    ],
)
def test_timestamps_roundtrip(value):
    out = closure_graph.loads(closure_graph.dumps(value))
    assert out == value
    assert type(out) is type(value)
    assert out.isoformat() == value.isoformat()


@pytest.mark.parametrize(
    "pattern",
    [
        re.compile(r"\d+"),
        re.compile(r"a/b/c", re.IGNORECASE | re.MULTILINE),
        re.compile(r"^x . y$", re.VERBOSE | re.DOTALL | re.ASCII),
    ],
)
def test_patterns_roundtrip(pattern):
    graph = closure_graph.serialize(pattern)
    out = closure_graph.loads(graph.dumps())
    assert out.pattern == pattern.pattern
    assert out.flags == pattern.flags
    assert format_pattern(out) == graph.to_json()["data"][0]["value"]


def test_pattern_literal_text():
    assert format_pattern(re.compile("a/b", re.I | re.M)) == "/a/b/im"
    assert parse_pattern("/a/b/im").pattern == "a/b"
    assert parse_pattern("/a/b/im").search("xA/B")


@pytest.mark.parametrize("text", ["a/b/", "/", "/x/q", "/(/"])
def test_bad_pattern_literals(text):
    with pytest.raises(DeserializationError):
        parse_pattern(text)


def test_bad_timestamp():
    with pytest.raises(DeserializationError):
        parse_timestamp("yesterday")


# ----------------------------- JSON boundary --------------------------
def test_non_finite_floats_survive_the_text_boundary():
    text = closure_graph.dumps([float("inf"), float("-inf"), float("nan"), 1.5])
    assert "Infinity" in text and "NaN" in text
    out = closure_graph.loads(text)
    assert out[0] == math.inf and out[1] == -math.inf
    assert math.isnan(out[2])
    assert out[3] == 1.5


def test_dumps_returns_text_and_loads_accepts_bytes():
    text = closure_graph.dumps({"n": [1.5, None, True]})
    assert isinstance(text, str)
    assert closure_graph.loads(text.encode()) == {"n": [1.5, None, True]}


def test_indented_dumps():
    graph = closure_graph.serialize([1])
    assert "\n" in graph.dumps(indent=True)
    assert "\n" not in graph.dumps(indent=False)


def test_primitive_subclasses_are_not_primitives():
    class Tagged(int):
        pass

    graph = closure_graph.serialize(Tagged(3))
    assert not isinstance(graph.data[0], PrimitiveRecord)
    out = graph.root
    assert out == 3 and type(out).__name__ == "Tagged"


# ----------------------------- configuration --------------------------
@pytest.mark.parametrize(
    "raw, expected",
    [(None, True), ("1", True), ("yes", True), ("0", False), ("off", False)],
)
def test_env_flag(monkeypatch, raw, expected):
    if raw is None:
        monkeypatch.delenv("CLOSURE_GRAPH_TEST_FLAG", raising=False)
    else:
        monkeypatch.setenv("CLOSURE_GRAPH_TEST_FLAG", raw)
    assert _env_flag("CLOSURE_GRAPH_TEST_FLAG", True) is expected

"""
tests/test_builtins.py
──────────────────────
Registry references: well-known runtime values travel by name.
"""
import collections
import json
import math
import textwrap

import pytest

import closure_graph
from closure_graph import BuiltinRecord, Registry, UnknownBuiltinError, default_registry
from closure_graph.registry import is_library_module

FACTOR = 3


def triple(v):
    return v * FACTOR


def test_builtin_function_encodes_by_name():
    graph = closure_graph.serialize(int)
    assert graph.to_json() == {"root": 0, "data": [{"kind": "builtin", "name": "int"}]}
    assert graph.root is int


@pytest.mark.parametrize(
    "value, name",
    [
        (len, "len"),
        (math.sqrt, "math.sqrt"),
        (json.dumps, "json.dumps"),
        (math, "math"),
        (collections.OrderedDict, "collections.OrderedDict"),
    ],
)
def test_default_registry_names(value, name):
    registry = default_registry()
    assert registry.name_of(value) == name
    assert registry.value_of(name) is value
    assert closure_graph.loads(closure_graph.dumps([value])) == [value]


def test_primitives_are_never_registered():
    registry = Registry(import_globals=False)
    assert registry.register("answer", 42) is False
    assert "answer" not in registry
    assert len(registry) == 0


def test_custom_registry_sentinel():
    registry = default_registry().copy()
    sentinel = object()
    registry.register("app.sentinel", sentinel)

    graph = closure_graph.serialize({"marker": sentinel}, registry=registry)
    assert BuiltinRecord(name="app.sentinel") in graph.data
    assert graph.decode(registry)["marker"] is sentinel
    assert "app.sentinel" not in default_registry()


def test_unknown_builtin_is_rejected():
    text = '{"root": 0, "data": [{"kind": "builtin", "name": "app.missing"}]}'
    with pytest.raises(UnknownBuiltinError) as err:
        closure_graph.loads(text)
    assert err.value.name == "app.missing"
    assert "app.missing" in str(err.value)


def test_value_from_a_custom_registry_is_unknown_elsewhere():
    registry = default_registry().copy()
    registry.register("app.token", object())
    text = closure_graph.dumps(registry.value_of("app.token"), registry=registry)
    with pytest.raises(UnknownBuiltinError):
        closure_graph.loads(text)


def test_rebinding_a_name_raises():
    registry = Registry()
    first = object()
    registry.register("app.thing", first)
    registry.register("app.thing", first)
    with pytest.raises(ValueError):
        registry.register("app.thing", object())


def test_first_registered_name_wins():
    registry = Registry(import_globals=False)
    value = object()
    registry.register("a.first", value)
    registry.register("b.second", value)
    assert registry.name_of(value) == "a.first"
    assert registry.value_of("b.second") is value


def test_import_names_for_unregistered_globals():
    registry = Registry()
    assert registry.name_of(json) == "module:json"
    assert registry.name_of(collections.OrderedDict) == "collections:OrderedDict"
    assert registry.value_of("module:json") is json
    assert registry.value_of("collections:OrderedDict") is collections.OrderedDict
    assert registry.value_of("no_such_module_xyz:thing") is None
    assert registry.value_of("collections:NoSuchThing") is None


def test_local_values_have_no_import_name():
    def local():
        return None

    registry = Registry()
    assert registry.name_of(local) is None
    assert registry.name_of(object()) is None


def test_import_names_can_be_turned_off():
    registry = Registry(import_globals=False)
    assert registry.name_of(json) is None
    assert registry.value_of("module:json") is None


def test_module_level_function_travels_as_source():
    graph = closure_graph.serialize(triple)
    record = graph.to_json()["data"][graph.root_index]
    assert record["kind"] == "function"
    assert record["source"] == "def triple(v):\n    return v * FACTOR"
    out = graph.root
    assert out is not triple
    assert out(2) == 6


def test_function_import_names_are_limited_to_libraries():
    registry = Registry()
    assert registry.name_of(textwrap.dedent) == "textwrap:dedent"
    assert registry.name_of(triple) is None

    package = triple.__module__.partition(".")[0]
    opted_in = Registry(packages=[package])
    assert opted_in.name_of(triple) == f"{triple.__module__}:triple"
    assert opted_in.copy().packages == frozenset([package])


@pytest.mark.parametrize(
    "module, expected",
    [("json", True), ("json.decoder", True), ("os.path", True), ("closure_graph", False)],
)
def test_is_library_module(module, expected):
    assert is_library_module(module) is expected
    assert is_library_module(module, frozenset(["closure_graph"])) is True


def test_register_module_prefixes_public_members():
    registry = Registry(import_globals=False)
    count = registry.register_module(math, prefix="m")
    assert count > 0
    assert registry.value_of("m") is math
    assert registry.name_of(math.floor) == "m.floor"
    assert "m._private" not in registry

"""
tests/test_cycles.py
────────────────────
Identity sharing and self-reference: every distinct identity is one record,
and a value that reaches itself decodes to a value that reaches itself.
"""
import closure_graph


class Node:
    def __init__(self, name):
        self.name = name
        self.children = []
        self.parent = None


def _roundtrip(value):
    return closure_graph.loads(closure_graph.dumps(value))


# ----------------------------------------------------------------------
def test_shared_identity_is_preserved():
    shared = {"k": 1}
    out = _roundtrip([shared, shared, {"k": 1}])
    assert out[0] is out[1]
    assert out[0] is not out[2]
    assert out[0] == out[2]


def test_list_containing_itself():
    lst = [1, 2]
    lst.append(lst)
    out = _roundtrip(lst)
    assert out[2] is out
    assert out[:2] == [1, 2]


def test_dict_containing_itself():
    d = {"name": "loop"}
    d["self"] = d
    out = _roundtrip(d)
    assert out["self"] is out
    assert out["name"] == "loop"


def test_object_attribute_pointing_back():
    root = Node("root")
    leaf = Node("leaf")
    leaf.parent = root
    root.children.append(leaf)
    root.me = root
    out = _roundtrip(root)
    assert type(out) is Node
    assert out.me is out
    assert out.children[0].parent is out
    assert out.children[0].name == "leaf"


def test_tuple_reached_through_a_list_cycle():
    lst = []
    tup = (lst, "tail")
    lst.append(tup)
    out = _roundtrip(tup)
    assert type(out) is tuple
    assert out[0][0] is out
    assert out[1] == "tail"


def test_set_holding_an_object_that_holds_the_set():
    holder = Node("holder")
    bag = {holder}
    holder.children = bag
    out = _roundtrip(bag)
    (item,) = out
    assert item.children is out


def test_cycle_record_count_matches_identities():
    a, b = [], []
    a.append(b)
    b.append(a)
    graph = closure_graph.serialize(a)
    assert len(graph) == 2
    assert graph.to_json()["data"] == [
        {"kind": "array", "refs": [1]},
        {"kind": "array", "refs": [0]},
    ]

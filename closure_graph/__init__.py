"""closure-graph - serialize closures and cyclic object graphs to flat JSON."""

__version__ = "0.1.0"

from .errors import (
    ClosureGraphError,
    SerializationError,
    UnsupportedValueError,
    SourceUnavailableError,
    DeserializationError,
    UnknownBuiltinError,
    UnrecognizedKindError,
)
from .models import (
    AttributeDescriptor,
    ContentRecord,
    PrimitiveRecord,
    ArrayRecord,
    ObjectRecord,
    FunctionRecord,
    BuiltinRecord,
    DateRecord,
    RegexRecord,
)
from .registry import Registry, default_registry
from .encoder import GraphEncoder
from .decoder import GraphDecoder
from .graph import Graph, serialize, deserialize, dumps, loads

__all__ = [
    "ClosureGraphError",
    "SerializationError",
    "UnsupportedValueError",
    "SourceUnavailableError",
    "DeserializationError",
    "UnknownBuiltinError",
    "UnrecognizedKindError",
    "AttributeDescriptor",
    "ContentRecord",
    "PrimitiveRecord",
    "ArrayRecord",
    "ObjectRecord",
    "FunctionRecord",
    "BuiltinRecord",
    "DateRecord",
    "RegexRecord",
    "Registry",
    "default_registry",
    "GraphEncoder",
    "GraphDecoder",
    "Graph",
    "serialize",
    "deserialize",
    "dumps",
    "loads",
]

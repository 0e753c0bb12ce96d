"""Exception hierarchy shared by the encoder and the decoder."""


class ClosureGraphError(RuntimeError):
    """Base class of every error raised by closure_graph."""


# ---------------------------------------------------------------------------
# encode side
# ---------------------------------------------------------------------------
class SerializationError(ClosureGraphError):
    """Raised when a value cannot be turned into a graph."""


class UnsupportedValueError(SerializationError):
    def __init__(self, value):
        super().__init__(
            f"Cannot serialize value of type '{type(value).__qualname__}': "
            "it carries no attribute state that could be replayed"
        )
        self.value = value


class SourceUnavailableError(SerializationError):
    def __init__(self, func, reason: str = ""):
        name = getattr(func, "__qualname__", repr(func))
        msg = f"Cannot recover the source of '{name}'"
        super().__init__(f"{msg}: {reason}" if reason else msg)
        self.func = func


# ---------------------------------------------------------------------------
# decode side
# ---------------------------------------------------------------------------
class DeserializationError(ClosureGraphError):
    """Raised when a graph cannot be decoded."""


class UnknownBuiltinError(DeserializationError):
    def __init__(self, name):
        super().__init__(f"Cannot deserialize unknown builtin '{name}'.")
        self.name = name


class UnrecognizedKindError(DeserializationError):
    def __init__(self, kind):
        super().__init__(f"Cannot deserialize unrecognized content kind '{kind}'.")
        self.kind = kind

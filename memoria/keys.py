from collections.abc import Hashable, Mapping, Set
from typing import Any

CacheKey = tuple[Hashable, ...]

_SCALARS = (type(None), bool, int, float, complex, str, bytes)
_KWARGS = ("**",)


class IdentityKey:
    """Key part for a value that has no structural encoding.

    Compares by identity and holds a reference to the value so its id cannot
    be handed to another object while the key is alive.
    """

    __slots__ = ("value",)

    def __init__(self, value: Any):
        self.value = value

    def __eq__(self, other: object) -> bool:
        return isinstance(other, IdentityKey) and other.value is self.value

    def __hash__(self) -> int:
        return id(self.value)

    def __repr__(self) -> str:
        return f"IdentityKey({_tag(type(self.value))} at {id(self.value):#x})"


def derive_key(args: tuple, kwargs: Mapping[str, Any] | None = None) -> CacheKey:
    """Build a hashable, type-tagged key from a call's arguments.

    Positional order is significant. Keyword arguments are sorted by name, so
    the order they were passed in does not matter, but ``f(1)`` and ``f(x=1)``
    get different keys.
    """
    key = tuple(_encode_argument(arg) for arg in args)
    if kwargs:
        key += _KWARGS + tuple(
            (name, _encode_argument(value))
            for name, value in sorted(kwargs.items(), key=lambda item: item[0])
        )
    return key


def _encode_argument(value: Any) -> Hashable:
    try:
        return _encode(value, set())
    except RecursionError:
        # nested too deeply to walk
        return IdentityKey(value)


def _tag(kind: type) -> str:
    if kind.__module__ == "builtins":
        return kind.__qualname__
    return f"{kind.__module__}.{kind.__qualname__}"


def _encode(value: Any, active: set[int]) -> Hashable:
    kind = type(value)
    if kind in _SCALARS:
        return (kind.__name__, value)
    if kind is bytearray:
        return ("bytearray", bytes(value))
    # a container reached again while it is still being encoded
    if id(value) in active:
        return IdentityKey(value)
    if isinstance(value, (list, tuple, Mapping, Set)):
        active.add(id(value))
        try:
            if isinstance(value, Mapping):
                items = frozenset(
                    (_encode(k, active), _encode(v, active)) for k, v in value.items()
                )
            elif isinstance(value, Set):
                items = frozenset(_encode(item, active) for item in value)
            else:
                items = tuple(_encode(item, active) for item in value)
        finally:
            active.discard(id(value))
        return (_tag(kind), items)
    try:
        hash(value)
    except Exception:  # unhashable, or a __hash__ that raises
        return IdentityKey(value)
    return (_tag(kind), value)

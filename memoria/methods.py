from collections.abc import Callable, Mapping
from functools import partial, update_wrapper
from typing import Any

from memoria.cache import MemoizedFunction
from memoria.options import MemoizeOptions


class MemoizedMethod:
    """Descriptor that gives every instance its own memoized copy of a method.

    The receiver is bound with ``functools.partial`` and is not part of the
    cache key, so only the explicit arguments select an entry. The bound
    wrapper lives in the instance ``__dict__`` and goes away with the
    instance.
    """

    def __init__(self, func: Callable, options: MemoizeOptions):
        update_wrapper(self, func)
        self.func = func
        self.options = options
        self.attrname: str | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        if self.attrname is None:
            self.attrname = name
        elif name != self.attrname:
            raise TypeError(
                "Cannot assign the same memoized method to two different names "
                f"({self.attrname!r} and {name!r})."
            )

    def __get__(self, instance: Any, owner: type | None = None):
        if instance is None:
            return self
        if self.attrname is None:
            raise TypeError(
                "Cannot use memoized method instance without calling __set_name__ on it."
            )
        try:
            instance_dict = instance.__dict__
        except AttributeError:
            raise TypeError(
                f"No '__dict__' attribute on {type(instance).__name__!r} instance "
                f"to hold the cache of memoized method {self.attrname!r}."
            ) from None
        slot = f"__memoized_{self.attrname}"
        bound = instance_dict.get(slot)
        # a copied instance carries the wrapper of the instance it was copied from
        if bound is None or bound.__self__ is not instance:
            bound = MemoizedFunction(partial(self.func, instance), self.options)
            update_wrapper(bound, self.func)
            bound.__self__ = instance
            bound.__func__ = self.func
            instance_dict[slot] = bound
        return bound

    def __call__(self, instance: Any, /, *args, **kwargs):
        return self.__get__(instance, type(instance))(*args, **kwargs)

    def __repr__(self) -> str:
        return f"<memoized method {self.func.__qualname__}>"


def memoize_method(
    options: MemoizeOptions | Mapping[str, Any] | Callable | None = None,
):
    """Memoize a method per instance, keyed on its arguments only.

    Usable bare (``@memoize_method``) or with options
    (``@memoize_method({"cache_expiration": ...})``).
    """
    if callable(options):
        return MemoizedMethod(options, MemoizeOptions())
    parsed = MemoizeOptions.parse(options)

    def decorator(func: Callable) -> MemoizedMethod:
        return MemoizedMethod(func, parsed)

    return decorator

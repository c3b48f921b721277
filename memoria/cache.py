import asyncio
import inspect
from collections.abc import Callable, Hashable, Mapping
from dataclasses import dataclass
from functools import partial, update_wrapper
from typing import Any

from loguru import logger

from memoria.errors import ExpirationPolicyError
from memoria.expiration import PromiseExpiration, RelativeExpiration, Watcher
from memoria.keys import derive_key
from memoria.options import MemoizeOptions


@dataclass(eq=False)
class CacheEntry:
    key: Hashable
    value: Any
    watcher: Watcher | None = None

    def is_live(self) -> bool:
        return self.watcher is None or not self.watcher.is_expired()


class Cache:
    """Entries of one memoized callable, keyed by derived call keys.

    Expiry is measured from when an entry was stored; reading an entry never
    extends it.
    """

    def __init__(self):
        self.store: dict[Hashable, CacheEntry] = {}

    def get(self, key: Hashable) -> tuple[Any, bool]:
        entry = self.store.get(key)
        if entry is None:
            return None, False
        if entry.is_live():
            return entry.value, True
        self.delete(key, entry)
        return None, False

    def set(
        self,
        key: Hashable,
        value: Any,
        expiration: RelativeExpiration | PromiseExpiration | None = None,
    ) -> CacheEntry:
        entry = CacheEntry(key, value)
        self.delete(key)
        self.store[key] = entry
        if expiration is not None:
            try:
                entry.watcher = expiration.arm(partial(self._expire, key, entry))
            except ExpirationPolicyError as exc:
                logger.opt(exception=exc).warning(
                    f"Could not arm {expiration.type} expiration, entry will not expire"
                )
        return entry

    def delete(self, key: Hashable, entry: CacheEntry | None = None) -> bool:
        """Remove ``key``. With ``entry``, only while ``key`` still maps to it."""
        current = self.store.get(key)
        if current is None or (entry is not None and current is not entry):
            return False
        del self.store[key]
        if current.watcher is not None:
            current.watcher.cancel()
        return True

    def clear(self) -> None:
        entries = list(self.store.values())
        self.store.clear()
        for entry in entries:
            if entry.watcher is not None:
                entry.watcher.cancel()

    def _expire(self, key: Hashable, entry: CacheEntry) -> None:
        if self.delete(key, entry):
            logger.debug("Cache entry expired")

    def __len__(self) -> int:
        return len(self.store)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key)[1]


class MemoizedFunction:
    """Callable returned by ``wrap``; owns a private ``Cache``."""

    def __init__(self, func: Callable, options: MemoizeOptions | None = None):
        update_wrapper(self, func)
        self.func = func
        self.options = options if options is not None else MemoizeOptions()
        self.cache = Cache()

    def __call__(self, *args, **kwargs):
        key = derive_key(args, kwargs)
        value, hit = self.cache.get(key)
        if hit:
            return value
        logger.debug(f"Cache miss for {self._name}")
        result = self.func(*args, **kwargs)
        return self._remember(key, result)

    def _remember(self, key: Hashable, result: Any) -> Any:
        if inspect.iscoroutine(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(
                    f"{self._name} returned a coroutine outside of a running "
                    "event loop, result not cached"
                )
                return result
            # a coroutine can only be awaited once, a task can be shared
            result = loop.create_task(result)
        entry = self.cache.set(key, result, self.options.cache_expiration)
        if asyncio.isfuture(result):
            result.add_done_callback(partial(self._settled, key, entry))
        return result

    def _settled(self, key: Hashable, entry: CacheEntry, future: asyncio.Future):
        if future.cancelled() or future.exception() is not None:
            if self.cache.delete(key, entry):
                logger.debug(f"Dropped failed result of {self._name}")

    def invalidate(self, *args, **kwargs) -> bool:
        """Forget the result cached for these arguments."""
        return self.cache.delete(derive_key(args, kwargs))

    def cache_clear(self) -> None:
        self.cache.clear()

    @property
    def _name(self) -> str:
        return getattr(self, "__qualname__", None) or repr(self.func)

    def __repr__(self) -> str:
        return f"<memoized {self._name}>"


class Memoize:
    def __init__(self, options: MemoizeOptions | Mapping[str, Any] | None = None):
        self.options = MemoizeOptions.parse(options)

    def __call__(self, func: Callable) -> MemoizedFunction:
        return MemoizedFunction(func, self.options)


def wrap(
    fn: Callable, options: MemoizeOptions | Mapping[str, Any] | None = None
) -> MemoizedFunction:
    """Memoize ``fn`` with a cache of its own."""
    return Memoize(options)(fn)

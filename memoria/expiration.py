import asyncio
import inspect
import math
import time
from collections.abc import Awaitable, Callable
from datetime import timedelta
from numbers import Real
from typing import Annotated, Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from memoria.errors import ExpirationPolicyError


class Watcher:
    """Armed expiration for a single cache entry."""

    def is_expired(self) -> bool:
        return False

    def cancel(self) -> None:
        pass


class TimerWatcher(Watcher):
    def __init__(
        self, deadline: float | None, handle: asyncio.TimerHandle | None = None
    ):
        self.deadline = deadline
        self.handle = handle

    def is_expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()


class SignalWatcher(Watcher):
    """Calls ``on_expire`` once ``signal`` resolves.

    A signal that fails or is cancelled leaves the entry in place. When
    ``owned`` is set the signal is a task created for this watcher and is
    cancelled along with it.
    """

    def __init__(
        self,
        signal: asyncio.Future,
        on_expire: Callable[[], None],
        owned: bool = False,
    ):
        self.signal = signal
        self.on_expire = on_expire
        self.owned = owned
        signal.add_done_callback(self._settled)

    def _settled(self, signal: asyncio.Future) -> None:
        if signal.cancelled():
            logger.warning("Expiration signal was cancelled, keeping cached entry")
            return
        if (exc := signal.exception()) is not None:
            logger.opt(exception=exc).warning(
                "Expiration signal failed, keeping cached entry"
            )
            return
        self.on_expire()

    def cancel(self) -> None:
        self.signal.remove_done_callback(self._settled)
        if self.owned:
            self.signal.cancel()


class RelativeExpiration(BaseModel):
    """Expire an entry some seconds, or a ``timedelta``, after it was created.

    ``evaluate`` is sampled again for every new entry.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["relative"] = "relative"
    evaluate: Callable[[], float | timedelta]

    def arm(self, on_expire: Callable[[], None]) -> Watcher:
        try:
            delay = self.evaluate()
        except Exception as exc:
            raise ExpirationPolicyError("relative expiration evaluator raised") from exc
        if isinstance(delay, timedelta):
            delay = delay.total_seconds()
        if isinstance(delay, bool) or not isinstance(delay, Real):
            raise ExpirationPolicyError(
                f"relative expiration evaluator returned {delay!r}, expected seconds"
            )
        try:
            delay = float(delay)
        except (OverflowError, ValueError) as exc:
            raise ExpirationPolicyError(
                f"relative expiration delay {delay!r} is not representable in seconds"
            ) from exc
        if math.isnan(delay):
            raise ExpirationPolicyError("relative expiration evaluator returned NaN")
        if math.isinf(delay):
            return TimerWatcher(None)
        deadline = time.monotonic() + delay
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop to schedule on, the deadline is checked on lookup instead
            return TimerWatcher(deadline)
        return TimerWatcher(deadline, loop.call_later(delay, on_expire))


class PromiseExpiration(BaseModel):
    """Expire an entry when the awaitable returned by ``evaluate`` resolves.

    ``evaluate`` is called for every new entry and must hand back a fresh
    awaitable each time. An awaitable that never settles keeps the entry
    cached for good.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["promise-resolution"] = "promise-resolution"
    evaluate: Callable[[], Awaitable[Any]]

    def arm(self, on_expire: Callable[[], None]) -> Watcher:
        try:
            signal = self.evaluate()
        except Exception as exc:
            raise ExpirationPolicyError(
                "promise-resolution expiration evaluator raised"
            ) from exc
        if asyncio.isfuture(signal):
            return SignalWatcher(signal, on_expire)
        if not inspect.isawaitable(signal):
            raise ExpirationPolicyError(
                f"promise-resolution expiration evaluator returned {signal!r}, "
                "expected an awaitable"
            )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            if inspect.iscoroutine(signal):
                signal.close()
            raise ExpirationPolicyError(
                "waiting on an expiration signal needs a running event loop"
            ) from exc
        return SignalWatcher(asyncio.ensure_future(signal, loop=loop), on_expire, True)


CacheExpiration = Annotated[
    RelativeExpiration | PromiseExpiration, Field(discriminator="type")
]

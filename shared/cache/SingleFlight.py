"""At most one in-flight computation per key."""

import asyncio
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Registry mapping key -> shared future.

    The first caller for a key becomes the owner and runs the computation.
    Concurrent callers for the same key await the owner's future and receive
    the same result or exception. If the owner is cancelled, one waiter takes
    over and computes the value itself.
    """

    def __init__(self) -> None:
        self._inflight: dict[Hashable, asyncio.Future] = {}

    def is_inflight(self, key: Hashable) -> bool:
        return key in self._inflight

    def _claim(self, key: Hashable) -> asyncio.Future | None:
        """Returns None when the caller now owns ``key``, otherwise the owner's future."""
        existing = self._inflight.get(key)
        if existing is not None:
            return existing
        self._inflight[key] = asyncio.get_running_loop().create_future()
        return None

    def _release(self, key: Hashable, fut: asyncio.Future) -> None:
        if self._inflight.get(key) is fut:
            del self._inflight[key]

    def _settle(self, fut: asyncio.Future, result: T | None = None, error: BaseException | None = None) -> None:
        if fut.done():
            return
        if isinstance(error, asyncio.CancelledError):
            fut.cancel()
        elif error is not None:
            fut.set_exception(error)
            # waiters may not exist; mark the exception as retrieved
            fut.exception()
        else:
            fut.set_result(result)

    async def _wait(self, fut: asyncio.Future) -> tuple[bool, T | None]:
        """Waits for another owner. Returns (False, None) if the owner was cancelled."""
        try:
            return True, await asyncio.shield(fut)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if fut.cancelled() and current is not None and not current.cancelling():
                return False, None
            raise

    async def do(self, key: Hashable, compute: Callable[[], Awaitable[T]]) -> T:
        """
        Runs ``compute`` for ``key`` unless a computation for it is already in flight.

        Args:
            key: Lookup key.
            compute: Zero-argument coroutine factory, only called by the owner.

        Returns:
            The computed (or shared) value.
        """
        while True:
            existing = self._claim(key)
            if existing is None:
                fut = self._inflight[key]
                try:
                    result = await compute()
                except BaseException as e:
                    self._settle(fut, error=e)
                    raise
                else:
                    self._settle(fut, result=result)
                    return result
                finally:
                    self._release(key, fut)
            completed, result = await self._wait(existing)
            if completed:
                return result

    async def do_many(
        self,
        keys: list[Hashable],
        compute: Callable[[list[Hashable]], Awaitable[dict[Hashable, T]]],
    ) -> dict[Hashable, T]:
        """
        Batch variant of ``do``.

        The caller owns every key not already in flight and computes them in a
        single ``compute(owned_keys)`` call; keys owned elsewhere are awaited.
        ``compute`` must return a value for every key it is given.
        """
        results: dict[Hashable, T] = {}
        pending = list(dict.fromkeys(keys))
        while pending:
            owned: dict[Hashable, asyncio.Future] = {}
            waiting: dict[Hashable, asyncio.Future] = {}
            for key in pending:
                existing = self._claim(key)
                if existing is None:
                    owned[key] = self._inflight[key]
                else:
                    waiting[key] = existing
            pending = []

            if owned:
                try:
                    computed = await compute(list(owned))
                    missing = [k for k in owned if k not in computed]
                    if missing:
                        raise KeyError(f"Computation returned no value for {len(missing)} key(s).")
                except BaseException as e:
                    for key, fut in owned.items():
                        self._settle(fut, error=e)
                        self._release(key, fut)
                    raise
                for key, fut in owned.items():
                    self._settle(fut, result=computed[key])
                    self._release(key, fut)
                    results[key] = computed[key]

            for key, fut in waiting.items():
                completed, result = await self._wait(fut)
                if completed:
                    results[key] = result
                else:
                    pending.append(key)
        return results

from concurrent.futures import Executor
from functools import partial
from typing import Any
from typing import Callable
from typing import Generic
from typing import TypeVar

import asyncio
import threading

T = TypeVar("T")


def run_blocking(
    loop: asyncio.AbstractEventLoop,
    pool: Executor,
    func: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> "asyncio.Future[T]":
    """
    Schedule `func` on `pool` right away and hand back a future bound to
    `loop`.
    """
    return loop.run_in_executor(pool, partial(func, *args, **kwargs))


def failed_future(loop: asyncio.AbstractEventLoop, exc: BaseException) -> asyncio.Future:
    fut = loop.create_future()
    fut.set_exception(exc)
    return fut


class Promise(Generic[T]):
    """
    Single assignment result cell that can be completed from any thread.

    The first completion wins: every later `success`/`failure` call is a no-op
    and returns False. The future is always resolved on its own loop.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._future: asyncio.Future = loop.create_future()
        self._lock = threading.Lock()
        self._completed = False

    @property
    def future(self) -> "asyncio.Future[T]":
        return self._future

    @property
    def completed(self) -> bool:
        return self._completed

    def _claim(self) -> bool:
        with self._lock:
            if self._completed:
                return False
            self._completed = True
            return True

    def success(self, value: T) -> bool:
        if not self._claim():
            return False
        self._resolve(self._set_result, value)
        return True

    def failure(self, exc: BaseException) -> bool:
        if not self._claim():
            return False
        self._resolve(self._set_exception, exc)
        return True

    def _resolve(self, setter: Callable[[Any], None], value: Any) -> None:
        if self._in_loop_thread():
            setter(value)
        else:
            self._loop.call_soon_threadsafe(setter, value)

    def _in_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _set_result(self, value: Any) -> None:
        # the caller may have cancelled the future in the meantime
        if not self._future.done():
            self._future.set_result(value)

    def _set_exception(self, exc: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(exc)

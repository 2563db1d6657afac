import asyncio
from typing import Callable, Optional


class InactivityWatchdog:
    """
    One timer per session. reset() on every inbound chunk; if the timer runs
    out, `on_expire` is called once. After cancel() the callback is dead even
    if the loop already had the timer handle queued.
    """

    def __init__(self, timeout_s: float, on_expire: Callable[[], None],
                 loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.timeout_s = timeout_s
        self.on_expire = on_expire
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        if self._cancelled:
            return
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout_s, self._fire)

    def reset(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.start()

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._handle = None
        self._cancelled = True
        self.on_expire()

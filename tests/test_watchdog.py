from __future__ import annotations

import asyncio

from tfsp.watchdog import InactivityWatchdog


def test_fires_once_after_timeout():
    fired = []

    async def main():
        wd = InactivityWatchdog(0.05, lambda: fired.append(1))
        wd.start()
        await asyncio.sleep(0.2)
        wd.reset()  # no-op after expiry
        await asyncio.sleep(0.1)

    asyncio.run(main())
    assert fired == [1]


def test_reset_postpones():
    fired = []

    async def main():
        wd = InactivityWatchdog(0.15, lambda: fired.append(1))
        wd.start()
        for _ in range(4):
            await asyncio.sleep(0.08)
            wd.reset()
        assert fired == []
        await asyncio.sleep(0.3)

    asyncio.run(main())
    assert fired == [1]


def test_cancel_voids_callback():
    fired = []

    async def main():
        wd = InactivityWatchdog(0.05, lambda: fired.append(1))
        wd.start()
        wd.cancel()
        assert not wd.armed
        wd.reset()
        await asyncio.sleep(0.15)

    asyncio.run(main())
    assert fired == []

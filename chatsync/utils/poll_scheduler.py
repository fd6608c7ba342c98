import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set


logger = logging.getLogger(__name__)

THREAD_POLL = "thread"
CONVERSATION_POLL = "conversations"
HEARTBEAT = "heartbeat"

Tick = Callable[[], Awaitable[None]]


class RepeatingTask:
    """Run ``callback`` every ``interval`` seconds until cancelled.

    The next sleep starts only after the previous tick finished, so ticks of
    one task never overlap. Cancelling stops the schedule but lets a tick
    that already dispatched its request run to completion; the callback is
    expected to drop results that no longer apply.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Tick,
        *,
        fire_immediately: bool = False,
        orphans: Optional[Set[asyncio.Task]] = None,
    ) -> None:
        self.name = name
        self.interval = interval
        self._callback = callback
        self._fire_immediately = fire_immediately
        self._orphans = orphans if orphans is not None else set()
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"poll:{self.name}")

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        try:
            if not self._fire_immediately:
                await asyncio.sleep(self.interval)
            while True:
                tick = asyncio.ensure_future(self._invoke())
                self._orphans.add(tick)
                tick.add_done_callback(self._orphans.discard)
                await asyncio.shield(tick)
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            return

    async def _invoke(self) -> None:
        self.ticks += 1
        try:
            await self._callback()
        except Exception:
            logger.exception("%s tick failed", self.name)


class PollScheduler:

    def __init__(self) -> None:
        self._tasks: Dict[str, RepeatingTask] = {}
        self._in_flight: Set[asyncio.Task] = set()

    def arm(self, name: str, interval: float, callback: Tick, *, fire_immediately: bool = False) -> RepeatingTask:
        # always a fresh task: a re-armed timer never inherits the old target
        self.cancel(name)
        task = RepeatingTask(name, interval, callback, fire_immediately=fire_immediately, orphans=self._in_flight)
        self._tasks[name] = task
        task.start()
        return task

    def cancel(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is not None:
            task.cancel()

    def cancel_all(self) -> None:
        for name in list(self._tasks):
            self.cancel(name)

    def is_armed(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and task.running

    def get(self, name: str) -> Optional[RepeatingTask]:
        return self._tasks.get(name)

    async def drain(self) -> None:
        """Wait for ticks that were already dispatched when their timer was cancelled."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

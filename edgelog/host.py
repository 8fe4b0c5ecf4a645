"""
Host environment for log actors.

ActorNamespace keeps one live LogActor per name and wires each to its
durable storage and to the AlarmScheduler, the timer facility that fires
`LogActor.alarm()` when a stored wakeup time is reached. Alarm times are
persisted through the actor's storage, so `ActorNamespace.start()` can
re-arm them after a process restart.
"""

import asyncio
import contextlib
import functools
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path

from edgelog.actor import KEY_PENDING, AlarmService, LogActor
from edgelog.backoff import JitterSource, now_ms
from edgelog.config import ShipperConfig
from edgelog.delivery import BatchSender
from edgelog.storage import DurableStorage, FileBackend, MemoryBackend, StorageBackend

logger = logging.getLogger(__name__)

DEFAULT_ACTOR_NAME = "global"

ENV_STORAGE = "EDGELOG_STORAGE"
ENV_STATE_DIR = "EDGELOG_STATE_DIR"
ENV_DATABASE_URL = "DATABASE_URL"


class AlarmScheduler:
    """
    One asyncio timer per actor name.

    Arming a name replaces its previous timer. A timer that re-arms its own
    name while firing (a failed flush scheduling its retry) is left to finish.
    """

    def __init__(self, clock: Callable[[], int] = now_ms):
        self.clock = clock
        self._timers: dict[str, asyncio.Task] = {}

    def arm(self, name: str, at_ms: int, callback: Callable[[], Awaitable[None]]):
        self.cancel(name)
        task = asyncio.create_task(self._run(at_ms, callback), name=f"edgelog-alarm-{name}")
        self._timers[name] = task
        task.add_done_callback(lambda t: self._forget(name, t))

    def cancel(self, name: str):
        task = self._timers.pop(name, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def scheduled(self, name: str) -> bool:
        task = self._timers.get(name)
        return task is not None and not task.done()

    def _forget(self, name: str, task: asyncio.Task):
        if self._timers.get(name) is task:
            del self._timers[name]

    async def _run(self, at_ms: int, callback: Callable[[], Awaitable[None]]):
        delay = max(0, at_ms - self.clock()) / 1000
        if delay:
            await asyncio.sleep(delay)
        await callback()

    async def stop(self):
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task


class ScheduledAlarm(AlarmService):
    """Alarm slot of one actor: persisted in its storage, fired by the scheduler."""

    def __init__(self, namespace: "ActorNamespace", name: str, storage: DurableStorage):
        self.namespace = namespace
        self.name = name
        self.storage = storage

    async def set_alarm(self, at_ms: int) -> None:
        await self.storage.set_alarm(at_ms)
        self.arm(at_ms)

    def arm(self, at_ms: int):
        self.namespace.scheduler.arm(self.name, at_ms, functools.partial(self.fire, at_ms))

    async def fire(self, at_ms: int):
        """
        Run the actor's wakeup, then clear the stored alarm.

        The stored alarm outlives a crash or a failed wakeup, so a restarted
        host fires it again. An alarm re-armed during the wakeup is kept.
        """
        try:
            await self.namespace.get(self.name).alarm()
            if await self.storage.get_alarm() == at_ms:
                await self.storage.delete_alarm()
        except Exception as e:
            logger.error(f"Alarm for actor {self.name} failed: {e}", exc_info=True)


class ActorNamespace:
    """Named LogActor instances sharing one storage backend and sender."""

    def __init__(
        self,
        backend: StorageBackend,
        config: ShipperConfig,
        sender: BatchSender,
        clock: Callable[[], int] = now_ms,
        jitter_seed: int | None = None,
    ):
        self.backend = backend
        self.config = config
        self.sender = sender
        self.clock = clock
        self.jitter_seed = jitter_seed
        self.scheduler = AlarmScheduler(clock)
        self._actors: dict[str, LogActor] = {}

    def get(self, name: str = DEFAULT_ACTOR_NAME) -> LogActor:
        """Return the live instance for `name`, constructing a fresh one if needed."""
        actor = self._actors.get(name)
        if actor is None:
            storage = self.backend.storage_for(name)
            actor = LogActor(
                storage,
                ScheduledAlarm(self, name, storage),
                self.config,
                self.sender,
                name=name,
                clock=self.clock,
                jitter=JitterSource(self.jitter_seed),
            )
            self._actors[name] = actor
        return actor

    def evict(self, name: str = DEFAULT_ACTOR_NAME):
        """Drop the live instance; the next get() builds a new one from storage."""
        self._actors.pop(name, None)

    async def start(self):
        """
        Re-arm every alarm found in storage.

        An actor holding pending records without an alarm gets one that is
        due now.
        """
        alarms = await self.backend.pending_alarms()
        for name, at_ms in alarms.items():
            ScheduledAlarm(self, name, self.backend.storage_for(name)).arm(at_ms)

        orphaned = [n for n in await self.backend.actors_with_key(KEY_PENDING) if n not in alarms]
        for name in orphaned:
            await ScheduledAlarm(self, name, self.backend.storage_for(name)).set_alarm(self.clock())

        logger.info(
            f"EdgeLog namespace started, re-armed {len(alarms)} alarms, "
            f"woke {len(orphaned)} actors without one"
        )

    async def stop(self):
        await self.scheduler.stop()
        await self.sender.aclose()
        await self.backend.close()
        self._actors.clear()
        logger.info("EdgeLog namespace stopped")


async def open_backend(kind: str | None = None) -> StorageBackend:
    """
    Build the storage backend selected by EDGELOG_STORAGE.

    "memory" (default), "file" (EDGELOG_STATE_DIR, default .edgelog) or
    "postgres" (DATABASE_URL).
    """
    kind = (kind or os.getenv(ENV_STORAGE, "memory")).strip().lower()
    if kind == "memory":
        return MemoryBackend()
    if kind == "file":
        return FileBackend(Path(os.getenv(ENV_STATE_DIR, ".edgelog")))
    if kind == "postgres":
        from edgelog.postgres_storage import PostgresBackend

        database_url = os.getenv(ENV_DATABASE_URL)
        if not database_url:
            raise ValueError(f"{ENV_DATABASE_URL} is required for postgres storage")
        return await PostgresBackend.connect(database_url)
    raise ValueError(f"Unknown {ENV_STORAGE} value: {kind!r}")


async def namespace_from_env() -> ActorNamespace:
    """Namespace configured from the environment, alarms re-armed."""
    backend = await open_backend()
    namespace = ActorNamespace(backend, ShipperConfig.from_env(), BatchSender())
    await namespace.start()
    return namespace

"""
EdgeLog log actor.

Buffers records in a durable pending batch and delivers them to the
collector, either when the batch reaches its size limit or when the batch
interval wakeup fires. Retryable failures (429/403 or a failed request)
keep the batch and push the next attempt out by an exponentially growing,
jittered window.

One LogActor instance exists per live actor name. The host may drop and
re-create instances at any time; only what is in DurableStorage survives.

Usage:
    actor = LogActor(storage, alarms, ShipperConfig.from_env(), BatchSender())
    await actor.append({"ClientIP": "203.0.113.9", "EdgeResponseStatus": 200})
    await actor.flush()
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from edgelog.backoff import BackoffState, JitterSource, now_ms
from edgelog.config import ShipperConfig
from edgelog.delivery import BatchSender, DeliveryOutcome, classify_status
from edgelog.storage import DurableStorage

logger = logging.getLogger(__name__)

KEY_PENDING = "pending"
KEY_BACKOFF_MS = "backoffMs"
KEY_BACKOFF_UNTIL = "backoffUntil"

STORAGE_KEYS = (KEY_PENDING, KEY_BACKOFF_MS, KEY_BACKOFF_UNTIL)

LogRecord = Any


class AlarmService(ABC):
    """Schedules the next wakeup of one actor. A new alarm replaces the old one."""

    @abstractmethod
    async def set_alarm(self, at_ms: int) -> None: ...


@dataclass
class ActorState:
    """Everything a live actor instance holds in memory."""

    pending: list[LogRecord] = field(default_factory=list)
    backoff: BackoffState = field(default_factory=BackoffState)
    loaded: bool = False
    # Transient: never persisted, reset with every new instance
    flush_scheduled: bool = False
    flush_in_progress: bool = False


@dataclass
class ShipperStats:
    sent_count: int = 0
    failed_attempts: int = 0
    last_error: str | None = None
    last_status: int | None = None


def _as_int(value: Any) -> int:
    # bool is an int subclass but never a valid stored timestamp
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


class LogActor:
    """Batching and delivery state machine for one log stream."""

    def __init__(
        self,
        storage: DurableStorage,
        alarms: AlarmService,
        config: ShipperConfig,
        sender: BatchSender,
        name: str = "global",
        clock: Callable[[], int] = now_ms,
        jitter: JitterSource | None = None,
    ):
        self.storage = storage
        self.alarms = alarms
        self.config = config
        self.sender = sender
        self.name = name
        self.clock = clock
        self.jitter = jitter or JitterSource()

        self.state = ActorState()
        self.stats = ShipperStats()
        self._load_lock = asyncio.Lock()

    async def _load_state(self):
        """Read durable state once per instance."""
        if self.state.loaded:
            return

        async with self._load_lock:
            if self.state.loaded:
                return

            pending, backoff_ms, backoff_until = await asyncio.gather(
                self.storage.get(KEY_PENDING),
                self.storage.get(KEY_BACKOFF_MS),
                self.storage.get(KEY_BACKOFF_UNTIL),
            )
            self.state.pending = pending if isinstance(pending, list) else []
            self.state.backoff = BackoffState(_as_int(backoff_ms), _as_int(backoff_until))
            # Half-written backoff (one key without the other) counts as none
            if self.state.backoff.backoff_ms <= 0 or self.state.backoff.backoff_until <= 0:
                self.state.backoff.clear()
            self.state.loaded = True

            if self.state.pending:
                logger.info(
                    f"Actor {self.name}: restored {len(self.state.pending)} pending records"
                )

    async def _schedule(self, at_ms: int):
        self.state.flush_scheduled = True
        await self.alarms.set_alarm(at_ms)

    async def append(self, record: LogRecord) -> None:
        """
        Add a record to the pending batch.

        The batch is persisted before this returns. Reaching the size limit
        flushes immediately; otherwise a wakeup is scheduled one batch
        interval out if none is pending. Delivery failures never propagate.
        """
        await self._load_state()

        self.state.pending.append(record)
        await self.storage.put(KEY_PENDING, self.state.pending)

        config = self.config
        config.require_endpoint()

        if len(self.state.pending) >= config.batch_max_records:
            await self.flush()
            return

        if not self.state.flush_scheduled:
            # Never wake up inside an active backoff window
            wake_at = max(self.clock() + config.batch_interval_ms, self.state.backoff.backoff_until)
            await self._schedule(wake_at)

    async def alarm(self) -> None:
        """Wakeup entry point called by the host when the alarm fires."""
        self.state.flush_scheduled = False
        await self.flush()

    async def flush(self) -> None:
        """
        Attempt to deliver the pending batch.

        No-op while a backoff window is open, while another attempt is in
        flight, or when nothing is pending.
        """
        await self._load_state()

        state = self.state
        if state.backoff.holds(self.clock()):
            logger.debug(f"Actor {self.name}: flush deferred until {state.backoff.backoff_until}")
            return
        if state.flush_in_progress:
            logger.debug(f"Actor {self.name}: flush already in progress")
            return

        endpoint = self.config.require_endpoint()

        if not state.pending:
            return

        state.flush_in_progress = True
        to_send = list(state.pending)

        try:
            try:
                status = await self.sender.send(endpoint, to_send)
            except Exception as e:
                self.stats.last_error = f"{type(e).__name__}: {e}"
                await self._handle_failure(DeliveryOutcome.TRANSPORT_ERROR, len(to_send))
                return

            self.stats.last_status = status
            outcome = classify_status(status)
            if outcome is DeliveryOutcome.RETRY:
                self.stats.last_error = f"HTTP {status}"
                await self._handle_failure(outcome, len(to_send))
            else:
                if status >= 400:
                    logger.warning(
                        f"Actor {self.name}: collector answered {status}, "
                        f"dropping {len(to_send)} records"
                    )
                await self._handle_delivered(len(to_send))
        finally:
            state.flush_in_progress = False

    async def _handle_delivered(self, sent: int):
        state = self.state
        # Only the sent prefix is acknowledged; records appended while the
        # request was in flight are still undelivered and stay pending
        state.pending = state.pending[sent:]
        state.backoff.clear()
        self.stats.sent_count += sent

        if state.pending:
            await self.storage.put(KEY_PENDING, state.pending)
        else:
            await self.storage.delete(KEY_PENDING)
        await self.storage.delete(KEY_BACKOFF_MS)
        await self.storage.delete(KEY_BACKOFF_UNTIL)

        logger.info(f"Actor {self.name}: delivered {sent} records")

        if state.pending and not state.flush_scheduled:
            await self._schedule(self.clock() + self.config.batch_interval_ms)

    async def _handle_failure(self, outcome: DeliveryOutcome, attempted: int):
        """
        Keep the batch and open (or widen) the backoff window.

        The pending list was never split, so it already holds the attempted
        records followed by anything appended during the attempt.
        """
        state = self.state
        config = self.config
        self.stats.failed_attempts += 1

        backoff_until = state.backoff.extend(
            self.clock(), config.backoff_base_ms, config.backoff_max_ms, self.jitter.draw()
        )

        await self.storage.put(KEY_PENDING, state.pending)
        await self.storage.put(KEY_BACKOFF_MS, state.backoff.backoff_ms)
        await self.storage.put(KEY_BACKOFF_UNTIL, backoff_until)
        await self._schedule(backoff_until)

        logger.warning(
            f"Actor {self.name}: delivery of {attempted} records failed "
            f"({outcome.value}, {self.stats.last_error}); "
            f"retrying in {state.backoff.backoff_ms}ms, {len(state.pending)} pending"
        )

    def get_stats(self) -> dict:
        """Snapshot of the actor's counters and current state."""
        return {
            "name": self.name,
            "pending": len(self.state.pending),
            "backoff_ms": self.state.backoff.backoff_ms,
            "backoff_until": self.state.backoff.backoff_until,
            "flush_scheduled": self.state.flush_scheduled,
            "flush_in_progress": self.state.flush_in_progress,
            "sent_count": self.stats.sent_count,
            "failed_attempts": self.stats.failed_attempts,
            "last_status": self.stats.last_status,
            "last_error": self.stats.last_error,
        }

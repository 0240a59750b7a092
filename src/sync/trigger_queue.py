"""Trigger queue and scheduled service driving the sync coordinator."""

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Callable

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from src.models.config import SchedulerConfig
from src.sync.models import RetryableTask, SyncReport, TriggerMessage
from src.sync.sync_coordinator import SyncCoordinator

log = structlog.stdlib.get_logger()

QueueItem = TriggerMessage | RetryableTask

DELTA_JOB_ID = "stop_place_delta_sync"
FULL_JOB_ID = "stop_place_full_sync"


class TriggerQueue:
    """Thread-safe work queue with delayed delivery.

    Items published with a delay stay invisible to consumers until the delay has
    elapsed. Consumers take every visible item at once, so triggers that piled up
    while a cycle was running are delivered together.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._ready: deque[QueueItem] = deque()
        self._delayed: list[tuple[float, int, QueueItem]] = []
        self._sequence = itertools.count()
        self._condition = threading.Condition()

    def publish(self, item: QueueItem, delay_seconds: float | None = None) -> None:
        with self._condition:
            if delay_seconds and delay_seconds > 0:
                due = self._clock() + delay_seconds
                heapq.heappush(self._delayed, (due, next(self._sequence), item))
            else:
                self._ready.append(item)
            self._condition.notify_all()

        log.debug(
            "queue_item_published",
            item_type=type(item).__name__,
            delay_seconds=delay_seconds,
        )

    def schedule_retry(self, task: RetryableTask, delay_seconds: float) -> None:
        """Redeliver ``task`` after ``delay_seconds``."""
        self.publish(task, delay_seconds=delay_seconds)

    def drain(self) -> list[QueueItem]:
        """Remove and return every item currently visible, without blocking."""
        with self._condition:
            self._promote_due()
            items = list(self._ready)
            self._ready.clear()
            return items

    def get_batch(self, timeout: float | None = None) -> list[QueueItem]:
        """
        Wait for visible items and return all of them.

        Args:
            timeout: Maximum seconds to wait, None waits indefinitely

        Returns:
            Visible items in delivery order, empty if the timeout expired
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._condition:
            while True:
                self._promote_due()
                if self._ready:
                    items = list(self._ready)
                    self._ready.clear()
                    return items

                waits = []
                if deadline is not None:
                    waits.append(deadline - self._clock())
                if self._delayed:
                    waits.append(self._delayed[0][0] - self._clock())
                wait = min(waits) if waits else None

                if wait is not None and wait <= 0:
                    if deadline is not None and self._clock() >= deadline:
                        return []
                    continue
                self._condition.wait(wait)

    def has_delayed_tasks(self) -> bool:
        """True while a retry task is waiting for its redelivery."""
        with self._condition:
            return any(isinstance(item, RetryableTask) for _, _, item in self._delayed)

    @property
    def pending_count(self) -> int:
        with self._condition:
            return len(self._ready) + len(self._delayed)

    def _promote_due(self) -> None:
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, item = heapq.heappop(self._delayed)
            self._ready.append(item)


class SyncService:
    """Runs cron triggers and the single consumer of the trigger queue."""

    def __init__(
        self,
        coordinator: SyncCoordinator,
        queue: TriggerQueue,
        scheduler_config: SchedulerConfig,
        scheduler: BackgroundScheduler | None = None,
    ):
        """
        Initialize the service.

        Args:
            coordinator: Coordinator whose retries are scheduled on ``queue``
            queue: Trigger queue shared with the coordinator
            scheduler_config: Cron schedules, time zone, autostart and retry delay
            scheduler: Optional APScheduler instance (a background one is created if None)
        """
        self._coordinator = coordinator
        self._queue = queue
        self._config = scheduler_config
        self._scheduler = scheduler or BackgroundScheduler(timezone=scheduler_config.timezone)
        self._stop_event = threading.Event()
        self._consumer: threading.Thread | None = None

        self._scheduler.add_job(
            self.trigger,
            CronTrigger.from_crontab(scheduler_config.delta_cron, timezone=scheduler_config.timezone),
            id=DELTA_JOB_ID,
            kwargs={"full_sync": False},
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        self._scheduler.add_job(
            self.trigger,
            CronTrigger.from_crontab(scheduler_config.full_cron, timezone=scheduler_config.timezone),
            id=FULL_JOB_ID,
            kwargs={"full_sync": True},
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )

        log.info(
            "sync_service_initialized",
            delta_cron=scheduler_config.delta_cron,
            full_cron=scheduler_config.full_cron,
            timezone=scheduler_config.timezone,
            autostart=scheduler_config.autostart,
        )

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    @property
    def queue(self) -> TriggerQueue:
        return self._queue

    def run_until_idle(self, full_sync: bool = False) -> list[SyncReport]:
        """Trigger one sync and process deliveries until nothing is pending.

        Busy retries are waited for, so this returns only once the triggered
        cycle has completed. Used for one-off runs outside the cron schedule.
        """
        self.trigger(full_sync=full_sync)
        reports: list[SyncReport] = []
        while self._queue.pending_count:
            items = self._queue.get_batch()
            reports.extend(self.process_batch(items))
        return reports

    def trigger(self, full_sync: bool = False) -> None:
        """Publish a trigger message (called by the cron jobs)."""
        log.info("sync_triggered", sync_type="full" if full_sync else "delta")
        self._queue.publish(TriggerMessage(full_sync=full_sync))

    def process_batch(self, items: list[QueueItem]) -> list[SyncReport]:
        """
        Process one delivery from the queue.

        Retry tasks run first, each resuming its own step. All trigger messages in
        the delivery are coalesced into a single cycle. While a retry task is still
        outstanding the triggers are held back and republished behind it, so a newer
        window is never pushed before an older one completes.

        Args:
            items: Items drained from the queue

        Returns:
            Reports of the attempts that ran

        Raises:
            Exception: Any fatal error from the coordinator. If a retry task
                fails, the tasks and triggers after it are put back on the queue
        """
        triggers = [item for item in items if isinstance(item, TriggerMessage)]
        tasks = [item for item in items if isinstance(item, RetryableTask)]
        reports: list[SyncReport] = []

        for index, task in enumerate(tasks):
            try:
                reports.append(self._coordinator.run_task(task))
            except Exception:
                self._requeue(tasks[index + 1 :], triggers)
                raise

        if triggers:
            if self._queue.has_delayed_tasks():
                held = TriggerMessage(full_sync=any(t.full_sync for t in triggers))
                log.info(
                    "triggers_held_behind_retry",
                    trigger_count=len(triggers),
                    full_sync=held.full_sync,
                )
                self._queue.publish(held, delay_seconds=self._config.retry_delay_seconds)
            else:
                reports.append(self._coordinator.run_cycle(triggers))

        return reports

    def start(self) -> None:
        """Start the consumer thread and, if autostart is enabled, the cron triggers."""
        if self._consumer is not None:
            raise RuntimeError("SyncService already started")

        self._stop_event.clear()
        self._consumer = threading.Thread(
            target=self._consume_loop, name="stop-place-sync-consumer", daemon=True
        )
        self._consumer.start()

        if self._config.autostart:
            self._scheduler.start()
            log.info("cron_triggers_started")
        else:
            log.info("cron_triggers_not_started", reason="autostart disabled")

    def stop(self, timeout: float | None = 10.0) -> None:
        """Stop the cron triggers and wait for the running attempt to finish.

        A consumer still running after ``timeout`` stays registered, so ``start``
        refuses to launch a second one until a later ``stop`` has joined it.
        """
        self._stop_event.set()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        if self._consumer is not None:
            self._consumer.join(timeout)
            if self._consumer.is_alive():
                log.warning("sync_consumer_still_running", timeout=timeout)
                return
            self._consumer = None
        log.info("sync_service_stopped")

    def _requeue(self, tasks: list[RetryableTask], triggers: list[TriggerMessage]) -> None:
        """Put back the parts of a failed delivery that never ran."""
        for task in tasks:
            self._queue.publish(task)
        if triggers:
            self._queue.publish(TriggerMessage(full_sync=any(t.full_sync for t in triggers)))
        if tasks or triggers:
            log.warning(
                "undelivered_items_requeued",
                task_count=len(tasks),
                trigger_count=len(triggers),
            )

    def _consume_loop(self) -> None:
        log.info("sync_consumer_started")
        while not self._stop_event.is_set():
            items = self._queue.get_batch(timeout=1.0)
            if not items:
                continue
            try:
                self.process_batch(items)
            except Exception as e:
                log.error(
                    "sync_delivery_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
        log.info("sync_consumer_stopped")

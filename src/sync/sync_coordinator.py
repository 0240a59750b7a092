"""Synchronization coordinator for pushing stop place changes to the Repository."""

import threading
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

import structlog

from src.ingestion.registry_client import RegistryClient
from src.storage.repository_sink import RepositoryBusyError, RepositorySink
from src.sync.models import (
    CycleStatus,
    RetryableTask,
    SyncBatch,
    SyncMode,
    SyncReport,
    SyncWindow,
    TaskKind,
    TriggerMessage,
)
from src.sync.timestamp_tracker import WatermarkStore

log = structlog.stdlib.get_logger()

RetryScheduler = Callable[[RetryableTask, float], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncCoordinator:
    """Orchestrates synchronization attempts between the Registry and the Repository.

    At most one attempt runs at a time: every public entry point holds the
    coordinator's lease for its whole duration. The watermark is read once when a
    window is computed and written once, after the Repository accepted the batch.
    """

    def __init__(
        self,
        registry_client: RegistryClient,
        repository_sink: RepositorySink,
        watermark_store: WatermarkStore,
        schedule_retry: RetryScheduler,
        retry_delay_seconds: float = 15.0,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Initialize sync coordinator.

        Args:
            registry_client: Source of changed stop places and their versions
            repository_sink: Downstream Repository
            watermark_store: Store for the "synchronized until" timestamp
            schedule_retry: Callable redelivering a task after a delay in seconds
            retry_delay_seconds: Delay used when the Repository reports busy
            clock: Source of the current time
        """
        if retry_delay_seconds <= 0:
            raise ValueError("retry_delay_seconds must be positive")

        self._registry_client: RegistryClient = registry_client
        self._repository_sink: RepositorySink = repository_sink
        self._watermark_store: WatermarkStore = watermark_store
        self._schedule_retry: RetryScheduler = schedule_retry
        self._retry_delay_seconds: float = retry_delay_seconds
        self._clock: Callable[[], datetime] = clock
        self._lease = threading.Lock()

        log.info("sync_coordinator_initialized", retry_delay_seconds=retry_delay_seconds)

    @staticmethod
    def resolve_mode(messages: Sequence[TriggerMessage]) -> SyncMode:
        """A delivery containing any full sync trigger is processed as FULL."""
        if any(message.full_sync for message in messages):
            return SyncMode.FULL
        return SyncMode.DELTA

    def run_cycle(self, messages: Sequence[TriggerMessage]) -> SyncReport:
        """
        Run one synchronization cycle for a delivery of trigger messages.

        Args:
            messages: All trigger messages delivered together

        Returns:
            SyncReport, COMPLETED or DEFERRED

        Raises:
            ValueError: If no messages are given
            Exception: Any Registry or Repository failure other than busy
        """
        if not messages:
            raise ValueError("run_cycle requires at least one trigger message")

        with self._lease:
            start_time = self._clock()
            mode = self.resolve_mode(messages)
            log.info(
                "sync_cycle_started",
                mode=mode.value,
                trigger_count=len(messages),
                start_time=start_time,
            )

            try:
                if mode == SyncMode.FULL:
                    log.info("full_sync_deleting_unused_stop_places")
                    try:
                        self._repository_sink.delete_unused()
                    except RepositoryBusyError:
                        return self._defer(
                            RetryableTask(kind=TaskKind.DELETE_UNUSED, full_sync=True),
                            mode,
                            start_time,
                        )
                return self._synchronize(mode, start_time)
            except Exception as e:
                self._log_failure("sync_cycle_failed", mode, start_time, e)
                raise

    def run_task(self, task: RetryableTask) -> SyncReport:
        """
        Resume a deferred cycle at the step the task names.

        DELETE_UNUSED retries the delete and then continues the full sync.
        PUSH_BATCH retries only the push of the already built batch.

        Args:
            task: Task previously handed to the retry scheduler

        Returns:
            SyncReport, COMPLETED or DEFERRED again
        """
        with self._lease:
            start_time = self._clock()
            mode = task.payload.mode if task.payload else SyncMode.FULL
            log.info("retry_task_started", kind=task.kind.value, mode=mode.value)

            try:
                if task.kind == TaskKind.DELETE_UNUSED:
                    try:
                        self._repository_sink.delete_unused()
                    except RepositoryBusyError:
                        return self._defer(task, mode, start_time)
                    return self._synchronize(mode, start_time)

                return self._push(task.payload, start_time)
            except Exception as e:
                self._log_failure("retry_task_failed", mode, start_time, e)
                raise

    def build_batch(self, mode: SyncMode, window: SyncWindow) -> SyncBatch:
        """
        Fetch and classify every stop place changed inside the window.

        Args:
            mode: Mode of the running cycle
            window: Window to query (``from_time`` None means all stop places)

        Returns:
            SyncBatch with one change payload per stop place still known to the Registry
        """
        changed = self._registry_client.fetch_changed_stop_places(
            window.from_time, window.to_time
        )

        batch = SyncBatch(mode=mode, window=window)
        for item in changed:
            change = self._registry_client.get_stop_place_change(
                item.crud_action, item.id, item.version
            )
            if change is None:
                log.warning(
                    "changed_stop_place_not_found",
                    stop_place_id=item.id,
                    version=item.version,
                )
                continue
            batch.changes.append(change.to_payload())

        log.info(
            "stop_place_batch_built",
            mode=mode.value,
            changed_count=len(changed),
            batch_size=batch.size,
        )
        return batch

    def _synchronize(self, mode: SyncMode, start_time: datetime) -> SyncReport:
        if mode == SyncMode.FULL:
            from_time = None
        else:
            from_time = self._watermark_store.get()

        window = SyncWindow(from_time=from_time, to_time=start_time)
        log.info(
            "sync_window_resolved",
            mode=mode.value,
            from_time=window.from_time,
            to_time=window.to_time,
        )

        batch = self.build_batch(mode, window)
        return self._push(batch, start_time)

    def _push(self, batch: SyncBatch, start_time: datetime) -> SyncReport:
        try:
            self._repository_sink.push_batch(batch)
        except RepositoryBusyError:
            return self._defer(
                RetryableTask(
                    kind=TaskKind.PUSH_BATCH,
                    payload=batch,
                    full_sync=batch.mode == SyncMode.FULL,
                ),
                batch.mode,
                start_time,
                batch.window,
            )

        self._watermark_store.set(batch.window.to_time)

        end_time = self._clock()
        report = SyncReport(
            mode=batch.mode,
            status=CycleStatus.COMPLETED,
            changes_pushed=batch.size,
            window=batch.window,
            start_time=start_time,
            end_time=end_time,
            duration_seconds=max((end_time - start_time).total_seconds(), 0.0),
        )
        log.info(
            "sync_cycle_completed",
            mode=batch.mode.value,
            changes_pushed=batch.size,
            synced_until=batch.window.to_time,
            duration_seconds=report.duration_seconds,
        )
        return report

    def _defer(
        self,
        task: RetryableTask,
        mode: SyncMode,
        start_time: datetime,
        window: SyncWindow | None = None,
    ) -> SyncReport:
        log.info(
            "repository_busy_retry_scheduled",
            kind=task.kind.value,
            mode=mode.value,
            retry_delay_seconds=self._retry_delay_seconds,
        )
        self._schedule_retry(task, self._retry_delay_seconds)

        end_time = self._clock()
        return SyncReport(
            mode=mode,
            status=CycleStatus.DEFERRED,
            window=window,
            start_time=start_time,
            end_time=end_time,
            duration_seconds=max((end_time - start_time).total_seconds(), 0.0),
            deferred_task=task,
        )

    def _log_failure(
        self, event: str, mode: SyncMode, start_time: datetime, error: Exception
    ) -> None:
        log.error(
            event,
            mode=mode.value,
            error=str(error),
            error_type=type(error).__name__,
            duration_seconds=(self._clock() - start_time).total_seconds(),
        )

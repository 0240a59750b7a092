"""Tests for the trigger queue and the scheduled sync service."""

import threading
import time
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from src.ingestion.registry_client import RegistryClient
from src.models.config import SchedulerConfig
from src.storage.repository_sink import RepositoryBusyError, RepositorySink
from src.sync.models import (
    CycleStatus,
    RetryableTask,
    SyncBatch,
    SyncMode,
    SyncWindow,
    TaskKind,
    TriggerMessage,
)
from src.sync.sync_coordinator import SyncCoordinator
from src.sync.timestamp_tracker import InMemoryWatermarkStore
from src.sync.trigger_queue import DELTA_JOB_ID, FULL_JOB_ID, SyncService, TriggerQueue


class ManualClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def push_task() -> RetryableTask:
    window = SyncWindow(to_time=datetime(2024, 1, 1, tzinfo=timezone.utc))
    return RetryableTask(
        kind=TaskKind.PUSH_BATCH, payload=SyncBatch(mode=SyncMode.DELTA, window=window)
    )


def build_service(coordinator=None, queue=None, **config) -> SyncService:
    return SyncService(
        coordinator=coordinator or Mock(spec=SyncCoordinator),
        queue=queue or TriggerQueue(),
        scheduler_config=SchedulerConfig(**config),
        scheduler=BackgroundScheduler(timezone="Europe/Oslo"),
    )


def test_drain_returns_all_visible_items_in_order():
    queue = TriggerQueue()
    first, second = TriggerMessage(), TriggerMessage(full_sync=True)
    queue.publish(first)
    queue.publish(second)

    assert queue.drain() == [first, second]
    assert queue.drain() == []


def test_delayed_item_becomes_visible_after_delay():
    clock = ManualClock()
    queue = TriggerQueue(clock=clock)
    task = push_task()

    queue.schedule_retry(task, 15.0)

    assert queue.drain() == []
    assert queue.pending_count == 1
    assert queue.has_delayed_tasks()

    clock.now += 14.9
    assert queue.drain() == []

    clock.now += 0.1
    assert queue.drain() == [task]
    assert queue.pending_count == 0
    assert not queue.has_delayed_tasks()


def test_get_batch_waits_for_delayed_item():
    queue = TriggerQueue()
    message = TriggerMessage()
    queue.publish(message, delay_seconds=0.05)

    start = time.monotonic()
    items = queue.get_batch(timeout=2.0)

    assert items == [message]
    assert time.monotonic() - start >= 0.04


def test_get_batch_returns_empty_on_timeout():
    queue = TriggerQueue()

    assert queue.get_batch(timeout=0.01) == []


def test_cron_jobs_are_registered():
    service = build_service(delta_cron="*/10 * * * *", full_cron="30 3 * * *")

    delta_job = service.scheduler.get_job(DELTA_JOB_ID)
    full_job = service.scheduler.get_job(FULL_JOB_ID)

    assert delta_job is not None
    assert full_job is not None
    assert delta_job.kwargs == {"full_sync": False}
    assert full_job.kwargs == {"full_sync": True}


def test_trigger_publishes_message():
    queue = TriggerQueue()
    service = build_service(queue=queue)

    service.trigger(full_sync=True)

    items = queue.drain()
    assert len(items) == 1
    assert items[0].full_sync is True


def test_process_batch_coalesces_triggers_into_one_cycle():
    coordinator = Mock(spec=SyncCoordinator)
    service = build_service(coordinator=coordinator)
    triggers = [TriggerMessage(), TriggerMessage(full_sync=True), TriggerMessage()]

    service.process_batch(triggers)

    coordinator.run_cycle.assert_called_once_with(triggers)
    coordinator.run_task.assert_not_called()


def test_process_batch_runs_retry_tasks_before_triggers():
    coordinator = Mock(spec=SyncCoordinator)
    calls = []
    coordinator.run_task.side_effect = lambda task: calls.append("task")
    coordinator.run_cycle.side_effect = lambda messages: calls.append("cycle")
    service = build_service(coordinator=coordinator)
    trigger, task = TriggerMessage(), push_task()

    service.process_batch([trigger, task])

    assert calls == ["task", "cycle"]


def test_triggers_are_held_while_retry_is_outstanding():
    coordinator = Mock(spec=SyncCoordinator)
    clock = ManualClock()
    queue = TriggerQueue(clock=clock)
    queue.schedule_retry(push_task(), 15.0)
    service = build_service(coordinator=coordinator, queue=queue, retry_delay_seconds=15.0)

    service.process_batch([TriggerMessage(), TriggerMessage(full_sync=True)])

    coordinator.run_cycle.assert_not_called()
    clock.now += 15.0
    items = queue.drain()
    held = [item for item in items if isinstance(item, TriggerMessage)]
    assert len(held) == 1
    assert held[0].full_sync is True


def test_process_batch_propagates_fatal_errors():
    coordinator = Mock(spec=SyncCoordinator)
    coordinator.run_cycle.side_effect = RuntimeError("fatal")
    service = build_service(coordinator=coordinator)

    with pytest.raises(RuntimeError, match="fatal"):
        service.process_batch([TriggerMessage()])


def test_failed_retry_task_requeues_the_rest_of_the_delivery():
    coordinator = Mock(spec=SyncCoordinator)
    coordinator.run_task.side_effect = RuntimeError("fatal")
    queue = TriggerQueue()
    first, second = push_task(), push_task()
    queue.publish(first)
    queue.publish(second)
    queue.publish(TriggerMessage())
    queue.publish(TriggerMessage(full_sync=True))
    service = build_service(coordinator=coordinator, queue=queue)

    with pytest.raises(RuntimeError, match="fatal"):
        service.process_batch(queue.get_batch(timeout=0.1))

    coordinator.run_task.assert_called_once_with(first)
    coordinator.run_cycle.assert_not_called()
    requeued = queue.drain()
    assert len(requeued) == 2
    assert requeued[0] is second
    # The triggers come back folded into one, FULL if any was FULL
    assert isinstance(requeued[1], TriggerMessage)
    assert requeued[1].full_sync is True

    coordinator.run_task.side_effect = None
    service.process_batch(requeued)

    assert coordinator.run_task.call_count == 2
    coordinator.run_cycle.assert_called_once_with([requeued[1]])


def make_coordinator(queue: TriggerQueue, sink: RepositorySink, watermark, delay: float = 0.01):
    registry = Mock(spec=RegistryClient)
    registry.fetch_changed_stop_places.return_value = []
    return SyncCoordinator(
        registry_client=registry,
        repository_sink=sink,
        watermark_store=watermark,
        schedule_retry=queue.schedule_retry,
        retry_delay_seconds=delay,
    )


def test_run_until_idle_waits_for_busy_retry():
    queue = TriggerQueue()
    sink = Mock(spec=RepositorySink)
    sink.push_batch.side_effect = [RepositoryBusyError(), None]
    watermark = InMemoryWatermarkStore()
    service = build_service(coordinator=make_coordinator(queue, sink, watermark), queue=queue)

    reports = service.run_until_idle()

    assert [report.status for report in reports] == [CycleStatus.DEFERRED, CycleStatus.COMPLETED]
    assert watermark.get() == reports[0].window.to_time
    assert sink.push_batch.call_count == 2


def test_service_consumer_processes_triggers():
    queue = TriggerQueue()
    sink = Mock(spec=RepositorySink)
    watermark = InMemoryWatermarkStore()
    service = build_service(
        coordinator=make_coordinator(queue, sink, watermark), queue=queue, autostart=False
    )

    service.start()
    try:
        service.trigger()
        deadline = time.monotonic() + 5.0
        while watermark.get() is None and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        service.stop()

    assert watermark.get() is not None
    assert not service.scheduler.running
    sink.push_batch.assert_called_once()


def test_service_cannot_start_twice():
    service = build_service(autostart=False)
    service.start()
    try:
        with pytest.raises(RuntimeError):
            service.start()
    finally:
        service.stop()


def test_stop_keeps_consumer_that_outlives_timeout():
    coordinator = Mock(spec=SyncCoordinator)
    entered, release = threading.Event(), threading.Event()

    def blocking_cycle(messages):
        entered.set()
        release.wait(5.0)

    coordinator.run_cycle.side_effect = blocking_cycle
    service = build_service(coordinator=coordinator, autostart=False)

    service.start()
    try:
        service.trigger()
        assert entered.wait(5.0)

        service.stop(timeout=0.05)

        with pytest.raises(RuntimeError, match="already started"):
            service.start()
    finally:
        release.set()
        service.stop()

    service.start()
    service.stop()

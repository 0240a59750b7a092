"""Synchronization components: change classification, sync models and watermark tracking."""

from src.sync.change_detector import StopPlaceChange, classify
from src.sync.models import (
    ChangedStopPlace,
    CrudAction,
    RetryableTask,
    SyncBatch,
    SyncMode,
    SyncReport,
    SyncWindow,
    TaskKind,
    TriggerMessage,
    UpdateType,
)
from src.sync.timestamp_tracker import FileWatermarkStore, InMemoryWatermarkStore, WatermarkStore

__all__ = [
    "ChangedStopPlace",
    "CrudAction",
    "FileWatermarkStore",
    "InMemoryWatermarkStore",
    "RetryableTask",
    "StopPlaceChange",
    "SyncBatch",
    "SyncMode",
    "SyncReport",
    "SyncWindow",
    "TaskKind",
    "TriggerMessage",
    "UpdateType",
    "WatermarkStore",
    "classify",
]

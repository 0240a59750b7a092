"""Data models for the stop place synchronization service."""

from src.models.config import (
    AppConfig,
    LoggingConfig,
    RegistryConfig,
    RepositoryConfig,
    SchedulerConfig,
    WatermarkConfig,
)
from src.models.stop_place import (
    PARENT_STOP_PLACE_TYPE,
    Geometry,
    Name,
    Quay,
    StopPlaceSnapshot,
    SyncState,
    TopographicPlace,
    ValidBetween,
)

__all__ = [
    "StopPlaceSnapshot",
    "Name",
    "Geometry",
    "Quay",
    "ValidBetween",
    "TopographicPlace",
    "SyncState",
    "PARENT_STOP_PLACE_TYPE",
    "AppConfig",
    "LoggingConfig",
    "RegistryConfig",
    "RepositoryConfig",
    "SchedulerConfig",
    "WatermarkConfig",
]

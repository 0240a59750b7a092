"""Centralized provider module for the sync service's collaborators.

This module provides factory functions for the Registry client, the Repository
sink and the watermark store, and wires them into a runnable service.
Swap an implementation here without touching the coordinator.

Default implementations:
- Registry: GraphQLRegistryClient (HTTP, GraphQL + changes endpoint)
- Repository: HttpRepositorySink (HTTP, HTTP 423 means busy)
- Watermark: FileWatermarkStore (JSON file)
"""

import structlog

from src.ingestion.registry_client import GraphQLRegistryClient, RegistryClient
from src.models.config import AppConfig, RegistryConfig, RepositoryConfig, WatermarkConfig
from src.storage.repository_sink import HttpRepositorySink, RepositorySink
from src.sync.sync_coordinator import SyncCoordinator
from src.sync.timestamp_tracker import FileWatermarkStore, WatermarkStore
from src.sync.trigger_queue import SyncService, TriggerQueue

log = structlog.stdlib.get_logger()


def get_registry_client(config: RegistryConfig) -> RegistryClient:
    """Get the configured Registry client.

    Args:
        config: Registry section of the app config

    Returns:
        RegistryClient instance
    """
    log.info("initializing_registry_client", base_url=str(config.base_url))
    return GraphQLRegistryClient(
        base_url=str(config.base_url),
        graphql_path=config.graphql_path,
        changes_path=config.changes_path,
        timeout_seconds=config.timeout_seconds,
    )


def get_repository_sink(config: RepositoryConfig) -> RepositorySink:
    """Get the configured Repository sink.

    Args:
        config: Repository section of the app config

    Returns:
        RepositorySink instance
    """
    log.info("initializing_repository_sink", base_url=str(config.base_url))
    return HttpRepositorySink(
        base_url=str(config.base_url),
        timeout_seconds=config.timeout_seconds,
    )


def get_watermark_store(config: WatermarkConfig) -> WatermarkStore:
    """Get the configured watermark store.

    Raises:
        ValueError: If the path is empty
    """
    if not config.path or not config.path.strip():
        error_msg = "watermark path cannot be empty"
        log.error("get_watermark_store_failed", error=error_msg)
        raise ValueError(error_msg)

    return FileWatermarkStore(config.path)


def build_sync_service(
    config: AppConfig,
    registry_client: RegistryClient | None = None,
    repository_sink: RepositorySink | None = None,
    watermark_store: WatermarkStore | None = None,
) -> SyncService:
    """Wire queue, coordinator and scheduler into a service.

    Collaborators not passed in are created from ``config``.

    Args:
        config: Application configuration
        registry_client: Optional Registry client
        repository_sink: Optional Repository sink
        watermark_store: Optional watermark store

    Returns:
        SyncService, not yet started
    """
    queue = TriggerQueue()
    coordinator = SyncCoordinator(
        registry_client=registry_client or get_registry_client(config.registry),
        repository_sink=repository_sink or get_repository_sink(config.repository),
        watermark_store=watermark_store or get_watermark_store(config.watermark),
        schedule_retry=queue.schedule_retry,
        retry_delay_seconds=config.scheduler.retry_delay_seconds,
    )
    return SyncService(coordinator, queue, config.scheduler)

"""Repository sink interface and HTTP implementation."""

from abc import ABC, abstractmethod

import requests
import structlog
from requests.exceptions import ConnectionError, Timeout

from src.sync.models import SyncBatch
from src.utils.retry import exponential_backoff_retry

log = structlog.stdlib.get_logger()

# HTTP 423 Locked: the Repository is running another job and asks us to come back later
BUSY_STATUS_CODE = 423


class RepositorySinkError(Exception):
    """Raised when the Repository rejects a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RepositoryBusyError(RepositorySinkError):
    """Raised when the Repository is busy and the request should be retried later."""

    def __init__(self, message: str = "Repository is busy"):
        super().__init__(message, status_code=BUSY_STATUS_CODE)


class RepositorySink(ABC):
    """Abstract interface for the downstream Repository.

    Both operations must be safe to repeat with identical input.
    """

    @abstractmethod
    def delete_unused(self) -> None:
        """Delete stop places no longer referenced by any dataset.

        Raises:
            RepositoryBusyError: If the Repository is busy
            RepositorySinkError: For any other rejection
        """
        pass

    @abstractmethod
    def push_batch(self, batch: SyncBatch) -> None:
        """Push a batch of stop place changes.

        Raises:
            RepositoryBusyError: If the Repository is busy
            RepositorySinkError: For any other rejection
        """
        pass


class HttpRepositorySink(RepositorySink):
    """Repository sink talking to the Repository's stop place HTTP API."""

    STOP_PLACE_PATH = "/chouette_iev/stop_place"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 60.0,
        session: requests.Session | None = None,
    ):
        """
        Initialize the sink.

        Args:
            base_url: Repository base URL
            timeout_seconds: Timeout for each HTTP request
            session: Optional requests session (a new one is created if None)
        """
        self._stop_place_url = base_url.rstrip("/") + self.STOP_PLACE_PATH
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        log.info("repository_sink_initialized", url=self._stop_place_url)

    @exponential_backoff_retry(
        max_retries=3,
        base_delay=1.0,
        max_delay=60.0,
        exceptions=(ConnectionError, Timeout),
    )
    def delete_unused(self) -> None:
        log.info("deleting_unused_stop_places")
        response = self._session.delete(self._stop_place_url + "/unused", timeout=self._timeout)
        self._check_response(response, operation="delete_unused")
        log.info("unused_stop_places_deleted")

    @exponential_backoff_retry(
        max_retries=3,
        base_delay=1.0,
        max_delay=60.0,
        exceptions=(ConnectionError, Timeout),
    )
    def push_batch(self, batch: SyncBatch) -> None:
        log.info("pushing_stop_place_batch", mode=batch.mode.value, size=batch.size)
        response = self._session.post(
            self._stop_place_url,
            data=batch.model_dump_json(),
            headers={"Content-Type": "application/json"},
            timeout=self._timeout,
        )
        self._check_response(response, operation="push_batch")
        log.info("stop_place_batch_pushed", mode=batch.mode.value, size=batch.size)

    def _check_response(self, response: requests.Response, operation: str) -> None:
        """
        Map a Repository response to the sink's outcome.

        Raises:
            RepositoryBusyError: On HTTP 423
            RepositorySinkError: On any other error status
        """
        if response.status_code == BUSY_STATUS_CODE:
            log.info("repository_busy", operation=operation)
            raise RepositoryBusyError(f"Repository busy during {operation}")

        if response.status_code >= 400:
            log.error(
                "repository_request_failed",
                operation=operation,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise RepositorySinkError(
                f"Repository {operation} failed with status {response.status_code}",
                status_code=response.status_code,
            )

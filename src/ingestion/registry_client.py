"""Registry client for fetching stop place versions and change lists."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import requests
import structlog
from pydantic import ValidationError
from requests.exceptions import ConnectionError, HTTPError, Timeout

from src.models.stop_place import StopPlaceSnapshot
from src.sync.change_detector import StopPlaceChange, classify
from src.sync.models import ChangedStopPlace, CrudAction
from src.utils.retry import exponential_backoff_retry

log = structlog.stdlib.get_logger()

STOP_PLACE_FIELDS = """
    id
    version
    __typename
    name { value lang }
    geometry { type coordinates }
    validBetweens { fromDate toDate }
    topographicPlace {
      name { value }
      parentTopographicPlace {
        name { value }
        parentTopographicPlace { name { value } }
      }
    }
    ... on StopPlace {
      stopPlaceType
      quays { id name { value } geometry { type coordinates } }
    }
"""

STOP_PLACE_CHANGE_QUERY = (
    "query StopPlaceChange($id: String!, $version: Int!, $previousVersion: Int!) {\n"
    "  current: stopPlace(id: $id, version: $version, allVersions: true) {"
    + STOP_PLACE_FIELDS
    + "  }\n"
    "  previousVersion: stopPlace(id: $id, version: $previousVersion, allVersions: true) {"
    + STOP_PLACE_FIELDS
    + "  }\n"
    "}"
)


class RegistryError(Exception):
    """Raised when the Registry cannot answer a query."""

    pass


class RegistryClient(ABC):
    """Read access to the stop place Registry."""

    @abstractmethod
    def fetch_changed_stop_places(
        self, from_time: datetime | None, to_time: datetime
    ) -> list[ChangedStopPlace]:
        """List stop place versions changed in ``[from_time, to_time)``.

        Args:
            from_time: Start of the window, None for all known stop places
            to_time: End of the window (exclusive)
        """
        pass

    @abstractmethod
    def fetch_change(
        self, action: CrudAction, stop_place_id: str, version: int
    ) -> tuple[StopPlaceSnapshot | None, StopPlaceSnapshot | None]:
        """Fetch the current version and the version immediately before it.

        The previous version is returned only if its version number is exactly
        ``version - 1``, otherwise it is reported as absent.
        """
        pass

    def get_stop_place_change(
        self, action: CrudAction, stop_place_id: str, version: int
    ) -> StopPlaceChange | None:
        """Fetch both versions and classify the change, None if the stop is unknown."""
        current, previous = self.fetch_change(action, stop_place_id, version)
        if current is None:
            return None
        return classify(action, current, previous)


def _select_previous(
    previous: StopPlaceSnapshot | None, version: int
) -> StopPlaceSnapshot | None:
    # The Registry answers a query for version 0 with version 1, so only an exact
    # predecessor counts as the previous version.
    if previous is not None and previous.version == version - 1:
        return previous
    return None


class GraphQLRegistryClient(RegistryClient):
    """Registry client backed by the Registry's GraphQL and REST endpoints."""

    def __init__(
        self,
        base_url: str,
        graphql_path: str = "/services/stop_places/graphql",
        changes_path: str = "/services/stop_places/changes",
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ):
        """
        Initialize Registry client.

        Args:
            base_url: Registry base URL
            graphql_path: Path of the GraphQL endpoint
            changes_path: Path of the changed stop places endpoint
            timeout_seconds: Timeout for each HTTP request
            session: Optional requests session (a new one is created if None)
        """
        self._base_url = base_url.rstrip("/")
        self._graphql_url = self._base_url + graphql_path
        self._changes_url = self._base_url + changes_path
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        log.info(
            "registry_client_initialized",
            graphql_url=self._graphql_url,
            changes_url=self._changes_url,
        )

    @exponential_backoff_retry(
        max_retries=3,
        base_delay=1.0,
        max_delay=60.0,
        exceptions=(ConnectionError, Timeout),
    )
    def fetch_changed_stop_places(
        self, from_time: datetime | None, to_time: datetime
    ) -> list[ChangedStopPlace]:
        params = {"to": to_time.isoformat()}
        if from_time is not None:
            params["from"] = from_time.isoformat()

        log.info("fetching_changed_stop_places", from_time=from_time, to_time=to_time)

        response = self._session.get(self._changes_url, params=params, timeout=self._timeout)
        try:
            response.raise_for_status()
        except HTTPError as e:
            log.error(
                "failed_to_fetch_changed_stop_places",
                status_code=response.status_code,
                error=str(e),
            )
            raise RegistryError(f"Failed to list changed stop places: {e}") from e

        try:
            changes = [ChangedStopPlace.model_validate(item) for item in response.json()]
        except (ValueError, TypeError) as e:
            log.error("invalid_changed_stop_places_response", error=str(e))
            raise RegistryError(f"Invalid changed stop places response: {e}") from e

        log.info("changed_stop_places_fetched", count=len(changes))
        return changes

    @exponential_backoff_retry(
        max_retries=3,
        base_delay=1.0,
        max_delay=60.0,
        exceptions=(ConnectionError, Timeout),
    )
    def fetch_change(
        self, action: CrudAction, stop_place_id: str, version: int
    ) -> tuple[StopPlaceSnapshot | None, StopPlaceSnapshot | None]:
        log.debug(
            "fetching_stop_place_change",
            stop_place_id=stop_place_id,
            version=version,
            crud_action=action.value,
        )

        body = {
            "query": STOP_PLACE_CHANGE_QUERY,
            "variables": {
                "id": stop_place_id,
                "version": version,
                "previousVersion": version - 1,
            },
        }
        response = self._session.post(self._graphql_url, json=body, timeout=self._timeout)
        try:
            response.raise_for_status()
        except HTTPError as e:
            log.error(
                "failed_to_fetch_stop_place",
                stop_place_id=stop_place_id,
                version=version,
                status_code=response.status_code,
                error=str(e),
            )
            raise RegistryError(f"Failed to fetch stop place {stop_place_id}: {e}") from e

        document = response.json()
        if document.get("errors"):
            log.error(
                "graphql_errors",
                stop_place_id=stop_place_id,
                errors=document["errors"],
            )
            raise RegistryError(f"GraphQL errors for {stop_place_id}: {document['errors']}")

        data = document.get("data") or {}
        current = self._convert_to_snapshot(data.get("current"), stop_place_id)
        if current is None:
            log.info("stop_place_not_found", stop_place_id=stop_place_id, version=version)
            return None, None

        previous = self._convert_to_snapshot(data.get("previousVersion"), stop_place_id)
        return current, _select_previous(previous, version)

    def _convert_to_snapshot(
        self, raw: list[dict[str, Any]] | dict[str, Any] | None, stop_place_id: str
    ) -> StopPlaceSnapshot | None:
        """
        Convert a GraphQL stop place result to a snapshot.

        Args:
            raw: Single object or list of objects (the Registry returns lists)
            stop_place_id: ID used for logging

        Returns:
            Snapshot, or None when the result is empty

        Raises:
            RegistryError: If the result does not match the expected shape
        """
        if isinstance(raw, list):
            raw = raw[0] if raw else None
        if not raw:
            return None

        try:
            return StopPlaceSnapshot.model_validate(raw)
        except ValidationError as e:
            log.error("invalid_stop_place_response", stop_place_id=stop_place_id, error=str(e))
            raise RegistryError(f"Invalid stop place in response for {stop_place_id}: {e}") from e

"""Change classification for stop place versions."""

from datetime import datetime, timezone
from typing import Any

import structlog

from src.models.stop_place import StopPlaceSnapshot
from src.sync.models import CrudAction, UpdateType

log = structlog.stdlib.get_logger()

MULTI_MODAL_TYPE = "multimodal"
NULL_PLACEHOLDER = "null"


def _null_safe_str(value: Any) -> str:
    return NULL_PLACEHOLDER if value is None else str(value)


def _format_ids(ids: list[str]) -> str:
    return "[" + ", ".join(ids) + "]"


class StopPlaceChange:
    """Typed, human-readable diff between two versions of a stop place.

    Instances are built once and not modified afterwards. For UPDATE actions the
    dimensions are checked in a fixed order (name, type, coordinates, quays);
    the order of the entries in ``old_value`` / ``new_value`` follows it.
    """

    def __init__(
        self,
        crud_action: CrudAction,
        current: StopPlaceSnapshot,
        previous_version: StopPlaceSnapshot | None = None,
    ):
        """
        Classify a change.

        Args:
            crud_action: Action reported by the Registry
            current: Current version of the stop place
            previous_version: Version preceding ``current``, if known
        """
        self._crud_action: CrudAction = crud_action
        self._current: StopPlaceSnapshot = current
        self._previous_version: StopPlaceSnapshot | None = previous_version
        self._update_type: UpdateType | None = None
        self._old_values: list[str] = []
        self._new_values: list[str] = []

        self._detect_update_type()
        self._change_time: datetime = self._resolve_change_time()

    @property
    def crud_action(self) -> CrudAction:
        return self._crud_action

    @property
    def current(self) -> StopPlaceSnapshot:
        return self._current

    @property
    def previous_version(self) -> StopPlaceSnapshot | None:
        return self._previous_version

    @property
    def update_type(self) -> UpdateType | None:
        return self._update_type

    @property
    def old_values(self) -> tuple[str, ...]:
        return tuple(self._old_values)

    @property
    def new_values(self) -> tuple[str, ...]:
        return tuple(self._new_values)

    @property
    def old_value(self) -> str | None:
        """Old values joined by newline, None when nothing changed."""
        return "\n".join(self._old_values) if self._old_values else None

    @property
    def new_value(self) -> str | None:
        """New values joined by newline, None when nothing changed."""
        return "\n".join(self._new_values) if self._new_values else None

    @property
    def change_time(self) -> datetime:
        return self._change_time

    @property
    def location(self) -> str | None:
        """Parent hierarchy formatted from the outermost place inwards."""
        hierarchy = self._current.parent_hierarchy
        if not hierarchy:
            return None
        return ", ".join(reversed(hierarchy))

    @property
    def entity_classifier(self) -> str | None:
        if self._current.stop_place_type:
            return self._current.stop_place_type
        if self._current.is_parent:
            return MULTI_MODAL_TYPE
        return None

    def to_payload(self) -> dict[str, Any]:
        """Render the change as a JSON-ready dict for the outbound batch."""
        return {
            "id": self._current.id,
            "version": self._current.version,
            "name": self._current.name_as_string,
            "crudAction": self._crud_action.value,
            "updateType": self._update_type.value if self._update_type else None,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "changeTime": self._change_time.isoformat(),
            "location": self.location,
            "entityClassifier": self.entity_classifier,
        }

    def _resolve_change_time(self) -> datetime:
        valid_betweens = self._current.valid_betweens
        if valid_betweens:
            first = valid_betweens[0]
            if self._crud_action == CrudAction.REMOVE:
                change_time = first.to_date
            else:
                change_time = first.from_date
            if change_time is not None:
                return change_time

        log.debug("change_time_defaulted_to_now", stop_place_id=self._current.id)
        return datetime.now(timezone.utc)

    def _detect_update_type(self) -> None:
        if self._crud_action != CrudAction.UPDATE:
            return

        # Defaulting to minor if no substantial changes are found
        self._update_type = UpdateType.MINOR

        current = self._current
        previous = self._previous_version or StopPlaceSnapshot()

        self._check_for_changes(current.name_as_string, previous.name_as_string, UpdateType.NAME)
        self._check_for_changes(current.stop_place_type, previous.stop_place_type, UpdateType.TYPE)
        # TODO: ignore coordinate changes below a distance threshold, most are rounding noise
        self._check_for_changes(current.geometry, previous.geometry, UpdateType.COORDINATES)
        self._check_for_quay_changes(current.quay_ids, previous.quay_ids)

    def _check_for_changes(self, curr: Any, prev: Any, update_type: UpdateType) -> None:
        if curr != prev:
            self._register_update(update_type)
            self._old_values.append(_null_safe_str(prev))
            self._new_values.append(_null_safe_str(curr))

    def _check_for_quay_changes(self, current_ids: list[str], previous_ids: list[str]) -> None:
        previous_set = set(previous_ids)
        current_set = set(current_ids)
        new_quays = [quay_id for quay_id in current_ids if quay_id not in previous_set]
        removed_quays = [quay_id for quay_id in previous_ids if quay_id not in current_set]

        if new_quays:
            self._register_update(UpdateType.NEW_QUAY)
            self._new_values.append(_format_ids(new_quays))
            self._old_values.append(_format_ids(removed_quays))
        elif removed_quays:
            self._register_update(UpdateType.REMOVED_QUAY)
            self._old_values.append(_format_ids(removed_quays))

    def _register_update(self, update_type: UpdateType) -> None:
        if self._update_type == UpdateType.MINOR:
            self._update_type = update_type
        else:
            # Several substantial changes
            self._update_type = UpdateType.MAJOR

    def __repr__(self) -> str:
        return (
            f"StopPlaceChange(crud_action={self._crud_action.value}, "
            f"id={self._current.id!r}, update_type={self._update_type})"
        )


def classify(
    action: CrudAction,
    current: StopPlaceSnapshot,
    previous: StopPlaceSnapshot | None = None,
) -> StopPlaceChange:
    """Classify the change from ``previous`` to ``current``."""
    change = StopPlaceChange(action, current, previous)
    log.debug(
        "stop_place_change_classified",
        stop_place_id=current.id,
        crud_action=action.value,
        update_type=change.update_type.value if change.update_type else None,
    )
    return change

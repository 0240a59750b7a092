"""Pydantic models for stop place snapshots fetched from the Registry."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

PARENT_STOP_PLACE_TYPE = "ParentStopPlace"


class _GraphQLModel(BaseModel):
    """Base for read-only models parsed from Registry GraphQL responses."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Name(_GraphQLModel):
    """Localized name as returned by the Registry."""

    value: str | None = Field(default=None, description="Name text")
    lang: str | None = Field(default=None, description="Language code")


class Geometry(_GraphQLModel):
    """GeoJSON-like geometry (point or polygon)."""

    type: str = Field(default="Point", description="Geometry type")
    coordinates: list[list[float]] = Field(
        default_factory=list, description="Coordinate positions"
    )

    def __str__(self) -> str:
        return ",".join(
            "(" + ",".join(str(float(c)) for c in position) + ")"
            for position in self.coordinates
        )


class Quay(_GraphQLModel):
    """Boarding point belonging to a stop place."""

    id: str = Field(default=..., description="Quay identifier")
    name: Name | None = Field(default=None, description="Quay name")
    geometry: Geometry | None = Field(default=None, description="Quay location")


class ValidBetween(_GraphQLModel):
    """Validity interval of a stop place version."""

    from_date: datetime | None = Field(default=None, alias="fromDate")
    to_date: datetime | None = Field(default=None, alias="toDate")


class TopographicPlace(_GraphQLModel):
    """Named topographic container (municipality, county, ...)."""

    name: Name | None = Field(default=None)
    parent_topographic_place: "TopographicPlace | None" = Field(
        default=None, alias="parentTopographicPlace"
    )


TopographicPlace.model_rebuild()


class StopPlaceSnapshot(_GraphQLModel):
    """One version of a stop place as known by the Registry."""

    id: str | None = Field(default=None, description="Stop place identifier")
    version: int | None = Field(default=None, description="Version number")
    name: Name | None = Field(default=None)
    stop_place_type: str | None = Field(default=None, alias="stopPlaceType")
    geometry: Geometry | None = Field(default=None)
    quays: list[Quay] | None = Field(default=None)
    valid_betweens: list[ValidBetween] | None = Field(default=None, alias="validBetweens")
    topographic_place: TopographicPlace | None = Field(default=None, alias="topographicPlace")
    typename: str | None = Field(default=None, alias="__typename")

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "example": {
                "id": "NSR:StopPlace:1",
                "version": 3,
                "name": {"value": "Oslo S"},
                "stopPlaceType": "railStation",
                "geometry": {"type": "Point", "coordinates": [[10.75, 59.91]]},
                "quays": [{"id": "NSR:Quay:1"}],
                "validBetweens": [{"fromDate": "2024-01-01T00:00:00Z"}],
                "topographicPlace": {
                    "name": {"value": "Oslo"},
                    "parentTopographicPlace": {"name": {"value": "Oslo fylke"}},
                },
                "__typename": "StopPlace",
            }
        },
    )

    @property
    def name_as_string(self) -> str | None:
        return self.name.value if self.name else None

    @property
    def quay_ids(self) -> list[str]:
        """Quay IDs in stored order (empty when the stop has no quays)."""
        return [quay.id for quay in self.quays or []]

    @property
    def parent_hierarchy(self) -> list[str]:
        """Names of the enclosing topographic places, child first."""
        names: list[str] = []
        place = self.topographic_place
        while place is not None:
            if place.name and place.name.value:
                names.append(place.name.value)
            place = place.parent_topographic_place
        return names

    @property
    def is_parent(self) -> bool:
        return self.typename == PARENT_STOP_PLACE_TYPE


class SyncState(BaseModel):
    """Persisted synchronization watermark."""

    synced_until: datetime = Field(default=..., description="End of the last completed window")
    updated_at: datetime = Field(default=..., description="When the watermark was written")

    model_config = {
        "json_schema_extra": {
            "example": {
                "synced_until": "2024-01-15T14:30:00Z",
                "updated_at": "2024-01-15T14:30:05Z",
            }
        }
    }

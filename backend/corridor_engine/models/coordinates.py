"""
Coordinate System Models

Models for GPS coordinates and geographic bounding boxes.
"""

from pydantic import BaseModel, ConfigDict, Field


class GPSCoordinate(BaseModel):
    """GPS coordinate (latitude, longitude)"""
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={"example": {"latitude": 23.2156, "longitude": 72.6369}},
    )

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


class MapBounds(BaseModel):
    """
    Geographic bounding box

    Used to filter corridors and to query the civilian vehicle index.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {"north": 23.25, "south": 23.20, "east": 72.65, "west": 72.60}
        }
    )

    north: float                          # Maximum latitude
    south: float                          # Minimum latitude
    east: float                           # Maximum longitude
    west: float                           # Minimum longitude

    @property
    def center(self) -> tuple[float, float]:
        """Get center point (lat, lon)"""
        return (
            (self.north + self.south) / 2,
            (self.east + self.west) / 2
        )

    def contains(self, lat: float, lon: float) -> bool:
        """Check if a point is within bounds"""
        return (
            self.south <= lat <= self.north and
            self.west <= lon <= self.east
        )

    def expanded(self, margin_deg: float) -> "MapBounds":
        """Bounds grown by a margin in degrees on every side"""
        return MapBounds(
            north=self.north + margin_deg,
            south=self.south - margin_deg,
            east=self.east + margin_deg,
            west=self.west - margin_deg,
        )

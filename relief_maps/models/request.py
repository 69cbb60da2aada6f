"""Data model for a map-generation request.

A request carries the client's selection (explicit countries plus whole
continents) and the bounding window the map is cropped to.  Coordinates
arrive as JSON numbers or numeric strings and are normalised to floats.

References:
    POST /maps/countries request body
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from relief_maps.core.exceptions import ValidationError


class RequestValidationError(ValidationError):
    """Raised when the request body cannot be turned into a ``MapRequest``."""

    default_stage = "request"
    default_code = "INVALID_REQUEST"


def format_number(value: float) -> str:
    """Render a number for tool arguments and filenames.

    Up to six decimals, trailing zeros dropped: ``50.0 -> "50"``,
    ``-130.25 -> "-130.25"``.
    """
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def _coerce_coordinate(data: dict[str, Any], key: str) -> float:
    raw = data.get(key)
    if raw is None or isinstance(raw, bool):
        msg = f"'{key}' is required and must be a number"
        raise RequestValidationError(msg)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        msg = f"'{key}' must be numeric, got {raw!r}"
        raise RequestValidationError(msg) from exc
    if not math.isfinite(value):
        msg = f"'{key}' must be finite, got {raw!r}"
        raise RequestValidationError(msg)
    return value


@dataclass(frozen=True, slots=True)
class BoundingWindow:
    """Rectangular geographic extent in WGS 84 degrees.

    Attributes:
        north: Maximum latitude.
        south: Minimum latitude.
        east: Maximum longitude.
        west: Minimum longitude.
    """

    north: float
    south: float
    east: float
    west: float

    def __post_init__(self) -> None:
        for name in ("north", "south"):
            value = getattr(self, name)
            if not -90.0 <= value <= 90.0:
                msg = f"'{name}' must be within [-90, 90], got {value}"
                raise RequestValidationError(msg)
        for name in ("east", "west"):
            value = getattr(self, name)
            if not -180.0 <= value <= 180.0:
                msg = f"'{name}' must be within [-180, 180], got {value}"
                raise RequestValidationError(msg)
        if self.north <= self.south:
            msg = f"north ({self.north}) must be greater than south ({self.south})"
            raise RequestValidationError(msg)
        if self.east <= self.west:
            msg = f"east ({self.east}) must be greater than west ({self.west})"
            raise RequestValidationError(msg)

    @property
    def slug(self) -> str:
        """Filename-safe ``north_west_east_south`` token."""
        return "_".join(
            format_number(v) for v in (self.north, self.west, self.east, self.south)
        )

    def projwin(self) -> list[str]:
        """``gdal_translate -projwin`` order: upper-left x/y, lower-right x/y."""
        return [format_number(v) for v in (self.west, self.north, self.east, self.south)]

    def clip_bounds(self) -> list[str]:
        """``ogr2ogr -clipsrc`` order: xmin ymin xmax ymax."""
        return [format_number(v) for v in (self.west, self.south, self.east, self.north)]

    def to_dict(self) -> dict[str, float]:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BoundingWindow:
        """Build a window from a dict with numeric or numeric-string values.

        Raises:
            RequestValidationError: If a coordinate is missing, non-numeric
                or out of range, or the window is empty.
        """
        return cls(
            north=_coerce_coordinate(data, "north"),
            south=_coerce_coordinate(data, "south"),
            east=_coerce_coordinate(data, "east"),
            west=_coerce_coordinate(data, "west"),
        )


@dataclass(frozen=True, slots=True)
class CountrySelection:
    """A country explicitly selected by the client."""

    code: str
    continent: str = ""


@dataclass(frozen=True, slots=True)
class ContinentSelection:
    """A continent whose every catalog country is selected."""

    continent: str


@dataclass(frozen=True, slots=True)
class MapRequest:
    """A validated POST /maps/countries request.

    Attributes:
        window: Bounding window the map is cropped to.
        countries: Explicitly selected countries, in request order.
        continents: Selected continents, in request order.
    """

    window: BoundingWindow
    countries: list[CountrySelection] = field(default_factory=list)
    continents: list[ContinentSelection] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "countries": [{"code": c.code, "continent": c.continent} for c in self.countries],
            "continents": [{"continent": c.continent} for c in self.continents],
            **self.window.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MapRequest:
        """Deserialise a request body.

        Unknown keys on country and continent entries are ignored.

        Raises:
            RequestValidationError: If the body shape is wrong.
        """
        countries_raw = data.get("countries") or []
        if not isinstance(countries_raw, list):
            msg = f"'countries' must be a list, got {type(countries_raw).__name__}"
            raise RequestValidationError(msg)
        continents_raw = data.get("continents") or []
        if not isinstance(continents_raw, list):
            msg = f"'continents' must be a list, got {type(continents_raw).__name__}"
            raise RequestValidationError(msg)

        countries: list[CountrySelection] = []
        for index, entry in enumerate(countries_raw):
            if not isinstance(entry, dict) or not str(entry.get("code") or "").strip():
                msg = f"countries[{index}] must be an object with a non-empty 'code'"
                raise RequestValidationError(msg)
            countries.append(
                CountrySelection(
                    code=str(entry["code"]).strip(),
                    continent=str(entry.get("continent") or ""),
                )
            )

        continents: list[ContinentSelection] = []
        for index, entry in enumerate(continents_raw):
            if not isinstance(entry, dict) or not str(entry.get("continent") or "").strip():
                msg = f"continents[{index}] must be an object with a non-empty 'continent'"
                raise RequestValidationError(msg)
            continents.append(ContinentSelection(continent=str(entry["continent"]).strip()))

        return cls(
            window=BoundingWindow.from_dict(data),
            countries=countries,
            continents=continents,
        )

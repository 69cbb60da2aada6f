"""Typed payload schemas for the HTTP contracts.

The request and response bodies are plain JSON objects.  These
``TypedDict`` definitions make the contracts explicit so that pyright
catches key mismatches at analysis time and ``validate_payload``
catches them at runtime.

Usage::

    from relief_maps.models.payloads import MapRequestBody, validate_payload

    validate_payload(body, MapRequestBody, endpoint="create_map")
"""

from __future__ import annotations

from typing import Any, NotRequired, TypedDict

from relief_maps.core.exceptions import ContractError

# ---------------------------------------------------------------------------
# POST /maps/countries
# ---------------------------------------------------------------------------


class CountryEntry(TypedDict):
    code: str
    continent: NotRequired[str]


class ContinentEntry(TypedDict):
    continent: str


class MapRequestBody(TypedDict):
    """Client → ``POST /maps/countries``.

    Coordinates may be JSON numbers or numeric strings.
    """

    countries: NotRequired[list[CountryEntry]]
    continents: NotRequired[list[ContinentEntry]]
    north: float | str
    south: float | str
    east: float | str
    west: float | str


class MapResponseBody(TypedDict):
    """``POST /maps/countries`` → client on success."""

    topo: str
    rivers: str
    image: str
    run_id: str


class ErrorResponseBody(TypedDict):
    """Any endpoint → client on failure (see ``PipelineError.to_error_dict``)."""

    error: dict[str, Any]


# ---------------------------------------------------------------------------
# GET /maps/countries
# ---------------------------------------------------------------------------


class CountryCatalogEntry(TypedDict):
    name: str
    code: str
    continent: str


# ---------------------------------------------------------------------------
# Required-key registrations (used by validate_payload)
# ---------------------------------------------------------------------------

_REQUIRED_KEYS: dict[type, frozenset[str]] = {
    MapRequestBody: frozenset({"north", "south", "east", "west"}),
}


# ---------------------------------------------------------------------------
# Runtime validation
# ---------------------------------------------------------------------------


def validate_payload(
    raw: dict[str, Any],
    schema: type,
    *,
    endpoint: str,
) -> None:
    """Validate that *raw* contains the required keys for *schema*.

    Raises:
        ContractError: If required keys are missing from the payload.
    """
    required = _REQUIRED_KEYS.get(schema)
    if required is None:
        return

    missing = required - raw.keys()
    if missing:
        msg = f"{endpoint}: missing required payload key(s): {', '.join(sorted(missing))}"
        raise ContractError(msg, stage=endpoint, code="PAYLOAD_MISSING_KEYS")

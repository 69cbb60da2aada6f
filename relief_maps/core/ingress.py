"""Thin ingress boundary helpers for the HTTP entrypoints.

Centralises the transport concerns so that the route handlers contain
only handoff logic:

- **decode_json_body**: turns the raw request body into a dict,
  raising ``ContractError`` for anything that is not a JSON object.
- **build_map_request**: validates a decoded body and builds the
  ``MapRequest`` the pipeline consumes.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from relief_maps.core.exceptions import ContractError
from relief_maps.models.payloads import MapRequestBody, validate_payload
from relief_maps.models.request import MapRequest

logger = logging.getLogger("relief_maps.core.ingress")


def decode_json_body(raw: bytes | str | None) -> dict[str, Any]:
    """Decode a request body into a JSON object.

    Raises:
        ContractError: If the body is empty, not valid JSON, or not an object.
    """
    if raw is None or (isinstance(raw, bytes | str) and not raw.strip()):
        raise ContractError("Request body is empty", stage="ingress", code="EMPTY_BODY")
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as exc:
        msg = f"Request body is not valid JSON: {exc}"
        raise ContractError(msg, stage="ingress", code="INVALID_JSON") from exc
    if not isinstance(parsed, dict):
        msg = f"Request body JSON must be an object, got {type(parsed).__name__}"
        raise ContractError(msg, stage="ingress", code="INVALID_INPUT_TYPE")
    return parsed


def build_map_request(body: dict[str, Any]) -> MapRequest:
    """Validate a decoded ``POST /maps/countries`` body.

    Raises:
        ContractError: If a required key is missing.
        RequestValidationError: If a value is malformed or out of range.
    """
    validate_payload(body, MapRequestBody, endpoint="create_map")
    request = MapRequest.from_dict(body)

    logger.debug(
        "Built map request | countries=%d | continents=%d | window=%s",
        len(request.countries),
        len(request.continents),
        request.window.slug,
    )
    return request

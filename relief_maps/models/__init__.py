"""Data models and schemas.

Defines the data structures used throughout the pipeline:
- MapRequest: Validated client selection plus bounding window
- CountryCatalog: Country codes, names and continents
- Payloads: HTTP request/response contracts
- RunManifest: Per-run record written to run.json
"""

from relief_maps.models.catalog import CatalogError, Country, CountryCatalog, load_catalog
from relief_maps.models.manifest import RunManifest, write_manifest
from relief_maps.models.request import (
    BoundingWindow,
    ContinentSelection,
    CountrySelection,
    MapRequest,
    RequestValidationError,
)

__all__ = [
    "BoundingWindow",
    "CatalogError",
    "ContinentSelection",
    "Country",
    "CountryCatalog",
    "CountrySelection",
    "MapRequest",
    "RequestValidationError",
    "RunManifest",
    "load_catalog",
    "write_manifest",
]

"""Country catalog: code, display name and continent of each country.

Served verbatim by ``GET /maps/countries`` and consulted by the
selection filter to expand a selected continent into country codes.
The packaged ``data/countries.json`` is a seed catalog; deployments
point ``COUNTRY_CATALOG_PATH`` at their full list.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from relief_maps.core.exceptions import PermanentError

logger = logging.getLogger("relief_maps.models.catalog")

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "countries.json"


class CatalogError(PermanentError):
    """Raised when the country catalog cannot be loaded."""

    default_stage = "catalog"
    default_code = "CATALOG_INVALID"


@dataclass(frozen=True, slots=True)
class Country:
    """One catalog entry.

    Attributes:
        code: ISO-style three-letter code matching the ``adm0_a3`` attribute.
        name: Display name.
        continent: Continent name as used in continent selections.
    """

    code: str
    name: str
    continent: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "code": self.code, "continent": self.continent}


@dataclass(frozen=True, slots=True)
class CountryCatalog:
    """Ordered, immutable list of countries."""

    countries: tuple[Country, ...]

    def __len__(self) -> int:
        return len(self.countries)

    def codes_for_continents(self, continents: list[str]) -> list[str]:
        """Return codes of every country on one of *continents*, in catalog order."""
        selected = set(continents)
        return [c.code for c in self.countries if c.continent in selected]

    def to_list(self) -> list[dict[str, str]]:
        return [c.to_dict() for c in self.countries]

    @classmethod
    def from_list(cls, entries: object) -> CountryCatalog:
        """Build a catalog from a decoded JSON array.

        Raises:
            CatalogError: If the data is not a list of
                ``{code, name, continent}`` objects.
        """
        if not isinstance(entries, list):
            msg = f"country catalog must be a JSON array, got {type(entries).__name__}"
            raise CatalogError(msg)

        countries: list[Country] = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                msg = f"country catalog entry {index} must be an object"
                raise CatalogError(msg)
            missing = [k for k in ("code", "name", "continent") if not entry.get(k)]
            if missing:
                msg = f"country catalog entry {index} missing {', '.join(missing)}"
                raise CatalogError(msg)
            countries.append(
                Country(
                    code=str(entry["code"]),
                    name=str(entry["name"]),
                    continent=str(entry["continent"]),
                )
            )
        return cls(countries=tuple(countries))


def load_catalog(path: str | Path | None = None) -> CountryCatalog:
    """Load the country catalog from *path* (default: the packaged seed).

    Raises:
        CatalogError: If the file is missing, not JSON, or malformed.
    """
    catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH
    try:
        entries = json.loads(catalog_path.read_text(encoding="utf-8"))
    except OSError as exc:
        msg = f"cannot read country catalog {catalog_path}: {exc}"
        raise CatalogError(msg) from exc
    except json.JSONDecodeError as exc:
        msg = f"country catalog {catalog_path} is not valid JSON: {exc}"
        raise CatalogError(msg) from exc

    catalog = CountryCatalog.from_list(entries)
    logger.info("Country catalog loaded | path=%s | countries=%d", catalog_path, len(catalog))
    return catalog

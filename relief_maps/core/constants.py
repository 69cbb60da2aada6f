"""Shared pipeline constants: single source of truth.

Centralises the names of the pristine source datasets (as laid out in
the source directory copied into every workspace) and the filename
templates of the artifacts each stage produces.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Source datasets (relative to the source / workspace directory)
# ---------------------------------------------------------------------------

BOUNDARIES_DIR: str = "ne_10m_admin_0_countries"
"""Directory holding the Natural Earth admin-0 shapefile."""

BOUNDARIES_SOURCE: str = f"{BOUNDARIES_DIR}/ne_10m_admin_0_countries.shp"

RIVERS_DIR: str = "ne_10m_rivers_lake_centerlines"
"""Directory holding the Natural Earth river/lake centerline shapefile."""

RIVERS_SOURCE: str = f"{RIVERS_DIR}/ne_10m_rivers_lake_centerlines.shp"

ELEVATION_SOURCE: str = "ETOPO1_Ice_g_geotiff.tif"
"""Raw global elevation raster without embedded spatial reference."""

# ---------------------------------------------------------------------------
# Intermediate artifacts
# ---------------------------------------------------------------------------

BOUNDARIES_SELECTION: str = f"{BOUNDARIES_DIR}/cropBySelection.shp"
BOUNDARIES_WINDOW: str = f"{BOUNDARIES_DIR}/cropByWindow.shp"
BOUNDARIES_GEOJSON: str = f"{BOUNDARIES_DIR}/boundaries.geo.json"

RIVERS_WINDOW: str = f"{RIVERS_DIR}/cropByWindow.shp"
RIVERS_GEOJSON: str = f"{RIVERS_DIR}/rivers.geo.json"

ELEVATION_GEOREFERENCED: str = "ETOPO1.tif"
ELEVATION_CUTLINE: str = "cropByCutline.tif"
ELEVATION_WINDOW: str = "cropByWindow.tif"
ELEVATION_REPROJECTED: str = "reprojected.tif"
HILLSHADE: str = "shadedrelief.tif"
TRANSPARENT_PNG: str = "transparent.png"

# ---------------------------------------------------------------------------
# Final artifacts (``{slug}`` is the bounding-window slug)
# ---------------------------------------------------------------------------

FINAL_IMAGE_TEMPLATE: str = "relief_{slug}.webp"
FINAL_BOUNDARIES_TEMPLATE: str = "boundaries_{slug}.topo.json"
FINAL_RIVERS_TEMPLATE: str = "rivers_{slug}.topo.json"

TOPOJSON_SUFFIX: str = ".topo.json"

# ---------------------------------------------------------------------------
# TopoJSON object names (``geo2topo name=file``)
# ---------------------------------------------------------------------------

BOUNDARIES_OBJECT: str = "boundaries"
RIVERS_OBJECT: str = "rivers"

# ---------------------------------------------------------------------------
# Source attribute names
# ---------------------------------------------------------------------------

COUNTRY_CODE_FIELD: str = "adm0_a3"
"""Admin-0 attribute matched by the selection filter."""

SOURCE_CRS: str = "EPSG:4326"
"""Spatial reference assigned to the raw elevation raster."""

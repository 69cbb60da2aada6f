"""Deterministic artifact path generation for a pipeline run.

Every intermediate and final file of a run lives under the run's
workspace directory:

    {workspace}/ne_10m_admin_0_countries/cropBySelection.shp
    {workspace}/cropByWindow.tif
    {workspace}/relief_{north}_{west}_{east}_{south}.webp
    ...

Final artifact names embed the bounding-window slug, so requests for
different windows never publish over each other.

Engineering standards:
- Idempotent: the same workspace and window always produce the same paths.
- Explicit: filenames come from ``core.constants``, no inline literals.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from relief_maps.core import constants
from relief_maps.models.request import BoundingWindow

# Published TopoJSON names: window slug characters plus the fixed suffix.
_TOPOJSON_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+" + re.escape(constants.TOPOJSON_SUFFIX) + "$")


@dataclass(frozen=True, slots=True)
class ArtifactPaths:
    """All file paths touched by one pipeline run.

    ``*_source`` paths are pristine inputs copied into the workspace;
    the ``final_*`` paths are the three published artifacts.
    """

    boundaries_source: Path
    rivers_source: Path
    elevation_source: Path
    boundaries_selection: Path
    boundaries_window: Path
    boundaries_geojson: Path
    rivers_window: Path
    rivers_geojson: Path
    elevation_georeferenced: Path
    elevation_cutline: Path
    elevation_window: Path
    elevation_reprojected: Path
    hillshade: Path
    transparent_png: Path
    final_image: Path
    final_boundaries: Path
    final_rivers: Path

    def finals(self) -> tuple[Path, Path, Path]:
        return (self.final_image, self.final_boundaries, self.final_rivers)


def final_names(window: BoundingWindow) -> tuple[str, str, str]:
    """Return ``(image, boundaries, rivers)`` filenames for *window*."""
    slug = window.slug
    return (
        constants.FINAL_IMAGE_TEMPLATE.format(slug=slug),
        constants.FINAL_BOUNDARIES_TEMPLATE.format(slug=slug),
        constants.FINAL_RIVERS_TEMPLATE.format(slug=slug),
    )


def build_artifact_paths(workspace: Path, window: BoundingWindow) -> ArtifactPaths:
    """Build every artifact path for a run in *workspace* targeting *window*."""
    image, boundaries, rivers = final_names(window)
    return ArtifactPaths(
        boundaries_source=workspace / constants.BOUNDARIES_SOURCE,
        rivers_source=workspace / constants.RIVERS_SOURCE,
        elevation_source=workspace / constants.ELEVATION_SOURCE,
        boundaries_selection=workspace / constants.BOUNDARIES_SELECTION,
        boundaries_window=workspace / constants.BOUNDARIES_WINDOW,
        boundaries_geojson=workspace / constants.BOUNDARIES_GEOJSON,
        rivers_window=workspace / constants.RIVERS_WINDOW,
        rivers_geojson=workspace / constants.RIVERS_GEOJSON,
        elevation_georeferenced=workspace / constants.ELEVATION_GEOREFERENCED,
        elevation_cutline=workspace / constants.ELEVATION_CUTLINE,
        elevation_window=workspace / constants.ELEVATION_WINDOW,
        elevation_reprojected=workspace / constants.ELEVATION_REPROJECTED,
        hillshade=workspace / constants.HILLSHADE,
        transparent_png=workspace / constants.TRANSPARENT_PNG,
        final_image=workspace / image,
        final_boundaries=workspace / boundaries,
        final_rivers=workspace / rivers,
    )


def published_paths(public_dir: Path, window: BoundingWindow) -> tuple[Path, Path, Path]:
    """Return where the final artifacts for *window* are published."""
    return tuple(public_dir / name for name in final_names(window))  # type: ignore[return-value]


def is_topojson_filename(name: str) -> bool:
    """Return True if *name* is a bare ``*.topo.json`` filename (no path parts)."""
    return bool(_TOPOJSON_NAME_RE.match(name)) and not name.startswith(".")

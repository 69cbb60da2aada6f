"""The fifteen pipeline stages as data.

``build_stages`` returns an ordered list of ``Stage`` descriptors for one
run.  Each descriptor names its tool, its full argument vector, the
files it reads and the files it writes; the driver in
``orchestrator.py`` walks the list and never needs to know what a stage
does.

Stage order (each output feeds a later stage)::

     1 crop_boundaries_by_selection   ogr2ogr -where adm0_a3 IN (...)
     2 crop_rivers_by_window          ogr2ogr -clipsrc
     3 crop_boundaries_by_window      ogr2ogr -clipsrc
     4 assign_elevation_srs           gdal_translate -a_srs
     5 crop_elevation_by_cutline      gdalwarp -cutline -crop_to_cutline
     6 crop_elevation_by_window       gdal_translate -projwin
     7 reproject_elevation            gdalwarp -t_srs
     8 hillshade                      gdaldem hillshade
     9 make_transparent               convert -resize -trim -transparent
    10 encode_image                   convert -strip webp:target-size
    11 rivers_to_geojson              ogr2ogr -f GeoJSON
    12 boundaries_to_geojson          ogr2ogr -f GeoJSON
    13 rivers_to_topojson             geo2topo (stdout)
    14 boundaries_to_topojson         geo2topo (stdout) + property rewrite
    15 publish                        copy finals to the public directory
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from relief_maps.core import constants
from relief_maps.core.config import PipelineConfig
from relief_maps.models.catalog import CountryCatalog
from relief_maps.models.request import (
    BoundingWindow,
    ContinentSelection,
    CountrySelection,
    MapRequest,
    RequestValidationError,
    format_number,
)
from relief_maps.pipeline.topology import rewrite_topology_file
from relief_maps.pipeline.workspace import publish_artifacts
from relief_maps.utils.artifact_paths import ArtifactPaths

OGR2OGR = "ogr2ogr"
GDAL_TRANSLATE = "gdal_translate"
GDALWARP = "gdalwarp"
GDALDEM = "gdaldem"
CONVERT = "convert"
GEO2TOPO = "geo2topo"


@dataclass(frozen=True, slots=True)
class RunContext:
    """Everything one run needs to name its files.

    Created per request and passed explicitly; nothing about a run is
    held in module state.
    """

    run_id: str
    workspace: Path
    public_dir: Path
    window: BoundingWindow
    paths: ArtifactPaths


@dataclass(frozen=True, slots=True)
class Stage:
    """One pipeline step.

    Exactly one of ``command`` (an external tool) or ``action`` (an
    in-process callable) is set.  ``post`` runs after a successful
    ``command`` and may raise to fail the stage.
    """

    name: str
    index: int = 0
    command: str = ""
    args: tuple[str, ...] = ()
    inputs: tuple[Path, ...] = ()
    outputs: tuple[Path, ...] = ()
    stdout_path: Path | None = None
    merge_stderr: bool = False
    action: Callable[[], object] | None = None
    post: Callable[[], object] | None = None

    @property
    def is_external(self) -> bool:
        return self.action is None

    def describe(self) -> str:
        """Human-readable command line (for logs only, not shell-safe)."""
        if not self.is_external:
            return f"<{self.name}>"
        return " ".join((self.command, *self.args))


def _quote_sql(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_country_filter(
    countries: list[CountrySelection],
    continents: list[ContinentSelection],
    catalog: CountryCatalog,
) -> str:
    """Build the ``ogr2ogr -where`` predicate for the selection.

    Explicit country codes come first (request order), then every
    catalog country on a selected continent (catalog order).  Codes are
    single-quoted and comma-joined; duplicates are kept.

    Raises:
        RequestValidationError: If the selection resolves to no codes.
    """
    codes = [c.code for c in countries]
    codes.extend(catalog.codes_for_continents([c.continent for c in continents]))
    if not codes:
        msg = "selection matches no countries"
        raise RequestValidationError(msg, code="EMPTY_SELECTION")
    return f"{constants.COUNTRY_CODE_FIELD} IN ({','.join(_quote_sql(c) for c in codes)})"


def hillshade_args(config: PipelineConfig) -> list[str]:
    """Shading options for ``gdaldem hillshade``."""
    if config.hillshade_mode == "compute_edges":
        return ["-compute_edges"]
    return [
        "-z",
        format_number(config.hillshade_z_factor),
        "-s",
        format_number(config.hillshade_scale),
        "-az",
        format_number(config.hillshade_azimuth),
        "-alt",
        format_number(config.hillshade_altitude),
    ]


def build_stages(
    request: MapRequest,
    context: RunContext,
    config: PipelineConfig,
    catalog: CountryCatalog,
) -> list[Stage]:
    """Return the ordered stage list for one run.

    Raises:
        RequestValidationError: If the selection resolves to no countries.
    """
    p = context.paths
    window = context.window
    nodata = format_number(config.elevation_nodata)
    where = build_country_filter(request.countries, request.continents, catalog)

    stages = [
        Stage(
            name="crop_boundaries_by_selection",
            command=OGR2OGR,
            args=("-where", where, "-lco", "ENCODING=UTF-8",
                  str(p.boundaries_selection), str(p.boundaries_source)),
            inputs=(p.boundaries_source,),
            outputs=(p.boundaries_selection,),
        ),
        Stage(
            name="crop_rivers_by_window",
            command=OGR2OGR,
            args=("-clipsrc", *window.clip_bounds(),
                  str(p.rivers_window), str(p.rivers_source)),
            inputs=(p.rivers_source,),
            outputs=(p.rivers_window,),
        ),
        Stage(
            name="crop_boundaries_by_window",
            command=OGR2OGR,
            args=("-clipsrc", *window.clip_bounds(),
                  str(p.boundaries_window), str(p.boundaries_selection)),
            inputs=(p.boundaries_selection,),
            outputs=(p.boundaries_window,),
        ),
        Stage(
            name="assign_elevation_srs",
            command=GDAL_TRANSLATE,
            args=("-a_srs", constants.SOURCE_CRS, "-a_nodata", nodata,
                  str(p.elevation_source), str(p.elevation_georeferenced)),
            inputs=(p.elevation_source,),
            outputs=(p.elevation_georeferenced,),
        ),
        Stage(
            name="crop_elevation_by_cutline",
            command=GDALWARP,
            args=("-cutline", str(p.boundaries_window), "-crop_to_cutline",
                  "-dstalpha", "-dstnodata", nodata,
                  str(p.elevation_georeferenced), str(p.elevation_cutline)),
            inputs=(p.elevation_georeferenced, p.boundaries_window),
            outputs=(p.elevation_cutline,),
        ),
        Stage(
            name="crop_elevation_by_window",
            command=GDAL_TRANSLATE,
            args=("-projwin", *window.projwin(), "-a_nodata", nodata,
                  str(p.elevation_cutline), str(p.elevation_window)),
            inputs=(p.elevation_cutline,),
            outputs=(p.elevation_window,),
        ),
        Stage(
            name="reproject_elevation",
            command=GDALWARP,
            args=("-t_srs", config.target_crs,
                  str(p.elevation_window), str(p.elevation_reprojected)),
            inputs=(p.elevation_window,),
            outputs=(p.elevation_reprojected,),
        ),
        Stage(
            name="hillshade",
            command=GDALDEM,
            args=("hillshade", str(p.elevation_reprojected), str(p.hillshade),
                  *hillshade_args(config)),
            inputs=(p.elevation_reprojected,),
            outputs=(p.hillshade,),
        ),
        Stage(
            name="make_transparent",
            command=CONVERT,
            args=(str(p.hillshade),
                  "-resize", str(config.image_width_px),
                  "-trim", "+repage",
                  "-fuzz", f"{format_number(config.transparent_fuzz_pct)}%",
                  "-transparent", config.transparent_color,
                  str(p.transparent_png)),
            inputs=(p.hillshade,),
            outputs=(p.transparent_png,),
        ),
        Stage(
            name="encode_image",
            command=CONVERT,
            args=(str(p.transparent_png), "-strip",
                  "-define", f"webp:target-size={config.image_target_size_bytes}",
                  str(p.final_image)),
            inputs=(p.transparent_png,),
            outputs=(p.final_image,),
        ),
        Stage(
            name="rivers_to_geojson",
            command=OGR2OGR,
            args=("-f", "GeoJSON", str(p.rivers_geojson), str(p.rivers_window)),
            inputs=(p.rivers_window,),
            outputs=(p.rivers_geojson,),
        ),
        Stage(
            name="boundaries_to_geojson",
            command=OGR2OGR,
            args=("-f", "GeoJSON", str(p.boundaries_geojson), str(p.boundaries_window)),
            inputs=(p.boundaries_window,),
            outputs=(p.boundaries_geojson,),
        ),
        Stage(
            name="rivers_to_topojson",
            command=GEO2TOPO,
            args=(f"{constants.RIVERS_OBJECT}={p.rivers_geojson}",),
            inputs=(p.rivers_geojson,),
            outputs=(p.final_rivers,),
            stdout_path=p.final_rivers,
        ),
        Stage(
            name="boundaries_to_topojson",
            command=GEO2TOPO,
            args=(f"{constants.BOUNDARIES_OBJECT}={p.boundaries_geojson}",),
            inputs=(p.boundaries_geojson,),
            outputs=(p.final_boundaries,),
            stdout_path=p.final_boundaries,
            post=functools.partial(
                rewrite_topology_file,
                p.final_boundaries,
                strict=config.topology_rewrite_strict,
            ),
        ),
        Stage(
            name="publish",
            inputs=p.finals(),
            outputs=tuple(context.public_dir / f.name for f in p.finals()),
            action=functools.partial(publish_artifacts, p.finals(), context.public_dir),
        ),
    ]

    return [replace(stage, index=i) for i, stage in enumerate(stages, start=1)]

"""Pipeline configuration loaded from environment variables.

All configuration values have defaults matching the tool parameters the
map client was designed against.  Azure Functions app settings (or
``local.settings.json`` for local dev) are the source of truth.

Fail-fast validation:
    ``from_env()`` raises ``ConfigValidationError`` if any value is out
    of its valid range, so a bad setting surfaces at startup rather than
    as an obscure tool failure half-way through a pipeline run.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from pathlib import Path

from relief_maps.core.exceptions import PipelineError

HILLSHADE_MODES: frozenset[str] = frozenset({"directional", "compute_edges"})

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


class ConfigValidationError(PipelineError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
        message: Human-readable description of the valid range.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        self.message = message
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Immutable pipeline configuration.

    Loaded once per process and threaded through every pipeline run.

    Attributes:
        source_dir: Pristine source data copied into each workspace.
        workspace_root: Parent of the per-request workspace directories.
        public_dir: Directory final artifacts are published into.
        country_catalog_path: Country catalog JSON (empty = packaged seed).
        target_crs: CRS the elevation raster is reprojected to.
        elevation_nodata: Nodata value assigned to elevation rasters.
        hillshade_mode: ``directional`` (z/s/az/alt) or ``compute_edges``.
        hillshade_z_factor: Vertical exaggeration.
        hillshade_scale: Ratio of vertical to horizontal units.
        hillshade_azimuth: Sun azimuth in degrees.
        hillshade_altitude: Sun altitude in degrees.
        image_width_px: Width the hillshade image is resized to.
        transparent_fuzz_pct: Color distance tolerance for the color key.
        transparent_color: Color made transparent in the relief image.
        image_target_size_bytes: Target compressed size of the final image.
        stage_timeout_seconds: Per-stage limit (0 = unlimited).
        topology_rewrite_strict: Fail the run if the property rewrite fails.
        workspace_keep_runs: Run workspaces retained after success (0 = all).
    """

    source_dir: str = "original"
    workspace_root: str = "data"
    public_dir: str = "public"
    country_catalog_path: str = ""
    target_crs: str = "EPSG:3857"
    elevation_nodata: float = 0.0
    hillshade_mode: str = "directional"
    hillshade_z_factor: float = 5.0
    hillshade_scale: float = 111_120.0
    hillshade_azimuth: float = 315.0
    hillshade_altitude: float = 60.0
    image_width_px: int = 2400
    transparent_fuzz_pct: float = 7.0
    transparent_color: str = "#DDDDDD"
    image_target_size_bytes: int = 400_000
    stage_timeout_seconds: float = 0.0
    topology_rewrite_strict: bool = True
    workspace_keep_runs: int = 10

    @property
    def source_path(self) -> Path:
        return Path(self.source_dir)

    @property
    def workspace_root_path(self) -> Path:
        return Path(self.workspace_root)

    @property
    def public_path(self) -> Path:
        return Path(self.public_dir)

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Load and validate configuration from environment variables.

        Raises:
            ConfigValidationError: If a value is out of range or cannot
                be parsed (e.g. ``IMAGE_WIDTH_PX=wide``), a required
                string value is empty, or a boolean is unrecognised.
        """
        config = cls(
            source_dir=os.getenv("SOURCE_DIR", "original"),
            workspace_root=os.getenv("WORKSPACE_ROOT", "data"),
            public_dir=os.getenv("PUBLIC_DIR", "public"),
            country_catalog_path=os.getenv("COUNTRY_CATALOG_PATH", ""),
            target_crs=os.getenv("TARGET_CRS", "EPSG:3857"),
            elevation_nodata=_env_float("ELEVATION_NODATA", "0"),
            hillshade_mode=os.getenv("HILLSHADE_MODE", "directional"),
            hillshade_z_factor=_env_float("HILLSHADE_Z_FACTOR", "5"),
            hillshade_scale=_env_float("HILLSHADE_SCALE", "111120"),
            hillshade_azimuth=_env_float("HILLSHADE_AZIMUTH", "315"),
            hillshade_altitude=_env_float("HILLSHADE_ALTITUDE", "60"),
            image_width_px=_env_int("IMAGE_WIDTH_PX", "2400"),
            transparent_fuzz_pct=_env_float("TRANSPARENT_FUZZ_PCT", "7"),
            transparent_color=os.getenv("TRANSPARENT_COLOR", "#DDDDDD"),
            image_target_size_bytes=_env_int("IMAGE_TARGET_SIZE_BYTES", "400000"),
            stage_timeout_seconds=_env_float("STAGE_TIMEOUT_SECONDS", "0"),
            topology_rewrite_strict=_parse_bool(
                "TOPOLOGY_REWRITE_STRICT", os.getenv("TOPOLOGY_REWRITE_STRICT", "true")
            ),
            workspace_keep_runs=_env_int("WORKSPACE_KEEP_RUNS", "10"),
        )
        _validate(config)
        return config


def _env_float(key: str, default: str) -> float:
    raw = os.getenv(key, default)
    try:
        return float(raw)
    except ValueError:
        raise ConfigValidationError(key, raw, "must be a number") from None


def _env_int(key: str, default: str) -> int:
    raw = os.getenv(key, default)
    try:
        return int(raw)
    except ValueError:
        raise ConfigValidationError(key, raw, "must be an integer") from None


def _parse_bool(key: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigValidationError(key, raw, "must be a boolean (true/false)")


def _validate(config: PipelineConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    for key, value in (
        ("SOURCE_DIR", config.source_dir),
        ("WORKSPACE_ROOT", config.workspace_root),
        ("PUBLIC_DIR", config.public_dir),
        ("TARGET_CRS", config.target_crs),
        ("TRANSPARENT_COLOR", config.transparent_color),
    ):
        if not value:
            raise ConfigValidationError(key, value, "must not be empty")

    if not math.isfinite(config.elevation_nodata):
        raise ConfigValidationError(
            "ELEVATION_NODATA",
            config.elevation_nodata,
            "must be a finite number",
        )

    if config.hillshade_mode not in HILLSHADE_MODES:
        raise ConfigValidationError(
            "HILLSHADE_MODE",
            config.hillshade_mode,
            f"must be one of {', '.join(sorted(HILLSHADE_MODES))}",
        )

    if not 0.0 <= config.hillshade_azimuth < 360.0:
        raise ConfigValidationError(
            "HILLSHADE_AZIMUTH",
            config.hillshade_azimuth,
            "must be in [0, 360) (degrees)",
        )

    if not 0.0 < config.hillshade_altitude <= 90.0:
        raise ConfigValidationError(
            "HILLSHADE_ALTITUDE",
            config.hillshade_altitude,
            "must be in (0, 90] (degrees)",
        )

    if config.image_width_px <= 0:
        raise ConfigValidationError(
            "IMAGE_WIDTH_PX",
            config.image_width_px,
            "must be > 0 (pixels)",
        )

    if not 0.0 <= config.transparent_fuzz_pct <= 100.0:
        raise ConfigValidationError(
            "TRANSPARENT_FUZZ_PCT",
            config.transparent_fuzz_pct,
            "must be between 0 and 100 (percentage)",
        )

    if config.image_target_size_bytes <= 0:
        raise ConfigValidationError(
            "IMAGE_TARGET_SIZE_BYTES",
            config.image_target_size_bytes,
            "must be > 0 (bytes)",
        )

    if config.stage_timeout_seconds < 0:
        raise ConfigValidationError(
            "STAGE_TIMEOUT_SECONDS",
            config.stage_timeout_seconds,
            "must be >= 0 (seconds, 0 disables the limit)",
        )

    if config.workspace_keep_runs < 0:
        raise ConfigValidationError(
            "WORKSPACE_KEEP_RUNS",
            config.workspace_keep_runs,
            "must be >= 0 (0 keeps every run)",
        )

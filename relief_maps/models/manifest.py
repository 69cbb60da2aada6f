"""Pydantic run manifest: the per-run "flight recorder".

Written to ``{workspace}/run.json`` when a run finishes, whether it
succeeded or failed: what was requested, which stages ran with which
command lines, how long each took, and where the outputs are.

The schema is split into nested sections:
- **request**: Selection and bounding window
- **stages**: One record per executed stage
- **outputs**: Final artifact paths (empty on failure)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger("relief_maps.models.manifest")

SCHEMA_VERSION = "relief-run-v1"
MANIFEST_FILENAME = "run.json"


class RequestRecord(BaseModel):
    """What the client asked for."""

    countries: list[str] = Field(default_factory=list)
    continents: list[str] = Field(default_factory=list)
    north: float = 0.0
    south: float = 0.0
    east: float = 0.0
    west: float = 0.0


class StageRecord(BaseModel):
    """One executed stage.

    Attributes:
        index: One-based position in the pipeline.
        name: Stage identifier.
        command: Command line (for external tools) or stage name.
        returncode: Process exit code (0 for in-process stages).
        duration_s: Wall-clock duration in seconds.
    """

    index: int
    name: str
    command: str = ""
    returncode: int = 0
    duration_s: float = 0.0


class OutputRecord(BaseModel):
    image: str = ""
    topo: str = ""
    rivers: str = ""
    published: list[str] = Field(default_factory=list)


class RunManifest(BaseModel):
    """Top-level run record.

    Attributes:
        schema_version: Schema identifier for forward compatibility.
        run_id: Run identifier (workspace directory name).
        status: ``"success"`` or ``"failed"``.
        started_at: Run start (ISO 8601, UTC).
        duration_s: Total duration in seconds.
        request: The validated request.
        stages: Executed stages, in order.
        outputs: Final artifacts.
        error: ``PipelineError.to_error_dict()`` of the failure, if any.
    """

    schema_version: str = Field(default=SCHEMA_VERSION, alias="$schema")
    run_id: str
    status: str = "pending"
    started_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    duration_s: float = 0.0
    request: RequestRecord = Field(default_factory=RequestRecord)
    stages: list[StageRecord] = Field(default_factory=list)
    outputs: OutputRecord = Field(default_factory=OutputRecord)
    error: dict[str, object] | None = None

    model_config = {"populate_by_name": True}

    def to_json(self, *, indent: int = 2) -> str:
        """Serialise to a JSON string using the ``$schema`` alias."""
        return self.model_dump_json(indent=indent, by_alias=True)


def write_manifest(workspace: Path, manifest: RunManifest) -> Path | None:
    """Write *manifest* into *workspace*.

    The manifest is diagnostic output: a write failure is logged and
    ``None`` returned, the run's own outcome stands.
    """
    path = workspace / MANIFEST_FILENAME
    try:
        path.write_text(manifest.to_json(), encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not write run manifest | path=%s | error=%s", path, exc)
        return None
    return path

"""Shared pytest fixtures for the Relief Maps test suite."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from relief_maps.core import constants
from relief_maps.core.config import PipelineConfig
from relief_maps.models.catalog import CountryCatalog
from relief_maps.models.request import BoundingWindow, CountrySelection, MapRequest
from relief_maps.pipeline.runner import CompletedStage, StageFailure

# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

SAMPLE_TOPOLOGY: dict[str, object] = {
    "type": "Topology",
    "objects": {
        "boundaries": {
            "type": "GeometryCollection",
            "geometries": [
                {
                    "type": "Polygon",
                    "arcs": [[0]],
                    "properties": {
                        "NAME": "United States of America",
                        "SOV_A3": "US1",
                        "POP_EST": 328239523,
                        "CONTINENT": "North America",
                    },
                },
            ],
        },
    },
    "arcs": [[[0, 0], [1, 1], [0, 1], [0, 0]]],
}

SAMPLE_CATALOG: list[dict[str, str]] = [
    {"name": "France", "code": "FRA", "continent": "Europe"},
    {"name": "Germany", "code": "DEU", "continent": "Europe"},
    {"name": "Canada", "code": "CAN", "continent": "North America"},
    {"name": "United States of America", "code": "USA", "continent": "North America"},
    {"name": "Mexico", "code": "MEX", "continent": "North America"},
]


class FakeRunner:
    """``StageRunner`` that records calls instead of launching tools.

    Every absolute-path argument that does not exist yet (and whose
    parent directory does) is created as an empty file, so the next
    stage's input check passes.  ``stdout_path`` receives a small valid
    topology.

    Args:
        fail_stage: Stage name to fail with exit code 1.
        topology: Document written to ``stdout_path``.
        pause_at: Stage name to hold at: ``reached`` is set on arrival and
            the call waits for ``resume`` before completing.
    """

    def __init__(
        self,
        *,
        fail_stage: str = "",
        topology: dict[str, object] | None = None,
        pause_at: str = "",
    ) -> None:
        self.fail_stage = fail_stage
        self.pause_at = pause_at
        self.reached = asyncio.Event()
        self.resume = asyncio.Event()
        self.topology = topology if topology is not None else SAMPLE_TOPOLOGY
        self.calls: list[tuple[str, tuple[str, ...], str]] = []

    @property
    def stages(self) -> list[str]:
        return [stage for _, _, stage in self.calls]

    async def run(
        self,
        command: str,
        args: list[str],
        *,
        stage: str = "",
        stdout_path: Path | None = None,
        merge_stderr: bool = False,
    ) -> CompletedStage:
        self.calls.append((command, tuple(args), stage))

        if stage == self.pause_at:
            self.reached.set()
            await self.resume.wait()

        if stage == self.fail_stage:
            raise StageFailure(
                f"{stage}: {command} exited with code 1",
                command=command,
                exit_code=1,
                stage=stage,
                stderr_tail=("ERROR 1: simulated failure",),
            )

        for arg in args:
            path = Path(arg)
            if path.is_absolute() and not path.exists() and path.parent.is_dir():
                path.touch()
        if stdout_path is not None:
            stdout_path.write_text(json.dumps(self.topology), encoding="utf-8")

        return CompletedStage(command=command, args=tuple(args), returncode=0, duration_seconds=0.0)


# ---------------------------------------------------------------------------
# Filesystem fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def source_dir(tmp_path: Path) -> Path:
    """Pristine source directory with placeholder datasets."""
    root = tmp_path / "original"
    for relative in (
        constants.BOUNDARIES_SOURCE,
        constants.RIVERS_SOURCE,
        constants.ELEVATION_SOURCE,
    ):
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"placeholder")
    return root


@pytest.fixture()
def pipeline_config(tmp_path: Path, source_dir: Path) -> PipelineConfig:
    """Configuration rooted in the test's temporary directory."""
    return PipelineConfig(
        source_dir=str(source_dir),
        workspace_root=str(tmp_path / "data"),
        public_dir=str(tmp_path / "public"),
    )


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def catalog() -> CountryCatalog:
    """Five-country catalog across two continents."""
    return CountryCatalog.from_list(SAMPLE_CATALOG)


@pytest.fixture()
def window() -> BoundingWindow:
    """Contiguous-US window."""
    return BoundingWindow(north=50.0, south=24.0, east=-66.0, west=-125.0)


@pytest.fixture()
def map_request(window: BoundingWindow) -> MapRequest:
    """Request selecting the USA only."""
    return MapRequest(window=window, countries=[CountrySelection(code="USA")])


@pytest.fixture()
def request_body() -> dict[str, object]:
    """Valid ``POST /maps/countries`` body."""
    return {
        "countries": [{"code": "USA", "continent": "North America"}],
        "continents": [],
        "north": 50,
        "south": 24,
        "east": -66,
        "west": -125,
    }


@pytest.fixture()
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture()
def runner_factory() -> type[FakeRunner]:
    """The ``FakeRunner`` class, for tests that need a configured instance."""
    return FakeRunner

"""Tests for the pipeline driver.

Runs the full fifteen-stage pipeline against ``FakeRunner`` (no GIS
tools) and checks ordering, short-circuiting, workspace isolation,
publishing and the run manifest.
"""

from __future__ import annotations

import asyncio
import json
import shutil
from dataclasses import replace
from pathlib import Path

import pytest

from relief_maps.core import constants
from relief_maps.core.config import PipelineConfig
from relief_maps.models.catalog import CountryCatalog
from relief_maps.models.manifest import MANIFEST_FILENAME
from relief_maps.models.request import MapRequest, RequestValidationError
from relief_maps.pipeline.orchestrator import (
    StageInputError,
    create_run_context,
    run_pipeline,
    run_stage,
)
from relief_maps.pipeline.runner import StageFailure
from relief_maps.pipeline.stages import Stage
from relief_maps.pipeline.topology import TopologyRewriteError
from relief_maps.pipeline.workspace import WorkspaceError, active_runs

EXTERNAL_STAGE_COUNT = 14


class TestRunPipelineSuccess:
    """Happy path."""

    @pytest.mark.asyncio()
    async def test_runs_all_stages_in_order(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        fake_runner,
    ) -> None:
        result = await run_pipeline(
            map_request, config=pipeline_config, catalog=catalog, runner=fake_runner
        )

        assert len(fake_runner.calls) == EXTERNAL_STAGE_COUNT
        assert fake_runner.stages[0] == "crop_boundaries_by_selection"
        assert fake_runner.stages[-1] == "boundaries_to_topojson"
        assert [s.index for s in result.stages] == list(range(1, 16))
        assert result.stages[-1].name == "publish"

    @pytest.mark.asyncio()
    async def test_response_paths_are_workspace_finals(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        fake_runner,
    ) -> None:
        result = await run_pipeline(
            map_request,
            config=pipeline_config,
            catalog=catalog,
            runner=fake_runner,
            run_id="fixed-run",
        )

        workspace = pipeline_config.workspace_root_path / "fixed-run"
        assert result.to_response() == {
            "topo": str(workspace / "boundaries_50_-125_-66_24.topo.json"),
            "rivers": str(workspace / "rivers_50_-125_-66_24.topo.json"),
            "image": str(workspace / "relief_50_-125_-66_24.webp"),
            "run_id": "fixed-run",
        }

    @pytest.mark.asyncio()
    async def test_boundaries_properties_rewritten(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        fake_runner,
    ) -> None:
        result = await run_pipeline(
            map_request, config=pipeline_config, catalog=catalog, runner=fake_runner
        )

        topo = json.loads(result.topo.read_text(encoding="utf-8"))
        props = topo["objects"]["boundaries"]["geometries"][0]["properties"]
        assert props == {
            "id": "United States of America_US1",
            "name": "United States of America",
            "sov": "US1",
        }

    @pytest.mark.asyncio()
    async def test_finals_published(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        fake_runner,
    ) -> None:
        result = await run_pipeline(
            map_request, config=pipeline_config, catalog=catalog, runner=fake_runner
        )

        assert all(p.is_file() for p in result.published)
        assert result.published[1].read_bytes() == result.topo.read_bytes()

    @pytest.mark.asyncio()
    async def test_manifest_written(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        fake_runner,
    ) -> None:
        result = await run_pipeline(
            map_request, config=pipeline_config, catalog=catalog, runner=fake_runner
        )

        manifest = json.loads((result.workspace / MANIFEST_FILENAME).read_text(encoding="utf-8"))
        assert manifest["$schema"] == "relief-run-v1"
        assert manifest["status"] == "success"
        assert manifest["run_id"] == result.run_id
        assert manifest["request"]["countries"] == ["USA"]
        assert len(manifest["stages"]) == 15
        assert manifest["outputs"]["image"] == str(result.image)
        assert manifest["error"] is None

    @pytest.mark.asyncio()
    async def test_rerun_is_idempotent(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        runner_factory,
    ) -> None:
        """Same run id twice: the workspace is reset, not appended to."""
        for _ in range(2):
            result = await run_pipeline(
                map_request,
                config=pipeline_config,
                catalog=catalog,
                runner=runner_factory(),
                run_id="same",
            )
        assert len(result.stages) == 15


class TestRunPipelineFailure:
    """First failure stops the run."""

    @pytest.mark.asyncio()
    async def test_stage_seven_failure_short_circuits(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        runner_factory,
    ) -> None:
        runner = runner_factory(fail_stage="reproject_elevation")

        with pytest.raises(StageFailure) as exc_info:
            await run_pipeline(
                map_request,
                config=pipeline_config,
                catalog=catalog,
                runner=runner,
                run_id="failing-run",
            )

        assert len(runner.calls) == 7
        assert runner.stages[-1] == "reproject_elevation"
        err = exc_info.value
        assert err.stage == "reproject_elevation"
        assert err.correlation_id == "failing-run"

        context = create_run_context(map_request.window, pipeline_config, run_id="failing-run")
        paths = context.paths
        completed = (
            paths.boundaries_selection,
            paths.rivers_window,
            paths.boundaries_window,
            paths.elevation_georeferenced,
            paths.elevation_cutline,
            paths.elevation_window,
        )
        never_reached = (
            paths.elevation_reprojected,
            paths.hillshade,
            paths.transparent_png,
            paths.final_image,
            paths.rivers_geojson,
            paths.boundaries_geojson,
            paths.final_rivers,
            paths.final_boundaries,
        )
        assert all(p.is_file() for p in completed)
        assert not any(p.exists() for p in never_reached)
        assert not any(pipeline_config.public_path.glob("*"))

    @pytest.mark.asyncio()
    async def test_failure_manifest_records_error(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        runner_factory,
    ) -> None:
        with pytest.raises(StageFailure):
            await run_pipeline(
                map_request,
                config=pipeline_config,
                catalog=catalog,
                runner=runner_factory(fail_stage="hillshade"),
                run_id="failing-run",
            )

        path = pipeline_config.workspace_root_path / "failing-run" / MANIFEST_FILENAME
        manifest = json.loads(path.read_text(encoding="utf-8"))
        assert manifest["status"] == "failed"
        assert len(manifest["stages"]) == 7
        assert manifest["error"]["stage"] == "hillshade"
        assert manifest["error"]["exit_code"] == 1

    @pytest.mark.asyncio()
    async def test_empty_selection_runs_nothing(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        fake_runner,
    ) -> None:
        with pytest.raises(RequestValidationError):
            await run_pipeline(
                replace(map_request, countries=[]),
                config=pipeline_config,
                catalog=catalog,
                runner=fake_runner,
            )
        assert fake_runner.calls == []
        assert not pipeline_config.workspace_root_path.exists()

    @pytest.mark.asyncio()
    async def test_missing_source_dir(
        self,
        tmp_path: Path,
        map_request: MapRequest,
        catalog: CountryCatalog,
        fake_runner,
    ) -> None:
        config = PipelineConfig(
            source_dir=str(tmp_path / "nowhere"),
            workspace_root=str(tmp_path / "data"),
            public_dir=str(tmp_path / "public"),
        )
        with pytest.raises(WorkspaceError) as exc_info:
            await run_pipeline(map_request, config=config, catalog=catalog, runner=fake_runner)
        assert exc_info.value.stage == "workspace"
        assert exc_info.value.correlation_id
        assert fake_runner.calls == []

    @pytest.mark.asyncio()
    async def test_strict_rewrite_failure_fails_run(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        runner_factory,
    ) -> None:
        runner = runner_factory(topology={"type": "Topology"})
        with pytest.raises(TopologyRewriteError) as exc_info:
            await run_pipeline(map_request, config=pipeline_config, catalog=catalog, runner=runner)
        assert exc_info.value.stage == "boundaries_to_topojson"

    @pytest.mark.asyncio()
    async def test_lenient_rewrite_failure_completes(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        runner_factory,
    ) -> None:
        config = replace(pipeline_config, topology_rewrite_strict=False)
        runner = runner_factory(topology={"type": "Topology"})
        result = await run_pipeline(map_request, config=config, catalog=catalog, runner=runner)
        assert json.loads(result.topo.read_text(encoding="utf-8")) == {"type": "Topology"}

    @pytest.mark.asyncio()
    async def test_stale_published_removed_before_run(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        runner_factory,
    ) -> None:
        public = pipeline_config.public_path
        public.mkdir(parents=True)
        stale = public / "relief_50_-125_-66_24.webp"
        stale.write_bytes(b"old")

        with pytest.raises(StageFailure):
            await run_pipeline(
                map_request,
                config=pipeline_config,
                catalog=catalog,
                runner=runner_factory(fail_stage="crop_boundaries_by_selection"),
            )
        assert not stale.exists()


class TestConcurrency:
    """Concurrent requests never share a workspace."""

    @pytest.mark.asyncio()
    async def test_concurrent_runs_use_distinct_workspaces(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        runner_factory,
    ) -> None:
        results = await asyncio.gather(
            *(
                run_pipeline(
                    map_request,
                    config=pipeline_config,
                    catalog=catalog,
                    runner=runner_factory(),
                )
                for _ in range(3)
            )
        )
        workspaces = {r.workspace for r in results}
        assert len(workspaces) == 3
        assert all(w.parent == pipeline_config.workspace_root_path for w in workspaces)


class TestRunStage:
    """Single-stage execution."""

    @pytest.mark.asyncio()
    async def test_missing_input_raises(self, tmp_path: Path, fake_runner) -> None:
        stage = Stage(
            name="hillshade",
            index=8,
            command="gdaldem",
            args=("hillshade",),
            inputs=(tmp_path / "reprojected.tif",),
        )
        with pytest.raises(StageInputError) as exc_info:
            await run_stage(stage, fake_runner, run_id="r", total=15)
        assert exc_info.value.missing == [str(tmp_path / "reprojected.tif")]
        assert exc_info.value.stage == "hillshade"
        assert fake_runner.calls == []

    @pytest.mark.asyncio()
    async def test_action_stage_skips_runner(self, fake_runner) -> None:
        called = []
        stage = Stage(name="publish", index=15, action=lambda: called.append(True))
        result = await run_stage(stage, fake_runner, run_id="r", total=15)
        assert called == [True]
        assert result.command == "publish"
        assert result.returncode == 0
        assert fake_runner.calls == []

    def test_create_run_context(self, map_request: MapRequest, pipeline_config: PipelineConfig) -> None:
        context = create_run_context(map_request.window, pipeline_config, run_id="abc")
        assert context.workspace == pipeline_config.workspace_root_path / "abc"
        assert context.paths.final_image.parent == context.workspace
        assert context.public_dir == pipeline_config.public_path


class TestWorkspacePruning:
    """Pruning after a successful run only removes finished run workspaces."""

    @pytest.mark.asyncio()
    async def test_in_flight_run_survives_prune(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        runner_factory,
    ) -> None:
        slow_runner = runner_factory(pause_at="hillshade")
        slow = asyncio.create_task(
            run_pipeline(map_request, config=pipeline_config, catalog=catalog, runner=slow_runner)
        )
        await asyncio.wait_for(slow_runner.reached.wait(), timeout=10)

        fast = await run_pipeline(
            map_request,
            config=replace(pipeline_config, workspace_keep_runs=1),
            catalog=catalog,
            runner=runner_factory(),
        )
        assert fast.workspace.is_dir()

        slow_runner.resume.set()
        result = await asyncio.wait_for(slow, timeout=10)

        assert result.workspace != fast.workspace
        assert result.workspace.is_dir()
        assert result.image.is_file()
        assert len(result.stages) == 15

    @pytest.mark.asyncio()
    async def test_source_dir_under_workspace_root_survives(
        self,
        tmp_path: Path,
        source_dir: Path,
        map_request: MapRequest,
        catalog: CountryCatalog,
        runner_factory,
    ) -> None:
        data = tmp_path / "data"
        source = data / "original"
        shutil.copytree(source_dir, source)
        config = PipelineConfig(
            source_dir=str(source),
            workspace_root=str(data),
            public_dir=str(tmp_path / "public"),
            workspace_keep_runs=1,
        )

        for _ in range(2):
            await run_pipeline(map_request, config=config, catalog=catalog, runner=runner_factory())

        assert (source / constants.ELEVATION_SOURCE).is_file()
        runs = [p for p in data.iterdir() if p != source]
        assert len(runs) == 1

    @pytest.mark.asyncio()
    async def test_old_finished_runs_pruned(
        self,
        map_request: MapRequest,
        pipeline_config: PipelineConfig,
        catalog: CountryCatalog,
        runner_factory,
    ) -> None:
        config = replace(pipeline_config, workspace_keep_runs=1)
        first = await run_pipeline(map_request, config=config, catalog=catalog, runner=runner_factory())
        second = await run_pipeline(map_request, config=config, catalog=catalog, runner=runner_factory())

        assert not first.workspace.exists()
        assert second.workspace.is_dir()
        assert active_runs() == frozenset()

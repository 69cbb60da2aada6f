"""Pipeline driver for one map-generation request.

Allocates an isolated workspace, resets it from the pristine source
data, builds the stage list and runs it strictly in order:

1. Workspace: per-request directory, reset from ``SOURCE_DIR``
2. Stages 1-14: external tools via the ``StageRunner``
3. Stage 15: publish finals to ``PUBLIC_DIR``
4. Housekeeping: write ``run.json`` and prune old run workspaces

The first failure stops the run.  Nothing is rolled back: the failing
run's workspace keeps whatever the completed stages produced, which is
what an operator wants to look at.

Blocking filesystem work (workspace copy, topology rewrite, publish)
runs in a worker thread so the event loop keeps serving requests.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from relief_maps.core.config import PipelineConfig
from relief_maps.core.exceptions import ContractError, PipelineError
from relief_maps.models.catalog import CountryCatalog
from relief_maps.models.manifest import (
    OutputRecord,
    RequestRecord,
    RunManifest,
    StageRecord,
    write_manifest,
)
from relief_maps.models.request import BoundingWindow, MapRequest
from relief_maps.pipeline.runner import StageRunner
from relief_maps.pipeline.stages import RunContext, Stage, build_stages
from relief_maps.pipeline.workspace import (
    active_runs,
    new_run_id,
    prune_workspaces,
    remove_published,
    reset_workspace,
    track_active_run,
)
from relief_maps.utils.artifact_paths import build_artifact_paths, published_paths

logger = logging.getLogger("relief_maps.pipeline.orchestrator")


class StageInputError(ContractError):
    """Raised when a stage's declared input does not exist before it runs.

    Attributes:
        missing: Paths that were expected but absent.
    """

    default_code = "STAGE_INPUT_MISSING"
    http_status = 500

    def __init__(self, message: str, *, missing: list[Path], stage: str = "") -> None:
        self.missing = [str(p) for p in missing]
        super().__init__(message, stage=stage)


@dataclass(frozen=True, slots=True)
class StageResult:
    """Outcome of one completed stage."""

    index: int
    name: str
    command: str
    returncode: int
    duration_seconds: float
    stderr_tail: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Outcome of a successful run.

    Attributes:
        run_id: Run identifier (also the workspace directory name).
        workspace: The run's workspace directory.
        image: Final relief image inside the workspace.
        topo: Final boundaries TopoJSON inside the workspace.
        rivers: Final rivers TopoJSON inside the workspace.
        published: Copies of the three finals in the public directory.
        stages: Per-stage results, in execution order.
    """

    run_id: str
    workspace: Path
    image: Path
    topo: Path
    rivers: Path
    published: tuple[Path, ...]
    stages: tuple[StageResult, ...]

    def to_response(self) -> dict[str, str]:
        return {
            "topo": str(self.topo),
            "rivers": str(self.rivers),
            "image": str(self.image),
            "run_id": self.run_id,
        }


def build_manifest(
    request: MapRequest,
    run_id: str,
    results: list[StageResult],
    *,
    duration: float,
    error: PipelineError | None = None,
    result: PipelineResult | None = None,
) -> RunManifest:
    """Assemble the ``run.json`` record for a finished run."""
    window = request.window
    outputs = OutputRecord()
    if result is not None:
        outputs = OutputRecord(
            image=str(result.image),
            topo=str(result.topo),
            rivers=str(result.rivers),
            published=[str(p) for p in result.published],
        )
    return RunManifest(
        run_id=run_id,
        status="failed" if error is not None else "success",
        duration_s=round(duration, 3),
        request=RequestRecord(
            countries=[c.code for c in request.countries],
            continents=[c.continent for c in request.continents],
            north=window.north,
            south=window.south,
            east=window.east,
            west=window.west,
        ),
        stages=[
            StageRecord(
                index=r.index,
                name=r.name,
                command=r.command,
                returncode=r.returncode,
                duration_s=r.duration_seconds,
            )
            for r in results
        ],
        outputs=outputs,
        error=error.to_error_dict() if error is not None else None,
    )


def create_run_context(
    window: BoundingWindow,
    config: PipelineConfig,
    *,
    run_id: str | None = None,
) -> RunContext:
    """Allocate the naming context for a new run."""
    run_id = run_id or new_run_id(window)
    workspace = config.workspace_root_path / run_id
    return RunContext(
        run_id=run_id,
        workspace=workspace,
        public_dir=config.public_path,
        window=window,
        paths=build_artifact_paths(workspace, window),
    )


async def run_stage(stage: Stage, runner: StageRunner, *, run_id: str, total: int) -> StageResult:
    """Run a single stage after checking its inputs exist.

    Any ``PipelineError`` raised while the stage runs is re-labelled
    with the stage name and run id before propagating.

    Raises:
        StageInputError: A declared input is missing.
        PipelineError: The tool, post-step or action failed.
    """
    missing = [p for p in stage.inputs if not p.exists()]
    if missing:
        msg = f"{stage.name}: missing input(s): {', '.join(str(p) for p in missing)}"
        raise StageInputError(msg, missing=missing, stage=stage.name)

    logger.info(
        "Stage started | run=%s | stage=%d/%d %s | cmd=%s",
        run_id,
        stage.index,
        total,
        stage.name,
        stage.describe(),
    )
    start = time.monotonic()

    try:
        if stage.action is not None:
            await asyncio.to_thread(stage.action)
            returncode, stderr_tail = 0, ()
        else:
            completed = await runner.run(
                stage.command,
                list(stage.args),
                stage=stage.name,
                stdout_path=stage.stdout_path,
                merge_stderr=stage.merge_stderr,
            )
            returncode, stderr_tail = completed.returncode, completed.stderr_tail
            if stage.post is not None:
                await asyncio.to_thread(stage.post)
    except PipelineError as exc:
        exc.relabel(stage=stage.name, correlation_id=run_id)
        raise

    duration = time.monotonic() - start
    logger.info(
        "Stage completed | run=%s | stage=%d/%d %s | duration=%.2fs",
        run_id,
        stage.index,
        total,
        stage.name,
        duration,
    )
    return StageResult(
        index=stage.index,
        name=stage.name,
        command=stage.command or stage.name,
        returncode=returncode,
        duration_seconds=round(duration, 3),
        stderr_tail=stderr_tail,
    )


async def run_pipeline(
    request: MapRequest,
    *,
    config: PipelineConfig,
    catalog: CountryCatalog,
    runner: StageRunner,
    run_id: str | None = None,
) -> PipelineResult:
    """Run the full map-generation pipeline for *request*.

    Args:
        request: Validated client request.
        config: Pipeline configuration.
        catalog: Country catalog used to expand continent selections.
        runner: Executes external tools.
        run_id: Force a run id (tests); a fresh one is generated otherwise.

    Returns:
        ``PipelineResult`` with workspace and published artifact paths.

    Raises:
        PipelineError: From the workspace setup or the first failing stage,
            with ``stage`` naming where it happened and ``correlation_id``
            set to the run id.
    """
    context = create_run_context(request.window, config, run_id=run_id)
    with track_active_run(context.run_id):
        return await _execute(
            request, context, config=config, catalog=catalog, runner=runner
        )


async def _execute(
    request: MapRequest,
    context: RunContext,
    *,
    config: PipelineConfig,
    catalog: CountryCatalog,
    runner: StageRunner,
) -> PipelineResult:
    started = time.monotonic()

    logger.info(
        "Pipeline started | run=%s | window=%s | countries=%d | continents=%d",
        context.run_id,
        request.window.slug,
        len(request.countries),
        len(request.continents),
    )

    results: list[StageResult] = []
    try:
        stages = build_stages(request, context, config, catalog)
        await asyncio.to_thread(reset_workspace, context.workspace, config.source_path)
        await asyncio.to_thread(
            remove_published, published_paths(context.public_dir, request.window)
        )
        for stage in stages:
            results.append(
                await run_stage(stage, runner, run_id=context.run_id, total=len(stages))
            )
    except PipelineError as exc:
        exc.relabel(correlation_id=context.run_id)
        logger.error(
            "Pipeline failed | run=%s | stage=%s | completed=%d | code=%s | error=%s",
            context.run_id,
            exc.stage,
            len(results),
            exc.code,
            exc.message,
        )
        if context.workspace.is_dir():
            manifest = build_manifest(
                request,
                context.run_id,
                results,
                duration=time.monotonic() - started,
                error=exc,
            )
            await asyncio.to_thread(write_manifest, context.workspace, manifest)
        raise

    paths = context.paths
    result = PipelineResult(
        run_id=context.run_id,
        workspace=context.workspace,
        image=paths.final_image,
        topo=paths.final_boundaries,
        rivers=paths.final_rivers,
        published=published_paths(context.public_dir, request.window),
        stages=tuple(results),
    )

    duration = time.monotonic() - started
    manifest = build_manifest(
        request, context.run_id, results, duration=duration, result=result
    )
    await asyncio.to_thread(write_manifest, context.workspace, manifest)
    await asyncio.to_thread(
        functools.partial(
            prune_workspaces,
            config.workspace_root_path,
            config.workspace_keep_runs,
            active=active_runs(),
        )
    )

    logger.info(
        "Pipeline completed | run=%s | stages=%d | duration=%.2fs | image=%s",
        context.run_id,
        len(results),
        duration,
        paths.final_image,
    )
    return result

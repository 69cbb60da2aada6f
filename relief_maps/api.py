"""HTTP handlers for the map endpoints.

``function_app.py`` binds routes to these coroutines and nothing else,
so every handler can be exercised in tests with a plain
``func.HttpRequest`` and injected collaborators.

Status mapping:
    200  success
    400  ``ValidationError`` / ``ContractError`` (bad request body)
    404  unknown published file
    500  any other ``PipelineError`` (workspace, stage, missing stage
         input, rewrite, config)

The error status comes from ``PipelineError.http_status``.
"""

from __future__ import annotations

import functools
import json
import logging

import azure.functions as func

from relief_maps.core.config import PipelineConfig
from relief_maps.core.exceptions import PipelineError
from relief_maps.core.ingress import build_map_request, decode_json_body
from relief_maps.models.catalog import CountryCatalog, load_catalog
from relief_maps.pipeline.orchestrator import run_pipeline
from relief_maps.pipeline.runner import StageRunner, SubprocessRunner
from relief_maps.utils.artifact_paths import is_topojson_filename

logger = logging.getLogger("relief_maps.api")

JSON_MIMETYPE = "application/json"


@functools.lru_cache(maxsize=1)
def get_config() -> PipelineConfig:
    """Load configuration once per worker process."""
    return PipelineConfig.from_env()


@functools.lru_cache(maxsize=1)
def get_catalog() -> CountryCatalog:
    """Load the country catalog once per worker process."""
    return load_catalog(get_config().country_catalog_path or None)


def json_response(body: object, *, status_code: int = 200) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(body),
        status_code=status_code,
        mimetype=JSON_MIMETYPE,
    )


def error_response(exc: PipelineError) -> func.HttpResponse:
    """Map a pipeline error to its HTTP status and structured body."""
    return json_response({"error": exc.to_error_dict()}, status_code=exc.http_status)


async def create_map(
    req: func.HttpRequest,
    *,
    config: PipelineConfig | None = None,
    catalog: CountryCatalog | None = None,
    runner: StageRunner | None = None,
) -> func.HttpResponse:
    """``POST /maps/countries``: run the pipeline for the posted selection."""
    try:
        config = config if config is not None else get_config()
        catalog = catalog if catalog is not None else get_catalog()
        request = build_map_request(decode_json_body(req.get_body()))
    except PipelineError as exc:
        logger.warning("Rejected map request | code=%s | error=%s", exc.code, exc.message)
        return error_response(exc)

    runner = runner or SubprocessRunner(timeout_seconds=config.stage_timeout_seconds)

    try:
        result = await run_pipeline(request, config=config, catalog=catalog, runner=runner)
    except PipelineError as exc:
        logger.exception(
            "POST /maps/countries failed | run=%s | stage=%s",
            exc.correlation_id,
            exc.stage,
        )
        return error_response(exc)

    return json_response(result.to_response())


def list_countries(
    req: func.HttpRequest,
    *,
    catalog: CountryCatalog | None = None,
) -> func.HttpResponse:
    """``GET /maps/countries``: the country catalog as a JSON array."""
    try:
        catalog = catalog if catalog is not None else get_catalog()
    except PipelineError as exc:
        logger.exception("GET /maps/countries failed")
        return error_response(exc)
    return json_response(catalog.to_list())


def get_topology(
    req: func.HttpRequest,
    *,
    config: PipelineConfig | None = None,
) -> func.HttpResponse:
    """``GET /maps/topo/{filename}``: a published TopoJSON file."""
    filename = req.route_params.get("filename", "")
    if not is_topojson_filename(filename):
        return json_response(
            {"error": f"not a published topology name: {filename!r}"},
            status_code=400,
        )

    try:
        config = config if config is not None else get_config()
    except PipelineError as exc:
        return error_response(exc)

    path = config.public_path / filename
    try:
        body = path.read_bytes()
    except FileNotFoundError:
        return json_response({"error": f"{filename} not found"}, status_code=404)
    except OSError as exc:
        logger.exception("Cannot read published topology | path=%s", path)
        return json_response({"error": str(exc)}, status_code=500)

    return func.HttpResponse(body, status_code=200, mimetype=JSON_MIMETYPE)

"""Azure Functions entry point: Relief Maps service.

This module registers the HTTP functions using the Python v2
programming model.

All business logic lives in the relief_maps package. This file is purely
the wiring layer between Azure Functions bindings and application code.
"""

from __future__ import annotations

import logging

import azure.functions as func

from relief_maps import api

app = func.FunctionApp(http_auth_level=func.AuthLevel.ANONYMOUS)

logger = logging.getLogger("relief_maps.function_app")


# ---------------------------------------------------------------------------
# HTTP: Map generation
# ---------------------------------------------------------------------------


@app.function_name("create_map")
@app.route(route="maps/countries", methods=["POST"])
async def create_map(req: func.HttpRequest) -> func.HttpResponse:
    """Generate the relief image and TopoJSON layers for a selection.

    Body: ``{countries: [{code}], continents: [{continent}],
    north, south, east, west}``.

    Returns ``200 {topo, rivers, image, run_id}`` on success, ``400`` for
    a malformed body and ``500`` with the failing stage otherwise.
    """
    logger.info("POST /maps/countries | content_length=%d", len(req.get_body() or b""))
    return await api.create_map(req)


# ---------------------------------------------------------------------------
# HTTP: Country catalog
# ---------------------------------------------------------------------------


@app.function_name("list_countries")
@app.route(route="maps/countries", methods=["GET"])
def list_countries(req: func.HttpRequest) -> func.HttpResponse:
    """Return the country catalog as ``[{name, code, continent}]``."""
    return api.list_countries(req)


# ---------------------------------------------------------------------------
# HTTP: Published topology (convenience for map clients)
# ---------------------------------------------------------------------------


@app.function_name("get_topology")
@app.route(route="maps/topo/{filename}", methods=["GET"])
def get_topology(req: func.HttpRequest) -> func.HttpResponse:
    """Return a published ``*.topo.json`` by filename."""
    return api.get_topology(req)

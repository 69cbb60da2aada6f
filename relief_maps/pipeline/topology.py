"""TopoJSON property rewriter for the boundaries layer.

``geo2topo`` carries every Natural Earth attribute (well over a hundred
per country) into the topology.  The map client only needs a stable id,
a display name and the sovereign country code, so after the boundaries
topology is generated each geometry's ``properties`` are replaced with
exactly::

    {"id": "<name>_<sov>", "name": "<name>", "sov": "<sov>"}

``name`` comes from ``NAME`` when that key is present, otherwise from
``name`` (the two casings different Natural Earth releases use);
``sov`` comes from ``SOV_A3``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from relief_maps.core.exceptions import PermanentError

logger = logging.getLogger("relief_maps.pipeline.topology")

NAME_KEYS: tuple[str, ...] = ("NAME", "name")
SOVEREIGN_KEY = "SOV_A3"


class TopologyRewriteError(PermanentError):
    """Raised when the generated topology cannot be read, parsed or rewritten."""

    default_stage = "boundaries_to_topojson"
    default_code = "TOPOLOGY_REWRITE_FAILED"


def minimal_properties(properties: dict[str, Any] | None) -> dict[str, str]:
    """Reduce a feature's attributes to ``{id, name, sov}``."""
    props = properties or {}
    name = next((props[k] for k in NAME_KEYS if k in props), None)
    sov = props.get(SOVEREIGN_KEY)
    name_text = "" if name is None else str(name)
    sov_text = "" if sov is None else str(sov)
    return {"id": f"{name_text}_{sov_text}", "name": name_text, "sov": sov_text}


def _iter_geometries(topology: dict[str, Any]) -> list[dict[str, Any]]:
    objects = topology.get("objects")
    if not isinstance(objects, dict):
        msg = "topology has no 'objects' mapping"
        raise TopologyRewriteError(msg)

    geometries: list[dict[str, Any]] = []
    for obj in objects.values():
        if not isinstance(obj, dict):
            continue
        members = obj.get("geometries")
        if isinstance(members, list):
            geometries.extend(g for g in members if isinstance(g, dict))
        else:
            geometries.append(obj)
    return geometries


def rewrite_properties(topology: dict[str, Any]) -> int:
    """Replace the properties of every geometry in *topology*, in place.

    Returns:
        Number of geometries rewritten.

    Raises:
        TopologyRewriteError: If *topology* has no ``objects`` mapping.
    """
    count = 0
    incomplete = 0
    for geometry in _iter_geometries(topology):
        props = minimal_properties(geometry.get("properties"))
        if not props["name"] or not props["sov"]:
            incomplete += 1
        geometry["properties"] = props
        count += 1

    if incomplete:
        logger.warning(
            "Geometries missing name or sovereign code | incomplete=%d | total=%d",
            incomplete,
            count,
        )
    return count


def rewrite_topology_file(path: Path, *, strict: bool = True) -> int:
    """Rewrite the boundaries topology at *path*, overwriting it.

    The new content goes to a sibling temp file first and replaces *path*
    atomically, so a failed write never leaves a truncated topology.

    Args:
        path: TopoJSON file produced by ``geo2topo``.
        strict: Raise on failure.  When False, log the failure and leave
            the file untouched.

    Returns:
        Number of geometries rewritten (0 if a lenient rewrite failed).

    Raises:
        TopologyRewriteError: If *strict* and the file cannot be read,
            parsed or written back.
    """
    try:
        topology = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(topology, dict):
            msg = f"{path} is not a TopoJSON object"
            raise TopologyRewriteError(msg)
        count = rewrite_properties(topology)
        _write_atomic(path, topology)
    except (OSError, ValueError, TopologyRewriteError) as exc:
        if strict:
            if isinstance(exc, TopologyRewriteError):
                raise
            msg = f"cannot rewrite topology {path}: {exc}"
            raise TopologyRewriteError(msg) from exc
        logger.error("Topology rewrite skipped | path=%s | error=%s", path, exc)
        return 0

    logger.info("Topology properties rewritten | path=%s | geometries=%d", path, count)
    return count


def _write_atomic(path: Path, data: dict[str, Any]) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, separators=(",", ":"), ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

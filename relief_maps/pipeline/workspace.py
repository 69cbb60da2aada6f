"""Per-request scratch workspace management.

Each pipeline run gets its own directory under ``WORKSPACE_ROOT``, named
by a run id derived from the bounding window plus a random suffix.  The
directory is reset (deleted, recreated, filled with a copy of the
pristine source data) before the first stage runs, so concurrent
requests never share intermediate files.

Finished run directories are pruned down to ``WORKSPACE_KEEP_RUNS``.
A directory is only a pruning candidate if it is named like a run id,
holds a ``run.json`` manifest and is not executing in this process, so
in-flight runs and unrelated directories under the root survive.

Cleanup treats "already absent" as success throughout: resetting a
workspace that never existed, or removing published files that were
never published, is not an error.
"""

from __future__ import annotations

import contextlib
import logging
import re
import shutil
import uuid
from collections.abc import Collection, Iterable, Iterator
from pathlib import Path

from relief_maps.core.exceptions import PermanentError
from relief_maps.models.manifest import MANIFEST_FILENAME
from relief_maps.models.request import BoundingWindow

logger = logging.getLogger("relief_maps.pipeline.workspace")

RUN_ID_SUFFIX_LEN = 12
_RUN_ID_RE = re.compile(r"^[0-9._-]+-[0-9a-f]{%d}$" % RUN_ID_SUFFIX_LEN)

_ACTIVE_RUNS: set[str] = set()


class WorkspaceError(PermanentError):
    """Raised when the scratch workspace cannot be cleaned or set up.

    Attributes:
        path: The path the failing filesystem operation targeted.
    """

    default_stage = "workspace"
    default_code = "WORKSPACE_FAILED"

    def __init__(self, message: str, *, path: Path | str = "", correlation_id: str = "") -> None:
        self.path = str(path)
        super().__init__(message, correlation_id=correlation_id)


def new_run_id(window: BoundingWindow) -> str:
    """Return a unique run id: ``<window slug>-<12 hex chars>``."""
    return f"{window.slug}-{uuid.uuid4().hex[:RUN_ID_SUFFIX_LEN]}"


def reset_workspace(workspace: Path, source_dir: Path) -> None:
    """Delete *workspace*, recreate it, and copy *source_dir*'s contents in.

    Raises:
        WorkspaceError: If *source_dir* is missing, an existing workspace
            cannot be deleted, or creation / copying fails.
    """
    if not source_dir.is_dir():
        msg = f"source directory {source_dir} does not exist"
        raise WorkspaceError(msg, path=source_dir)

    logger.info("Cleaning workspace | path=%s", workspace)
    try:
        shutil.rmtree(workspace)
    except FileNotFoundError:
        pass
    except OSError as exc:
        msg = f"cannot delete workspace {workspace}: {exc}"
        raise WorkspaceError(msg, path=workspace) from exc

    logger.info("Setting up workspace | path=%s | source=%s", workspace, source_dir)
    try:
        workspace.mkdir(parents=True)
        shutil.copytree(source_dir, workspace, dirs_exist_ok=True)
    except (OSError, shutil.Error) as exc:
        msg = f"cannot set up workspace {workspace} from {source_dir}: {exc}"
        raise WorkspaceError(msg, path=workspace) from exc


def remove_published(paths: Iterable[Path]) -> None:
    """Remove previously published artifacts; missing files are ignored.

    Raises:
        WorkspaceError: If an existing file cannot be removed.
    """
    for path in paths:
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            msg = f"cannot remove published artifact {path}: {exc}"
            raise WorkspaceError(msg, path=path) from exc
        logger.debug("Removed published artifact | path=%s", path)


def is_run_workspace(path: Path) -> bool:
    """Return True if *path* is a run directory (``<slug>-<12 hex>``)."""
    return path.is_dir() and bool(_RUN_ID_RE.match(path.name))


def active_runs() -> frozenset[str]:
    """Run ids of pipelines currently executing in this process."""
    return frozenset(_ACTIVE_RUNS)


@contextlib.contextmanager
def track_active_run(run_id: str) -> Iterator[None]:
    """Mark *run_id* active for the duration of the block."""
    _ACTIVE_RUNS.add(run_id)
    try:
        yield
    finally:
        _ACTIVE_RUNS.discard(run_id)


def prune_workspaces(
    root: Path,
    keep: int,
    *,
    active: Collection[str] = frozenset(),
) -> list[Path]:
    """Delete the oldest finished run directories under *root*, keeping *keep*.

    Only directories named like a run id that hold a manifest (written
    when a run finishes) are candidates.  Runs listed in *active* are
    never touched, nor is anything else under *root*.

    ``keep <= 0`` disables pruning.  Failures are logged, not raised.

    Returns:
        The directories that were removed.
    """
    if keep <= 0 or not root.is_dir():
        return []

    runs = sorted(
        (
            p
            for p in root.iterdir()
            if is_run_workspace(p) and p.name not in active and (p / MANIFEST_FILENAME).is_file()
        ),
        key=_mtime,
        reverse=True,
    )
    removed: list[Path] = []
    for stale in runs[keep:]:
        try:
            shutil.rmtree(stale)
        except OSError as exc:
            logger.warning("Could not prune workspace | path=%s | error=%s", stale, exc)
            continue
        removed.append(stale)

    if removed:
        logger.info("Pruned workspaces | root=%s | removed=%d | kept=%d", root, len(removed), keep)
    return removed


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def publish_artifacts(sources: Iterable[Path], public_dir: Path) -> list[Path]:
    """Copy final artifacts into *public_dir*, overwriting same-named files.

    Returns:
        The published paths, in the order of *sources*.

    Raises:
        WorkspaceError: If the directory cannot be created or a copy fails.
    """
    published: list[Path] = []
    try:
        public_dir.mkdir(parents=True, exist_ok=True)
        for source in sources:
            target = public_dir / source.name
            shutil.copy2(source, target)
            published.append(target)
    except OSError as exc:
        msg = f"cannot publish artifacts to {public_dir}: {exc}"
        raise WorkspaceError(msg, path=public_dir) from exc

    logger.info("Published artifacts | public_dir=%s | files=%d", public_dir, len(published))
    return published

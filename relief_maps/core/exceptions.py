"""Error taxonomy shared by every layer of the map service.

Workspace setup, external tool stages, the topology rewrite and request
parsing all raise subclasses of ``PipelineError``.  Each error carries
the stage it surfaced in, a machine-readable code and the run id, and
knows the HTTP status the API answers with, so handlers never need to
inspect concrete exception types.

Categories
----------
- ``ValidationError`` (``validation``, 400): bad request values, empty
  selections.
- ``ContractError`` (``contract``, 400): malformed or untyped request bodies.
- ``TransientError`` (``transient``, 500): tool timeouts; a retry may succeed.
- ``PermanentError`` (``permanent``, 500): tool exit codes, filesystem
  failures.

Subclasses may override ``http_status`` where the category default is
wrong for them (a missing intermediate file is a contract breach between
stages, not a client mistake).
"""

from __future__ import annotations

from typing import ClassVar


class PipelineError(Exception):
    """Base exception for all relief-map errors.

    Attributes:
        message: Human-readable error description.
        stage: Stage the error surfaced in (``"hillshade"``, ``"workspace"``,
            ``"ingress"``...).  ``relabel()`` overwrites it with the stage
            that was running when the error propagated.
        code: Machine-readable error code (e.g. ``"STAGE_FAILED"``).
        retryable: Whether resubmitting the same request may succeed.
        correlation_id: Run id of the request that failed.
    """

    default_stage: ClassVar[str] = ""
    default_code: ClassVar[str] = ""
    #: Fixed category for a taxonomy branch; ``None`` follows ``retryable``.
    kind: ClassVar[str | None] = None
    #: Status code ``api.error_response`` answers with.
    http_status: ClassVar[int] = 500

    def __init__(
        self,
        message: str = "",
        *,
        stage: str = "",
        code: str = "",
        retryable: bool = False,
        correlation_id: str = "",
    ) -> None:
        self.message = message
        self.stage = stage or self.default_stage
        self.code = code or self.default_code
        self.retryable = retryable
        self.correlation_id = correlation_id
        super().__init__(message)

    @property
    def category(self) -> str:
        if self.kind is not None:
            return self.kind
        return "transient" if self.retryable else "permanent"

    def relabel(self, *, stage: str = "", correlation_id: str = "") -> PipelineError:
        """Attach the running stage and run id; an existing run id is kept."""
        if stage:
            self.stage = stage
        self.correlation_id = self.correlation_id or correlation_id
        return self

    def to_error_dict(self) -> dict[str, object]:
        """Return the ``error`` object of an HTTP error body."""
        return {
            "category": self.category,
            "code": self.code,
            "stage": self.stage,
            "message": self.message,
            "retryable": self.retryable,
            "correlation_id": self.correlation_id,
        }


# ---------------------------------------------------------------------------
# Category base classes
# ---------------------------------------------------------------------------


class _FixedRetry(PipelineError):
    """Category base whose ``retryable`` default comes from the class."""

    default_retryable: ClassVar[bool] = False

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("retryable", self.default_retryable)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class ValidationError(_FixedRetry):
    """The request asks for something the service cannot draw."""

    kind = "validation"
    http_status = 400


class ContractError(_FixedRetry):
    """The request body does not have the expected shape."""

    kind = "contract"
    http_status = 400


class TransientError(_FixedRetry):
    """Failure that may not repeat on a second attempt."""

    kind = "transient"
    default_retryable = True


class PermanentError(_FixedRetry):
    """Failure that will repeat for the same request and data."""

    kind = "permanent"

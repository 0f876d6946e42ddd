# src/manuscript_pipeline/core/errors.py — v1
"""Error taxonomy shared by every pipeline component.

Stage-level failures carry an ErrorKind that ends up in
StatusRecord.errors and decides the retry policy. Contract errors
(ManuscriptMissing, DuplicateReport, ...) are raised at the API seam.
"""

from __future__ import annotations

from typing import Literal

ErrorKind = Literal[
    "transient",
    "validation_error",
    "budget_exceeded",
    "auth_error",
    "invariant_violation",
    "dag_version_mismatch",
    "cancelled",
]

# Provider-level classification reported by LLM adapters.
LLMErrorCategory = Literal["rate_limit", "5xx", "auth", "client", "timeout"]


class PipelineError(Exception):
    """Base class for errors that terminate or retry a stage."""

    kind: ErrorKind = "invariant_violation"

    def __init__(self, message: str = "", *, stage_id: str | None = None) -> None:
        self.stage_id = stage_id
        super().__init__(message or self.kind)


class TransientError(PipelineError):
    """Timeout, provider 5xx, rate limit or network failure. Retry-eligible."""

    kind: ErrorKind = "transient"


class StageValidationError(PipelineError):
    """Stage output did not satisfy its response contract."""

    kind: ErrorKind = "validation_error"


class BudgetExceeded(PipelineError):
    """User or global monthly limit reached (or would be by this call)."""

    kind: ErrorKind = "budget_exceeded"


class AuthError(PipelineError):
    """Provider credentials rejected."""

    kind: ErrorKind = "auth_error"


class InvariantViolation(PipelineError):
    """A precondition the pipeline asserts about its own state does not hold."""

    kind: ErrorKind = "invariant_violation"


class DagVersionMismatch(PipelineError):
    """A stored run was built against another DAG definition."""

    kind: ErrorKind = "dag_version_mismatch"


class StageCancelled(PipelineError):
    """Stage abandoned because the report was cancelled."""

    kind: ErrorKind = "cancelled"


_KIND_TO_ERROR: dict[str, type[PipelineError]] = {
    cls.kind: cls
    for cls in (
        TransientError,
        StageValidationError,
        BudgetExceeded,
        AuthError,
        InvariantViolation,
        DagVersionMismatch,
        StageCancelled,
    )
}


def error_for_kind(kind: ErrorKind, message: str = "", **kwargs: object) -> PipelineError:
    """Instantiate the PipelineError subclass matching an ErrorKind."""
    return _KIND_TO_ERROR[kind](message, **kwargs)  # type: ignore[arg-type]


# --- Contract errors ---


class ManuscriptMissing(Exception):
    """The referenced manuscript does not exist in the object store."""


class ManuscriptUnreadable(Exception):
    """The stored manuscript bytes are not UTF-8 text."""


class DuplicateReport(Exception):
    """A report with this id has already been submitted."""


class ReportNotFound(Exception):
    """No status record exists for the report."""


class ResultNotFound(Exception):
    """The requested stage result has not been produced."""


class AlreadyLeased(Exception):
    """Another consumer holds the lease for this report."""

    def __init__(self, report_id: str) -> None:
        self.report_id = report_id
        super().__init__(f"Report {report_id} is already leased")


class LeaseLost(Exception):
    """The consumer's lease expired or was taken over."""


class ObjectNotFound(KeyError):
    """Object key does not exist (or its TTL elapsed)."""


class ObjectConflict(Exception):
    """A write-once key was written again with different bytes."""


class LLMCallError(Exception):
    """Provider call failed; category drives the ErrorKind mapping."""

    def __init__(
        self,
        message: str,
        category: LLMErrorCategory,
        status_code: int | None = None,
    ) -> None:
        self.category = category
        self.status_code = status_code
        super().__init__(message)


# --- User-facing messages ---

_FRIENDLY_MESSAGES: dict[str, str] = {
    "transient": "A temporary service problem interrupted this step. Please try again later.",
    "validation_error": "The analysis service returned an unusable answer for this step.",
    "budget_exceeded": "Your monthly analysis budget has been reached.",
    "auth_error": "The analysis service is temporarily unavailable.",
    "invariant_violation": "An internal error occurred. Our team has been notified.",
    "dag_version_mismatch": "This report was created by an older version of the pipeline. Please resubmit.",
    "cancelled": "This step was cancelled.",
}


def friendly_message(kind: str) -> str:
    """Return the user-facing text for an error kind (never the raw error)."""
    return _FRIENDLY_MESSAGES.get(kind, _FRIENDLY_MESSAGES["invariant_violation"])

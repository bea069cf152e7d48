"""
Failure classification for the catalog sync pipeline.

Every failure the pipeline can surface is classified so that callers can
decide between retrying, recovering locally, or reporting it.

Taxonomy:
- TRANSIENT_UPSTREAM: timeout, 5xx, connection reset (retried by the fetcher)
- RATE_LIMITED: provider asked us to slow down (retried, never fatal)
- DATA_INTEGRITY: provider identifier orphaned or renamed (fixed by guardrails)
- VALIDATION_FAILED: null provider identifiers remain (blocks one game's swap)
- SWAP_FAILED: transactional promotion failed (fatal for that game's run)
- UNIT_FAILED: one queue unit failed (isolated to that unit)
"""

from enum import Enum


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Upstream failures
    TRANSIENT_UPSTREAM = "transient_upstream"
    RATE_LIMITED = "rate_limited"
    EXTERNAL_API_ERROR = "external_api_error"

    # Catalog integrity
    DATA_INTEGRITY = "data_integrity"
    VALIDATION_FAILED = "validation_failed"
    SWAP_FAILED = "swap_failed"

    # Work tracking
    UNIT_FAILED = "unit_failed"
    INVALID_STATE = "invalid_state"
    CONFLICT = "conflict"

    # Input / lookup
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"

    # Unknown
    UNKNOWN = "unknown"


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, str | None]:
        """Serializable form used in job records and progress events."""
        return {"kind": self.kind.value, "message": self.message, "detail": self.detail}


class ProviderError(KnownError):
    """Raised when the provider API returns an unusable response after retries."""

    def __init__(self, message: str, status: int | None = None, url: str | None = None):
        self.status = status
        self.url = url
        if status == 429:
            kind = FailureKind.RATE_LIMITED
        elif status is None or status >= 500:
            kind = FailureKind.TRANSIENT_UPSTREAM
        else:
            kind = FailureKind.EXTERNAL_API_ERROR
        super().__init__(kind=kind, message=message, detail=url, status_code=502)


class ValidationFailedError(KnownError):
    """
    Raised when staged data for a game still fails validation after guardrails.

    Blocks only the swap for that game.
    """

    def __init__(self, game: str, null_provider_ids: int, reason: str | None = None):
        self.game = game
        self.null_provider_ids = null_provider_ids
        self.reason = reason
        if reason == "EMPTY_SHADOW":
            detail = f"No staged sets for {game}"
        else:
            detail = f"{null_provider_ids} staged sets for {game} have no provider id"
        super().__init__(
            kind=FailureKind.VALIDATION_FAILED,
            message="VALIDATION_FAILED",
            detail=detail,
            status_code=409,
        )


class SwapFailedError(KnownError):
    """Raised when promoting staged data for a game fails; live data is unchanged."""

    def __init__(self, game: str, detail: str | None = None):
        self.game = game
        super().__init__(
            kind=FailureKind.SWAP_FAILED,
            message=f"Atomic swap failed for {game}",
            detail=detail,
            status_code=500,
        )


class JobStateError(KnownError):
    """Raised when a sync job transition is not allowed from its current status."""

    def __init__(self, job_id: str, expected: str, actual: str | None):
        self.job_id = job_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            kind=FailureKind.INVALID_STATE,
            message=f"Job {job_id} is not {expected}",
            detail=f"current status: {actual}",
            status_code=409,
        )


class UnsupportedGameError(KnownError):
    """Raised when a game slug has no provider mapping."""

    def __init__(self, game: str):
        self.game = game
        super().__init__(
            kind=FailureKind.INVALID_INPUT,
            message=f"Unsupported game: {game}",
            status_code=400,
        )

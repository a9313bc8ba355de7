"""
Domain errors for the progression engine.

Routes translate these into HTTPException; nothing here knows about HTTP.
"""


class ProgressionError(Exception):
    """Base class for every engine error."""


class ValidationError(ProgressionError):
    """Malformed event, payload, snapshot or config. Nothing is appended."""


class InvalidTransitionError(ValidationError):
    """A quest instance was asked to move backwards or skip a state."""


class ProposalClosedError(ValidationError):
    """Vote cast on a proposal that is already adopted or rejected."""


class NotFoundError(ProgressionError):
    pass


class DuplicateEventError(ProgressionError):
    """
    An event with the same idempotency key is already in the ledger.

    Not a failure: callers catch it and hand back the prior result.
    """

    def __init__(self, user_id: int, idempotency_key: str, sequence: int):
        self.user_id = user_id
        self.idempotency_key = idempotency_key
        self.sequence = sequence
        super().__init__(
            f"event '{idempotency_key}' already applied for user {user_id} at sequence {sequence}"
        )


class InconsistentStateError(ProgressionError):
    """A derived aggregate disagrees with a full ledger replay."""

    def __init__(self, user_id: int, detail: str):
        self.user_id = user_id
        self.detail = detail
        super().__init__(f"projection for user {user_id} disagrees with ledger replay: {detail}")


class ExternalServiceError(ProgressionError):
    """Profile source unavailable, timed out, or returned garbage."""

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)

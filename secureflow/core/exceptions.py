"""Domain exceptions shared by the orchestration services."""


class SecureFlowError(Exception):
    """Base class for all SecureFlow errors."""


class ValidationError(SecureFlowError):
    """A required project, job or field is missing or invalid. No state was changed."""


class NotFoundError(ValidationError):
    """The referenced job or project does not exist."""


class AuthenticationError(SecureFlowError):
    """An inbound request could not be authenticated (e.g. bad webhook signature)."""


class TransientExternalError(SecureFlowError):
    """A repository or analysis engine call failed or timed out."""


class StateConflictError(SecureFlowError):
    """The record is no longer in the state the operation requires.

    Raised for duplicate job starts and repeated approval decisions; callers
    treat it as a rejected no-op.
    """


class FatalJobError(SecureFlowError):
    """Unrecoverable failure of a single job run."""

"""Domain errors raised by the target and commission services.

All of them derive from ``ValueError`` so callers that only care about
"the business rule refused this" can keep catching ``ValueError``.
"""


class DomainError(ValueError):
    """Base class for business-rule failures."""


class DomainValidationError(DomainError):
    """Malformed input; ``field`` names the offending attribute."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    def as_dict(self) -> dict:
        return {self.field: [self.message]}


class NoActiveTargetError(DomainError):
    """No active target governs the user for the requested period."""

    def __init__(self, user_id, period_start, period_end=None):
        self.user_id = user_id
        self.period_start = period_start
        self.period_end = period_end or period_start
        super().__init__(
            f"Aucun objectif actif pour l'utilisateur {user_id} "
            f"sur la periode {self.period_start} - {self.period_end}."
        )


class InvalidTransitionError(DomainError):
    """The (status, action) pair is not allowed by the approval workflow."""

    def __init__(self, status: str, action: str, message: str = ""):
        self.status = status
        self.action = action
        super().__init__(
            message or f"Action '{action}' impossible depuis le statut '{status}'."
        )


class ActionNotPermittedError(DomainError):
    """The principal lacks the role or tenancy required for the action."""


class ConflictError(DomainError):
    """Duplicate or overlapping resource."""

    def __init__(self, message: str, conflicts=None):
        self.conflicts = conflicts or []
        super().__init__(message)

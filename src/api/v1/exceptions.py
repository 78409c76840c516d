"""Translation of domain errors into DRF responses."""
from rest_framework import status
from rest_framework.exceptions import APIException, NotFound, PermissionDenied, ValidationError

from core.exceptions import (
    ActionNotPermittedError,
    ConflictError,
    DomainValidationError,
    InvalidTransitionError,
    NoActiveTargetError,
)


class Conflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflit avec l'etat actuel de la ressource."
    default_code = "conflict"


def to_api_exception(exc: ValueError) -> APIException:
    """Map a business error to the DRF exception carrying the right status."""
    if isinstance(exc, DomainValidationError):
        return ValidationError(exc.as_dict())
    if isinstance(exc, NoActiveTargetError):
        return NotFound({"detail": str(exc), "code": "no_active_target"})
    if isinstance(exc, InvalidTransitionError):
        return Conflict({"detail": str(exc), "status": exc.status, "action": exc.action})
    if isinstance(exc, ActionNotPermittedError):
        return PermissionDenied(str(exc))
    if isinstance(exc, ConflictError):
        return Conflict({"detail": str(exc), "conflicts": exc.conflicts})
    return ValidationError({"detail": str(exc)})

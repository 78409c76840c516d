"""Custom DRF permissions for the quota and commission API."""
from rest_framework.permissions import SAFE_METHODS, BasePermission

from accounts.principal import Principal


def principal_for(request) -> Principal:
    """Identity handed to the domain services for the authenticated user."""
    return Principal.from_user(request.user)


class HasCompany(BasePermission):
    """Authenticated user attached to a company (tenant)."""

    message = "Aucune entreprise n'est associee a votre compte."

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and getattr(user, "company_id", None))


class IsAdminOrManager(BasePermission):
    message = "Action reservee aux managers et administrateurs."

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if request.user.is_superuser:
            return True
        return getattr(request.user, "role", None) in ("ADMIN", "MANAGER")


class IsAdminOrManagerOrReadOnly(IsAdminOrManager):
    def has_permission(self, request, view):
        if request.method in SAFE_METHODS:
            return bool(request.user and request.user.is_authenticated)
        return super().has_permission(request, view)


class IsAdmin(BasePermission):
    message = "Action reservee aux administrateurs."

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return request.user.is_superuser or getattr(request.user, "role", None) == "ADMIN"


class IsAdminOrReadOnly(IsAdmin):
    def has_permission(self, request, view):
        if request.method in SAFE_METHODS:
            return bool(request.user and request.user.is_authenticated)
        return super().has_permission(request, view)

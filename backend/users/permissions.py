from rest_framework import permissions
from .models import User


class IsAdmin(permissions.BasePermission):
    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role in [
            User.ROLE_SUPERADMIN,
            User.ROLE_ADMIN,
        ]


class IsInspector(permissions.BasePermission):
    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == User.ROLE_INSPECTOR


class IsGuardian(permissions.BasePermission):
    def has_permission(self, request, view):
        return request.user.is_authenticated and request.user.role == User.ROLE_PARENT


class IsAdminOrReadOnly(permissions.BasePermission):
    """Read access for any authenticated user; writes only for admin roles."""

    def has_permission(self, request, view):
        if not request.user.is_authenticated:
            return False
        if request.method in permissions.SAFE_METHODS:
            return True
        return request.user.role in [User.ROLE_SUPERADMIN, User.ROLE_ADMIN]


class IsOwnerOrAdmin(permissions.BasePermission):
    def has_object_permission(self, request, view, obj):
        if request.user.role in [User.ROLE_SUPERADMIN, User.ROLE_ADMIN]:
            return True
        return obj == request.user

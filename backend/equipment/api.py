"""Minimal equipment endpoints used by booking clients."""

from __future__ import annotations

from rest_framework import permissions, viewsets

from .models import Equipment
from .serializers import EquipmentSerializer


class IsOwnerOrReadOnly(permissions.BasePermission):
    def has_object_permission(self, request, view, obj: Equipment) -> bool:
        if request.method in permissions.SAFE_METHODS:
            return True
        return obj.owner_id == getattr(request.user, "id", None)


class EquipmentViewSet(viewsets.ModelViewSet):
    serializer_class = EquipmentSerializer
    permission_classes = (permissions.IsAuthenticatedOrReadOnly, IsOwnerOrReadOnly)
    filterset_fields = ("owner", "is_available")
    http_method_names = ["get", "post", "patch", "head", "options"]

    def get_queryset(self):
        return Equipment.objects.select_related("owner").order_by("-created_at")

    def perform_create(self, serializer: EquipmentSerializer) -> None:
        serializer.save(owner=self.request.user)

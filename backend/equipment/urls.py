from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .api import EquipmentViewSet

app_name = "equipment"

router = DefaultRouter()
router.register("", EquipmentViewSet, basename="equipment")

urlpatterns = [
    path("", include(router.urls)),
]

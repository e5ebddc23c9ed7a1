from rest_framework import serializers

from .models import Equipment


class EquipmentSerializer(serializers.ModelSerializer):
    owner = serializers.PrimaryKeyRelatedField(read_only=True)

    class Meta:
        model = Equipment
        fields = (
            "id",
            "owner",
            "title",
            "description",
            "daily_rate",
            "damage_deposit_amount",
            "is_available",
            "created_at",
        )
        read_only_fields = ("id", "owner", "created_at")

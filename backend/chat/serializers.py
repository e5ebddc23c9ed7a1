"""Serializers for chat conversations."""

from __future__ import annotations

from rest_framework import serializers

from chat.models import Conversation, Message


class MessageSerializer(serializers.ModelSerializer):
    class Meta:
        model = Message
        fields = ["id", "sender", "message_type", "system_kind", "text", "created_at"]
        read_only_fields = fields


class ConversationSerializer(serializers.ModelSerializer):
    """Summarize a conversation for list views."""

    booking_id = serializers.UUIDField(read_only=True)
    equipment_title = serializers.ReadOnlyField(source="booking.equipment.title")
    last_message = serializers.SerializerMethodField()

    class Meta:
        model = Conversation
        fields = ["id", "booking_id", "equipment_title", "owner", "renter", "is_active", "last_message"]

    def get_last_message(self, obj: Conversation):
        msg = obj.messages.order_by("-created_at", "-id").first()
        if not msg:
            return None
        return MessageSerializer(msg).data


class ConversationDetailSerializer(ConversationSerializer):
    messages = MessageSerializer(many=True, read_only=True)

    class Meta(ConversationSerializer.Meta):
        fields = ConversationSerializer.Meta.fields + ["messages"]


class SendMessageSerializer(serializers.Serializer):
    text = serializers.CharField(max_length=4000, trim_whitespace=True)

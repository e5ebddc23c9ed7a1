from django.contrib import admin

from .models import BookingHistory, BookingRequest


class BookingHistoryInline(admin.TabularInline):
    model = BookingHistory
    extra = 0
    can_delete = False
    readonly_fields = ("old_status", "new_status", "actor", "changed_by", "reason", "changed_at")


@admin.register(BookingRequest)
class BookingRequestAdmin(admin.ModelAdmin):
    list_display = ("id", "equipment", "renter", "start_date", "end_date", "status", "created_at")
    list_filter = ("status",)
    inlines = [BookingHistoryInline]

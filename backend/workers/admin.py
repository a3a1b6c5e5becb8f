from django.contrib import admin
from workers.models import Worker


@admin.register(Worker)
class WorkerAdmin(admin.ModelAdmin):
    """Admin panel for managing riders and erranders"""

    list_display = [
        "external_id",
        "full_name",
        "role",
        "is_online",
        "is_available",
        "latitude",
        "longitude",
        "rating",
        "last_location_update",
    ]

    list_filter = [
        "role",
        "is_online",
        "is_available",
    ]

    search_fields = [
        "external_id",
        "full_name",
        "phone_number",
    ]

    readonly_fields = [
        "last_location_update",
        "rating",
        "rating_count",
    ]

    ordering = ("external_id",)

from django.contrib import admin
from customers.models import Customer


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ["external_id", "full_name", "email", "phone_number", "created_at"]
    search_fields = ["external_id", "full_name", "email", "phone_number"]
    ordering = ("external_id",)

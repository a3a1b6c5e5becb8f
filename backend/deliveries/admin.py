"""Tells what to show in the Django admin interface for deliveries app"""

from django.contrib import admin
from .models import Task, Offer


@admin.register(Task)
class TaskAdmin(admin.ModelAdmin):
    """Task admin"""
    list_display = ['id', 'kind', 'customer_id', 'worker', 'status', 'negotiation_round', 'created_at', 'accepted_at', 'completed_at']
    list_filter = ['kind', 'status', 'created_at']
    search_fields = ['customer_id', 'worker__external_id', 'address', 'description']
    readonly_fields = ['created_at', 'updated_at', 'accepted_at', 'started_at', 'completed_at', 'canceled_at']
    date_hierarchy = 'created_at'


@admin.register(Offer)
class OfferAdmin(admin.ModelAdmin):
    list_display = ("task", "worker", "round", "order", "status", "sent_at", "deadline", "responded_at")
    list_filter = ("status",)
    search_fields = ("task__id", "worker__external_id")

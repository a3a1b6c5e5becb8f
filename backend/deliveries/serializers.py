from rest_framework import serializers
from .models import Offer, Task

from workers.serializers import WorkerSerializer


class OfferSerializer(serializers.ModelSerializer):
    """Serializer for task offers"""
    worker = serializers.CharField(source='worker.external_id', read_only=True)

    class Meta:
        model = Offer
        fields = ['id', 'worker', 'round', 'order', 'status', 'sent_at', 'deadline', 'responded_at']
        read_only_fields = fields


class TaskSerializer(serializers.ModelSerializer):
    """Serializer for tasks, with the assigned worker and the offer history"""
    worker = WorkerSerializer(read_only=True)
    offers = OfferSerializer(many=True, read_only=True)

    class Meta:
        model = Task
        fields = ['id', 'kind', 'customer_id', 'worker', 'status',
                  'latitude', 'longitude', 'address',
                  'dropoff_latitude', 'dropoff_longitude', 'dropoff_address',
                  'description', 'negotiation_round', 'search_radius',
                  'created_at', 'accepted_at', 'started_at', 'completed_at',
                  'canceled_at', 'cancellation_reason', 'customer_rating', 'offers']
        read_only_fields = fields

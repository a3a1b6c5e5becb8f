from rest_framework import serializers
from workers.models import Worker


class WorkerSerializer(serializers.ModelSerializer):
    """
    Worker info returned by the HTTP fallback endpoints and task details.
    Bank and identity details stay out of responses.
    """

    class Meta:
        model = Worker
        fields = [
            "id",
            "external_id",
            "role",
            "full_name",
            "is_online",
            "is_available",
            "latitude",
            "longitude",
            "last_location_update",
            "rating",
        ]
        read_only_fields = fields


class WorkerStatusSerializer(serializers.Serializer):
    """
    Serializer for updating worker availability (available/offline).
    """
    status = serializers.ChoiceField(choices=["available", "offline"])


class LocationUpdateSerializer(serializers.Serializer):
    """
    Serializer for updating worker location.
    """
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)

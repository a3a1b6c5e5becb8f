from rest_framework.views import APIView
from rest_framework.response import Response

from common.exceptions import NotFoundError, ValidationError, WorkerNotAvailableError
from common.permissions import HasBotSecret
from workers.serializers import (
    WorkerSerializer,
    WorkerStatusSerializer,
    LocationUpdateSerializer,
)

from workers import services


# Utility: Online workers holding an exclusive task read as busy
def availability_label(worker):
    if worker.is_available:
        return "available"
    return "busy" if worker.is_online else "offline"


# Utility: Resolve the worker addressed by the URL
def require_worker(external_id):
    try:
        return True, services.get_worker(external_id)
    except NotFoundError as e:
        return False, Response({"error": str(e)}, status=404)


class WorkerProfileView(APIView):
    permission_classes = [HasBotSecret]

    def get(self, request, external_id):
        ok, worker = require_worker(external_id)
        if ok is False:
            return worker  # Response object

        return Response(WorkerSerializer(worker).data)


#    HTTP fallback for the /online and /offline bot commands.
class WorkerStatusView(APIView):
    permission_classes = [HasBotSecret]

    def get(self, request, external_id):
        ok, worker = require_worker(external_id)
        if ok is False:
            return worker

        return Response({
            "status": availability_label(worker),
            "active_task_ids": [str(task_id) for task_id in worker.active_task_ids],
        })

    def put(self, request, external_id):
        ok, worker = require_worker(external_id)
        if ok is False:
            return worker

        serializer = WorkerStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        new_status = serializer.validated_data["status"]

        try:
            services.set_availability(worker, new_status == "available")
        except ValidationError as e:
            return Response({"error": str(e)}, status=400)
        except WorkerNotAvailableError as e:
            return Response({"error": str(e)}, status=409)

        return Response({
            "message": f"Status updated to {new_status}",
            "status": new_status
        })


#    HTTP fallback for the /location bot command.
class WorkerLocationUpdateView(APIView):
    permission_classes = [HasBotSecret]

    def get(self, request, external_id):
        ok, worker = require_worker(external_id)
        if ok is False:
            return worker

        return Response({
            "latitude": worker.latitude,
            "longitude": worker.longitude,
            "last_updated": worker.last_location_update,
            "status": availability_label(worker),
        })

    def post(self, request, external_id):
        ok, worker = require_worker(external_id)
        if ok is False:
            return worker

        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        lat = serializer.validated_data["latitude"]
        lon = serializer.validated_data["longitude"]

        services.update_location(worker, lat, lon)

        return Response({
            "message": "Location updated",
            "latitude": lat,
            "longitude": lon,
        })

from django.urls import path
from .views import (
    WorkerProfileView,
    WorkerStatusView,
    WorkerLocationUpdateView,
)

urlpatterns = [
    path("<str:external_id>/", WorkerProfileView.as_view(), name="worker-profile"),
    path("<str:external_id>/status/", WorkerStatusView.as_view(), name="worker-status"),
    path("<str:external_id>/location/", WorkerLocationUpdateView.as_view(), name="worker-location"),
]

from django.contrib import admin
from django.urls import path, include

from .views import health_check

urlpatterns = [
    path('admin/', admin.site.urls),
    path("health/", health_check), # Health check endpoint

    # Chat transport webhook (at /api/bot/events/)
    path('api/bot/', include('conversations.urls')),

    # Worker HTTP fallbacks (profile, status, location)
    path('api/workers/', include('workers.urls')),

    # Task details (at /api/tasks/<uuid>/)
    path('api/tasks/', include('deliveries.urls')),
]

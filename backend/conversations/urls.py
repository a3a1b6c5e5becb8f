from django.urls import path
from .views import bot_event

urlpatterns = [
    path("events/", bot_event, name="bot-events"),
]

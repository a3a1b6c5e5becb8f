from django.urls import path
from . import views

urlpatterns = [
    path('<uuid:task_id>/', views.task_detail, name='task-detail'),
]

from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework import status

from common.exceptions import NotFoundError
from common.permissions import HasBotSecret
from deliveries.serializers import TaskSerializer
from deliveries.store import task_store


@api_view(['GET'])
@permission_classes([HasBotSecret])
def task_detail(request, task_id):
    """Get one task with its assigned worker and offers"""
    try:
        task = task_store.get(task_id)
    except NotFoundError as e:
        return Response({'error': str(e)}, status=status.HTTP_404_NOT_FOUND)

    return Response(TaskSerializer(task).data)

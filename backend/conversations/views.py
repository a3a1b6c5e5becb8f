import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from common.permissions import HasBotSecret
from conversations.orchestrator import InboundEvent, handle_event
from conversations.serializers import BotReplySerializer, InboundEventSerializer

logger = logging.getLogger(__name__)


#    Webhook for the chat transport: one inbound message in, the replies out.
@api_view(["POST"])
@permission_classes([HasBotSecret])
def bot_event(request):
    serializer = InboundEventSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    if data.get("timestamp"):
        logger.debug("Bot event from %s sent at %s", data["user_id"], data["timestamp"].isoformat())

    event = InboundEvent(user_id=data["user_id"], text=data["text"])
    replies = handle_event(event)

    return Response({
        "replies": BotReplySerializer(replies, many=True).data,
    })

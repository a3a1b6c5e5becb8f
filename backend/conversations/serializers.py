from rest_framework import serializers


class InboundEventSerializer(serializers.Serializer):
    """
    Message event posted by the chat transport.
    """
    user_id = serializers.CharField(max_length=64)
    text = serializers.CharField(allow_blank=True, trim_whitespace=False)
    timestamp = serializers.DateTimeField(required=False)


class BotReplySerializer(serializers.Serializer):
    message = serializers.CharField()
    data = serializers.DictField(required=False)

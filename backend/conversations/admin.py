from django.contrib import admin
from conversations.models import ConversationSession


@admin.register(ConversationSession)
class ConversationSessionAdmin(admin.ModelAdmin):
    list_display = ["user_id", "flow", "current_step", "expires_at", "updated_at"]
    search_fields = ["user_id"]
    readonly_fields = ["created_at", "updated_at"]
    ordering = ("-updated_at",)

    @admin.display(description="Flow")
    def flow(self, obj):
        return obj.payload.get("flow", "")

    @admin.display(description="Step")
    def current_step(self, obj):
        return obj.payload.get("current_step", "")

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from practice_messaging.models.conversation import Conversation, ConversationPriority, Message, MessageType
from practice_messaging.models.notification import NotificationChannel, NotificationPreference
from practice_messaging.services.notification_channels import NotificationChannelSender
from practice_messaging.services.notification_service import (
    NotificationService, format_notification_time, get_notification_icon
)
from practice_messaging.services.notification_sink import NotificationEvent
from practice_messaging.services.preference_service import NotificationPreferenceService

# Monday 10:00 and 22:00 in Sao Paulo
INSIDE_HOURS = datetime(2024, 6, 3, 13, tzinfo=timezone.utc)
OUTSIDE_HOURS = datetime(2024, 6, 4, 1, tzinfo=timezone.utc)


class RecordingChannel(NotificationChannelSender):
    def __init__(self, channel, fail=False):
        self.channel = channel
        self.fail = fail
        self.sent = []

    async def send(self, notification, preferences, contact):
        if self.fail:
            raise RuntimeError(f"{self.channel} down")
        self.sent.append((notification, contact))


def make_conversation(priority="normal", title="Contrato de locação") -> Conversation:
    return Conversation(id="conv-1", law_firm_id="firm-1", client_id="client-1", title=title, priority=priority)


def make_message(content="Bom dia", message_type="text", **kwargs) -> Message:
    if message_type == "system":
        kwargs.setdefault("sender_client_id", None)
    else:
        kwargs.setdefault("sender_client_id", "client-1")
    return Message(id="msg-1", conversation_id="conv-1", content=content, message_type=message_type, **kwargs)


@pytest.fixture
def channels():
    return {
        "email": RecordingChannel(NotificationChannel.EMAIL),
        "push": RecordingChannel(NotificationChannel.PUSH),
        "whatsapp": RecordingChannel(NotificationChannel.WHATSAPP),
    }


@pytest.fixture
def seeded_contacts(supabase):
    supabase.seed("users", {"id": "lawyer-1", "email": "ana@escritorio.com.br", "phone": "5511988887777"})
    supabase.seed("clients", {"id": "client-1", "email": "maria@example.com", "phone": "11999998888"})
    return supabase


def build_service(supabase, channels, now=INSIDE_HOURS):
    return NotificationService(
        supabase,
        preferences=NotificationPreferenceService(supabase),
        channels=list(channels.values()),
        business_timezone="America/Sao_Paulo",
        clock=lambda: now,
    )


class TestShouldSendTruthTable:
    @pytest.mark.parametrize(
        "urgent_only, business_hours_only, priority, inside_hours, is_system",
        list(itertools.product(
            [False, True],
            [False, True],
            [p.value for p in ConversationPriority],
            [True, False],
            [False, True],
        ))
    )
    def test_suppression(self, supabase, channels, urgent_only, business_hours_only, priority, inside_hours, is_system):
        service = build_service(supabase, channels, now=INSIDE_HOURS if inside_hours else OUTSIDE_HOURS)
        prefs = NotificationPreference(user_id="lawyer-1", urgent_only=urgent_only, business_hours_only=business_hours_only)
        message = make_message(message_type="system" if is_system else "text")

        expected = not (
            is_system
            or (urgent_only and priority != "urgent")
            or (business_hours_only and not inside_hours)
        )
        assert service.should_send_notification(message, make_conversation(priority), prefs) is expected


class TestClassification:
    def test_priority_first(self, supabase, channels):
        service = build_service(supabase, channels)
        message = make_message("@ana", message_type="whatsapp")
        assert service.get_notification_type(message, make_conversation("urgent")) == "urgent"

    def test_whatsapp_before_mention(self, supabase, channels):
        service = build_service(supabase, channels)
        message = make_message("fala com @ana", message_type="whatsapp")
        assert service.get_notification_type(message, make_conversation()) == "whatsapp"

    def test_mention_is_a_plain_at_sign(self, supabase, channels):
        service = build_service(supabase, channels)
        assert service.get_notification_type(make_message("email: a@b.com"), make_conversation()) == "mention"
        assert service.get_notification_type(make_message("olá"), make_conversation()) == "new_message"


class TestContentBuilding:
    def test_titles_by_priority(self, supabase, channels):
        service = build_service(supabase, channels)
        assert service.get_notification_title(make_conversation("urgent")) == "🔴 Mensagem Urgente - Contrato de locação"
        assert service.get_notification_title(make_conversation("high")) == "⚡ Mensagem Importante - Contrato de locação"
        assert service.get_notification_title(make_conversation("low")) == "💬 Nova Mensagem - Contrato de locação"

    def test_long_content_is_truncated(self, supabase, channels):
        service = build_service(supabase, channels)
        content = service.get_notification_content(make_message("x" * 150))
        assert len(content) == 100
        assert content.endswith("...")
        assert service.get_notification_content(make_message("y" * 100)) == "y" * 100

    def test_attachment_placeholders(self, supabase, channels):
        service = build_service(supabase, channels)
        assert service.get_notification_content(
            make_message("", message_type="file", file_name="peticao.pdf")
        ) == "📎 Arquivo: peticao.pdf"
        assert service.get_notification_content(make_message("", message_type="image")) == "🖼️ Imagem: Imagem"
        assert service.get_notification_content(make_message("", message_type="document")) == "📄 Documento: Documento"


class TestNotifyNewMessage:
    async def test_staff_default_channels(self, seeded_contacts, channels):
        service = build_service(seeded_contacts, channels)

        notification = await service.notify_new_message(make_message(), make_conversation(), "lawyer-1", False)

        assert notification is not None
        assert sorted(notification.sent_via) == ["email", "push"]
        assert len(channels["email"].sent) == 1
        assert channels["whatsapp"].sent == []

        row = seeded_contacts.rows("chat_notifications")[0]
        assert row["recipient_user_id"] == "lawyer-1"
        assert row["is_sent"] is True
        assert row["is_read"] is False
        assert sorted(row["sent_via"]) == ["email", "push"]

    async def test_whatsapp_only_for_staff(self, seeded_contacts, channels):
        seeded_contacts.seed("notification_preferences", {"client_id": "client-1", "whatsapp_notifications": True})
        seeded_contacts.seed("notification_preferences", {"user_id": "lawyer-1", "whatsapp_notifications": True})
        service = build_service(seeded_contacts, channels)

        client_note = await service.notify_new_message(make_message(sender_client_id=None, sender_user_id="lawyer-1"),
                                                       make_conversation(), "client-1", True)
        staff_note = await service.notify_new_message(make_message(), make_conversation(), "lawyer-1", False)

        assert "whatsapp" not in client_note.sent_via
        assert "whatsapp" in staff_note.sent_via
        assert len(channels["whatsapp"].sent) == 1

    async def test_channel_failure_is_isolated(self, seeded_contacts, channels):
        channels["email"].fail = True
        service = build_service(seeded_contacts, channels)

        notification = await service.notify_new_message(make_message(), make_conversation(), "lawyer-1", False)

        assert notification.sent_via == ["push"]
        assert seeded_contacts.rows("chat_notifications")[0]["sent_via"] == ["push"]

    async def test_suppressed_creates_nothing(self, seeded_contacts, channels):
        seeded_contacts.seed("notification_preferences", {"user_id": "lawyer-1", "urgent_only": True})
        service = build_service(seeded_contacts, channels)

        assert await service.notify_new_message(make_message(), make_conversation("high"), "lawyer-1") is None
        assert seeded_contacts.rows("chat_notifications") == []

    async def test_client_outside_hours_is_suppressed_by_default(self, seeded_contacts, channels):
        service = build_service(seeded_contacts, channels, now=OUTSIDE_HOURS)
        message = make_message(sender_client_id=None, sender_user_id="lawyer-1")
        assert await service.notify_new_message(message, make_conversation(), "client-1", True) is None

    async def test_missing_preferences_abort_silently(self, seeded_contacts, channels):
        seeded_contacts.fail("notification_preferences", "select")
        service = build_service(seeded_contacts, channels)
        assert await service.notify_new_message(make_message(), make_conversation(), "lawyer-1") is None

    async def test_store_failure_never_raises(self, seeded_contacts, channels):
        seeded_contacts.fail("chat_notifications", "insert")
        service = build_service(seeded_contacts, channels)
        assert await service.notify_new_message(make_message(), make_conversation(), "lawyer-1") is None
        assert channels["email"].sent == []

    async def test_handle_event_routes_status_updates(self, seeded_contacts, channels):
        service = build_service(seeded_contacts, channels)
        message = make_message(sender_client_id=None, sender_user_id="lawyer-1", message_type="whatsapp")

        await service.handle_event(NotificationEvent(
            kind="status_update",
            message=message,
            conversation=make_conversation(),
            recipient_id="lawyer-1",
            status="failed",
        ))

        row = seeded_contacts.rows("chat_notifications")[0]
        assert row["notification_type"] == "status_update"
        assert "failed" in row["content"]


class TestReadState:
    async def test_unread_then_mark_read(self, seeded_contacts, channels):
        service = build_service(seeded_contacts, channels)
        first = await service.notify_new_message(make_message(), make_conversation(), "lawyer-1")
        await service.notify_new_message(make_message("segunda"), make_conversation(), "lawyer-1")

        assert len(await service.get_unread_notifications("lawyer-1")) == 2

        assert await service.mark_as_read(first.id, "lawyer-1") is True
        unread = await service.get_unread_notifications("lawyer-1")
        assert len(unread) == 1
        assert unread[0].id != first.id

        assert await service.mark_all_as_read("lawyer-1") == 1
        assert await service.get_unread_notifications("lawyer-1") == []

    async def test_mark_read_checks_owner(self, seeded_contacts, channels):
        service = build_service(seeded_contacts, channels)
        note = await service.notify_new_message(make_message(), make_conversation(), "lawyer-1")
        assert await service.mark_as_read(note.id, "someone-else") is False


class TestPresentationHelpers:
    def test_icons(self):
        assert get_notification_icon("urgent") == "🔴"
        assert get_notification_icon("mention") == "👤"
        assert get_notification_icon("whatsapp") == "📱"
        assert get_notification_icon("new_message") == "💬"

    def test_relative_time(self):
        now = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)
        assert format_notification_time(now - timedelta(seconds=30), now) == "agora"
        assert format_notification_time(now - timedelta(minutes=5), now) == "5min"
        assert format_notification_time(now - timedelta(hours=3), now) == "3h"
        assert format_notification_time(now - timedelta(days=2), now) == "01/06"

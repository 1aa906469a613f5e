from __future__ import annotations

import uuid

from chat_realtime.application.dto.conversation import ParticipantWithProfile
from chat_realtime.domain.entities.profile import Profile
from chat_realtime.domain.value_objects.enums import ChatType, MessageType
from chat_realtime.services import conversation_display as display
from tests.conftest import make_conversation, make_message, make_participant


def _with_profile(conversation_id, user_id, full_name):
    profile = Profile(id=user_id, full_name=full_name) if full_name is not None else None
    return ParticipantWithProfile(make_participant(conversation_id, user_id), profile)


def test_named_conversation_uses_its_name(viewer_id):
    conv = make_conversation(type=ChatType.TEAM, name="Hawks")

    assert display.display_name(conv, [], viewer_id) == "Hawks"
    assert display.avatar(conv, [], viewer_id) == "👥"


def test_direct_chat_is_named_after_the_other_person(viewer_id, other_id):
    conv = make_conversation(type=ChatType.DIRECT, name=None)
    people = [_with_profile(conv.id, viewer_id, "me"), _with_profile(conv.id, other_id, "sam")]

    assert display.display_name(conv, people, viewer_id) == "sam"
    assert display.avatar(conv, people, viewer_id) == "S"


def test_direct_chat_without_profile(viewer_id, other_id):
    conv = make_conversation(type=ChatType.DIRECT, name=None)
    people = [_with_profile(conv.id, other_id, None)]

    assert display.display_name(conv, people, viewer_id) == display.UNKNOWN_NAME
    assert display.avatar(conv, people, viewer_id) == "U"


def test_coaches_chat_avatar(viewer_id):
    conv = make_conversation(type=ChatType.COACHES, name=None)

    assert display.avatar(conv, [], viewer_id) == "🏀"
    assert display.display_name(conv, [], viewer_id) == "Conversation"


def test_previews():
    assert display.last_message_preview(None) == display.NO_MESSAGES
    assert display.last_message_preview(make_message(content="see you at 6")) == "see you at 6"
    assert display.last_message_preview(make_message(type=MessageType.FILE, content="x")) == "📎 File"
    assert display.last_message_preview(make_message(type=MessageType.IMAGE, content=None)) == "📷 Image"


def test_unknown_type_falls_back_to_generic_avatar():
    conv = make_conversation(type="broadcast", name=None)

    assert display.avatar(conv, [], uuid.uuid4()) == "💬"

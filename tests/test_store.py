"""Test suite for the in-memory conversation store."""

import pytest

from flexai_chat.domain.errors import GenerationInProgressError
from flexai_chat.domain.models import (
    AIModel,
    FinishReason,
    IdleState,
    Reaction,
    Role,
    StreamingState,
)
from flexai_chat.repositories.memory import (
    InMemoryConversationStore,
    get_conversation_store,
    reset_conversation_store,
)


def test_create_conversation_defaults(store, clock):
    """Test creating an empty conversation."""
    conversation_id = store.create_conversation()
    conversation = store.get_conversation(conversation_id)

    assert conversation.title == "New Chat"
    assert conversation.preview == "New conversation"
    assert conversation.messages == []
    assert conversation.is_pinned is False
    assert conversation.model == AIModel.PRO
    assert conversation.created_at == conversation.updated_at == clock.now
    assert store.active_conversation_id == conversation_id


def test_create_conversation_with_prompt(store):
    """Test that an initial prompt seeds title and preview."""
    prompt = "Build me a twelve week strength program for powerlifting " * 3
    conversation = store.get_conversation(store.create_conversation(prompt))

    assert conversation.title == "Build me a twelve week strength..."
    assert conversation.preview == prompt[:80]


def test_new_conversations_go_to_the_front(store):
    first = store.create_conversation()
    second = store.create_conversation()

    assert [c.id for c in store.list_conversations()] == [second, first]
    assert store.active_conversation_id == second


def test_title_derived_from_first_message(store):
    """Test title derivation from the first six words."""
    conversation_id = store.create_conversation()
    store.add_user_message(conversation_id, "How much protein do I need to build muscle fast")

    assert store.get_conversation(conversation_id).title == "How much protein do I need..."


def test_short_first_message_has_no_ellipsis(store):
    conversation_id = store.create_conversation()
    store.add_user_message(conversation_id, "Best leg day?")

    assert store.get_conversation(conversation_id).title == "Best leg day?"


def test_title_not_regenerated_after_first_message(store):
    """Test that later messages, edits and deletes never retitle."""
    conversation_id = store.create_conversation()
    first = store.add_user_message(conversation_id, "Plan my push day")
    store.add_user_message(conversation_id, "Actually make it a pull day instead please")
    store.edit_message(conversation_id, first.id, "Something entirely different now")
    assert store.get_conversation(conversation_id).title == "Plan my push day"

    for message in store.get_conversation(conversation_id).messages:
        store.delete_message(conversation_id, message.id)
    store.add_user_message(conversation_id, "Fresh start on an empty thread")
    assert store.get_conversation(conversation_id).title == "Plan my push day"


def test_title_not_derived_when_reply_came_first(store):
    """Test that a user message after an assistant message keeps the default title."""
    conversation_id = store.create_conversation()
    message_id = store.start_streaming_response(conversation_id)
    store.append_streaming_token(conversation_id, message_id, "Welcome back!")
    store.complete_streaming(conversation_id, message_id)

    store.add_user_message(conversation_id, "What should I eat today")
    assert store.get_conversation(conversation_id).title == "New Chat"

    store.delete_message(conversation_id, message_id)
    store.add_user_message(conversation_id, "Another question about cardio")
    assert store.get_conversation(conversation_id).title == "New Chat"


def test_renamed_conversation_keeps_title_on_first_message(store):
    conversation_id = store.create_conversation()
    store.rename_conversation(conversation_id, "  My Plan  ")
    store.add_user_message(conversation_id, "How should I warm up")

    assert store.get_conversation(conversation_id).title == "My Plan"


def test_add_user_message_updates_preview_and_timestamp(store, clock):
    conversation_id = store.create_conversation()
    clock.advance(5_000)
    text = "x" * 120
    message = store.add_user_message(conversation_id, text)
    conversation = store.get_conversation(conversation_id)

    assert message.role == Role.USER
    assert message.timestamp == clock.now
    assert conversation.updated_at == clock.now
    assert conversation.preview == "x" * 80


def test_add_user_message_to_unknown_conversation(store):
    """Test that a stale id returns a message but stores nothing."""
    known = store.create_conversation()
    message = store.add_user_message("missing", "hello")

    assert message.content == "hello"
    assert store.get_conversation("missing") is None
    assert store.get_conversation(known).messages == []


def test_append_only_ordering(store, clock):
    """Test messages stay in creation order across deletes."""
    conversation_id = store.create_conversation()
    ids = []
    for i in range(3):
        clock.advance(1_000)
        ids.append(store.add_user_message(conversation_id, f"question {i}").id)
        clock.advance(1_000)
        reply_id = store.start_streaming_response(conversation_id)
        store.append_streaming_token(conversation_id, reply_id, f"answer {i}")
        store.complete_streaming(conversation_id, reply_id)
        ids.append(reply_id)

    store.delete_message(conversation_id, ids[2])
    store.delete_message(conversation_id, ids[3])
    expected = [ids[0], ids[1], ids[4], ids[5]]
    messages = store.get_conversation(conversation_id).messages

    assert [m.id for m in messages] == expected
    assert [m.timestamp for m in messages] == sorted(m.timestamp for m in messages)


def test_streaming_round_trip(store):
    """Test start, three appends and completion."""
    conversation_id = store.create_conversation()
    message_id = store.start_streaming_response(conversation_id)

    streaming = store.get_conversation(conversation_id).find_message(message_id)
    assert streaming.role == Role.ASSISTANT
    assert streaming.is_streaming is True
    assert streaming.content == ""
    assert streaming.streaming_content == ""

    for token in ("A", "B", "C"):
        store.append_streaming_token(conversation_id, message_id, token)
    partial = store.get_conversation(conversation_id).find_message(message_id)
    assert partial.content == ""
    assert partial.streaming_content == "ABC"
    assert partial.display_content == "ABC"

    store.complete_streaming(conversation_id, message_id)
    message = store.get_conversation(conversation_id).find_message(message_id)
    assert message.content == "ABC"
    assert message.streaming_content is None
    assert message.is_streaming is False
    assert message.finish_reason == FinishReason.COMPLETED
    assert store.is_generating is False


def test_complete_without_tokens(store):
    conversation_id = store.create_conversation()
    message_id = store.start_streaming_response(conversation_id)
    store.complete_streaming(conversation_id, message_id)

    assert store.get_conversation(conversation_id).find_message(message_id).content == ""


def test_generation_state_tracks_stream(store):
    conversation_id = store.create_conversation()
    assert isinstance(store.generation_state, IdleState)

    message_id = store.start_streaming_response(conversation_id)
    assert store.generation_state == StreamingState(
        conversation_id=conversation_id, message_id=message_id
    )
    assert store.streaming_message_id == message_id

    store.complete_streaming(conversation_id, message_id)
    assert isinstance(store.generation_state, IdleState)
    assert store.streaming_message_id is None


def test_second_stream_is_rejected(store):
    """Test the single global stream: a second start fails until completion."""
    first = store.create_conversation()
    second = store.create_conversation()
    message_id = store.start_streaming_response(first)

    with pytest.raises(GenerationInProgressError) as exc_info:
        store.start_streaming_response(second)
    assert exc_info.value.message_id == message_id
    with pytest.raises(GenerationInProgressError):
        store.start_streaming_response(first)

    assert store.get_conversation(second).messages == []
    assert len(store.get_conversation(first).messages) == 1

    store.complete_streaming(first, message_id)
    assert store.start_streaming_response(second)


def test_start_stream_for_unknown_conversation_stays_idle(store):
    message_id = store.start_streaming_response("missing")

    assert message_id
    assert store.is_generating is False


def test_cancel_keeps_partial_content(store):
    conversation_id = store.create_conversation()
    message_id = store.start_streaming_response(conversation_id)
    store.append_streaming_token(conversation_id, message_id, "Half an ans")
    store.cancel_streaming(conversation_id, message_id)

    message = store.get_conversation(conversation_id).find_message(message_id)
    assert message.content == "Half an ans"
    assert message.is_streaming is False
    assert message.finish_reason == FinishReason.CANCELLED
    assert store.is_generating is False


def test_fail_streaming_finalizes(store):
    conversation_id = store.create_conversation()
    message_id = store.start_streaming_response(conversation_id)
    store.fail_streaming(conversation_id, message_id)

    message = store.get_conversation(conversation_id).find_message(message_id)
    assert message.finish_reason == FinishReason.FAILED
    assert message.streaming_content is None
    assert store.is_generating is False


def test_tokens_after_completion_are_ignored(store):
    conversation_id = store.create_conversation()
    message_id = store.start_streaming_response(conversation_id)
    store.append_streaming_token(conversation_id, message_id, "done")
    store.complete_streaming(conversation_id, message_id)
    store.append_streaming_token(conversation_id, message_id, " late")
    store.complete_streaming(conversation_id, message_id)

    message = store.get_conversation(conversation_id).find_message(message_id)
    assert message.content == "done"
    assert message.streaming_content is None


def test_streaming_refreshes_updated_at(store, clock):
    conversation_id = store.create_conversation()
    clock.advance(1_000)
    message_id = store.start_streaming_response(conversation_id)
    assert store.get_conversation(conversation_id).updated_at == clock.now

    clock.advance(1_000)
    store.complete_streaming(conversation_id, message_id)
    conversation = store.get_conversation(conversation_id)
    assert conversation.updated_at == clock.now
    assert conversation.updated_at >= conversation.created_at


def test_deleting_streaming_conversation_releases_stream(store):
    conversation_id = store.create_conversation()
    message_id = store.start_streaming_response(conversation_id)
    store.delete_conversation(conversation_id)

    assert store.is_generating is False
    store.complete_streaming(conversation_id, message_id)
    assert store.is_generating is False


def test_deleting_streaming_message_releases_stream(store):
    conversation_id = store.create_conversation()
    message_id = store.start_streaming_response(conversation_id)
    store.delete_message(conversation_id, message_id)

    assert store.is_generating is False
    assert store.get_conversation(conversation_id).messages == []


def test_reaction_toggle(store):
    """Test toggle semantics of reactions."""
    conversation_id = store.create_conversation()
    message_id = store.start_streaming_response(conversation_id)
    store.complete_streaming(conversation_id, message_id)

    def reaction():
        return store.get_conversation(conversation_id).find_message(message_id).reaction

    store.react_to_message(conversation_id, message_id, Reaction.UP)
    assert reaction() == Reaction.UP
    store.react_to_message(conversation_id, message_id, "up")
    assert reaction() is None

    store.react_to_message(conversation_id, message_id, "up")
    store.react_to_message(conversation_id, message_id, "down")
    assert reaction() == Reaction.DOWN


def test_edit_message(store, clock):
    conversation_id = store.create_conversation()
    message = store.add_user_message(conversation_id, "Original question")
    clock.advance(60_000)
    store.edit_message(conversation_id, message.id, "Edited question")

    conversation = store.get_conversation(conversation_id)
    edited = conversation.find_message(message.id)
    assert edited.content == "Edited question"
    assert edited.is_edited is True
    assert edited.timestamp == message.timestamp
    assert conversation.preview == "Edited question"
    assert conversation.updated_at == clock.now


def test_edit_of_streaming_message_is_ignored(store):
    conversation_id = store.create_conversation()
    message_id = store.start_streaming_response(conversation_id)
    store.edit_message(conversation_id, message_id, "nope")

    message = store.get_conversation(conversation_id).find_message(message_id)
    assert message.content == ""
    assert message.is_edited is False


def test_delete_message_refreshes_updated_at(store, clock):
    conversation_id = store.create_conversation()
    message = store.add_user_message(conversation_id, "hello")
    clock.advance(2_000)
    store.delete_message(conversation_id, message.id)

    conversation = store.get_conversation(conversation_id)
    assert conversation.messages == []
    assert conversation.updated_at == clock.now


def test_rename_blank_keeps_title(store):
    conversation_id = store.create_conversation("Leg day")
    store.rename_conversation(conversation_id, "   ")

    assert store.get_conversation(conversation_id).title == "Leg day"


def test_pin_conversation(store):
    conversation_id = store.create_conversation()
    store.pin_conversation(conversation_id, True)
    assert store.get_conversation(conversation_id).is_pinned is True
    store.pin_conversation(conversation_id, False)
    assert store.get_conversation(conversation_id).is_pinned is False


def test_delete_active_conversation_clears_selection(store):
    conversation_id = store.create_conversation()
    store.set_active_conversation(conversation_id)
    store.delete_conversation(conversation_id)

    assert store.active_conversation_id is None
    assert store.active_conversation is None


def test_delete_other_conversation_keeps_selection(store):
    keep = store.create_conversation()
    drop = store.create_conversation()
    store.set_active_conversation(keep)
    store.delete_conversation(drop)

    assert store.active_conversation_id == keep


def test_set_active_accepts_unknown_id(store):
    store.set_active_conversation("does-not-exist")

    assert store.active_conversation_id == "does-not-exist"
    assert store.active_conversation is None


def test_clear_all(store):
    store.create_conversation()
    conversation_id = store.create_conversation()
    store.start_streaming_response(conversation_id)
    store.clear_all()

    assert store.list_conversations() == []
    assert store.active_conversation_id is None
    assert store.is_generating is False


def test_set_model_only_affects_new_conversations(store):
    before = store.create_conversation()
    store.set_model("fast")
    after = store.create_conversation()

    assert store.selected_model == AIModel.FAST
    assert store.get_conversation(before).model == AIModel.PRO
    assert store.get_conversation(after).model == AIModel.FAST


def test_unknown_reaction_and_model_are_ignored(store):
    conversation_id = store.create_conversation()
    message_id = store.start_streaming_response(conversation_id)
    store.complete_streaming(conversation_id, message_id)

    store.react_to_message(conversation_id, message_id, "meh")
    store.set_model("turbo")

    assert store.get_conversation(conversation_id).find_message(message_id).reaction is None
    assert store.selected_model == AIModel.PRO


def test_stale_ids_are_noops(store):
    """Test that operations on unknown ids leave the state untouched."""
    conversation_id = store.create_conversation()
    message = store.add_user_message(conversation_id, "hi")
    before = store.to_snapshot()

    store.rename_conversation("missing", "x")
    store.pin_conversation("missing", True)
    store.react_to_message(conversation_id, "missing", "up")
    store.react_to_message("missing", message.id, "up")
    store.delete_message(conversation_id, "missing")
    store.edit_message(conversation_id, "missing", "x")
    store.append_streaming_token(conversation_id, "missing", "x")
    store.complete_streaming(conversation_id, "missing")
    store.cancel_streaming("missing", "missing")
    store.delete_conversation("missing")

    assert store.to_snapshot() == before


def test_reads_return_copies(store):
    conversation_id = store.create_conversation()
    conversation = store.get_conversation(conversation_id)
    conversation.title = "mutated"
    conversation.messages.append(store.add_user_message("missing", "ghost"))

    fresh = store.get_conversation(conversation_id)
    assert fresh.title == "New Chat"
    assert fresh.messages == []


def test_snapshot_round_trip(store):
    conversation_id = store.create_conversation()
    store.add_user_message(conversation_id, "How do I deadlift safely")
    message_id = store.start_streaming_response(conversation_id)
    store.append_streaming_token(conversation_id, message_id, "Brace first")
    store.complete_streaming(conversation_id, message_id)
    store.react_to_message(conversation_id, message_id, "up")
    store.pin_conversation(conversation_id, True)
    store.set_model("fast")

    snapshot = store.to_snapshot()
    restored = InMemoryConversationStore.from_snapshot(snapshot)

    assert restored.to_snapshot() == snapshot
    assert restored.active_conversation_id == conversation_id
    assert restored.selected_model == AIModel.FAST
    conversation = snapshot["conversations"][0]
    assert conversation["isPinned"] is True
    assert conversation["messages"][1]["reaction"] == "up"
    assert conversation["messages"][1]["finishReason"] == "completed"


def test_restore_finalizes_interrupted_streams(store):
    conversation_id = store.create_conversation()
    message_id = store.start_streaming_response(conversation_id)
    store.append_streaming_token(conversation_id, message_id, "partial")

    restored = InMemoryConversationStore.from_snapshot(store.to_snapshot())
    message = restored.get_conversation(conversation_id).find_message(message_id)

    assert restored.is_generating is False
    assert message.is_streaming is False
    assert message.content == "partial"
    assert message.finish_reason == FinishReason.CANCELLED


def test_process_wide_store_accessor():
    store = reset_conversation_store()
    store.create_conversation()

    assert get_conversation_store() is store
    assert reset_conversation_store() is not store
    assert get_conversation_store().list_conversations() == []

"""Unit tests for the conversation stores."""
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch
from models.conversation import Conversation, Message
from services.conversation_store import (
    InMemoryConversationStore,
    SupabaseConversationStore,
    create_store,
)

NOW = datetime(2024, 8, 1, 12, 30, tzinfo=timezone.utc)


def make_conversation(conversation_id, parent_id=None, messages=()):
    return Conversation(
        conversation_id=conversation_id,
        parent_id=parent_id,
        title="New Conversation",
        created_at=NOW,
        updated_at=NOW,
        messages=tuple(messages),
    )


def make_message(conversation_id, position, role="user", content="hello"):
    return Message(
        message_id=f"msg_{conversation_id}_{position}",
        conversation_id=conversation_id,
        role=role,
        content=content,
        position=position,
        created_at=NOW,
    )


class TestInMemoryConversationStore:
    """Test suite for InMemoryConversationStore."""

    @pytest.fixture
    def store(self):
        return InMemoryConversationStore()

    def test_get_unknown_returns_none(self, store):
        assert store.get_conversation("conv_missing") is None

    def test_insert_and_get(self, store):
        store.insert_conversation(make_conversation("conv_a"))

        conversation = store.get_conversation("conv_a")

        assert conversation.conversation_id == "conv_a"
        assert conversation.messages == ()
        assert conversation.message_count == 0

    def test_duplicate_insert_raises(self, store):
        store.insert_conversation(make_conversation("conv_a"))

        with pytest.raises(RuntimeError, match="already exists"):
            store.insert_conversation(make_conversation("conv_a"))

    def test_insert_messages_updates_metadata(self, store):
        store.insert_conversation(make_conversation("conv_a"))
        later = datetime(2024, 8, 2, tzinfo=timezone.utc)

        store.insert_messages(
            "conv_a",
            [make_message("conv_a", 0), make_message("conv_a", 1, "assistant", "hi")],
            "hello",
            later
        )

        conversation = store.get_conversation("conv_a")
        assert [m.position for m in conversation.messages] == [0, 1]
        assert conversation.title == "hello"
        assert conversation.updated_at == later
        assert conversation.message_count == 2

    def test_insert_messages_rejects_out_of_order_positions(self, store):
        store.insert_conversation(make_conversation("conv_a"))

        with pytest.raises(RuntimeError, match="out of order"):
            store.insert_messages(
                "conv_a",
                [make_message("conv_a", 0), make_message("conv_a", 5)],
                "hello",
                NOW
            )

        assert store.get_conversation("conv_a").messages == ()

    def test_insert_messages_unknown_conversation(self, store):
        with pytest.raises(RuntimeError, match="does not exist"):
            store.insert_messages("conv_x", [make_message("conv_x", 0)], "t", NOW)

    def test_branch_children_index(self, store):
        store.insert_conversation(make_conversation("conv_root"))
        store.insert_branch(make_conversation("conv_b1", "conv_root", [make_message("conv_b1", 0)]))
        store.insert_branch(make_conversation("conv_b2", "conv_root", [make_message("conv_b2", 0)]))

        children = store.list_children("conv_root")

        assert [c.conversation_id for c in children] == ["conv_b1", "conv_b2"]
        assert all(c.messages == () for c in children)
        assert store.list_children("conv_b1") == []

    def test_branch_messages_not_shared(self, store):
        store.insert_branch(make_conversation("conv_b", None, [make_message("conv_b", 0)]))
        snapshot = store.get_conversation("conv_b").messages

        store.insert_messages("conv_b", [make_message("conv_b", 1)], "hello", NOW)

        assert len(snapshot) == 1
        assert len(store.get_conversation("conv_b").messages) == 2

    def test_first_messages(self, store):
        store.insert_conversation(make_conversation("conv_empty"))
        store.insert_branch(make_conversation("conv_full", None, [
            make_message("conv_full", 0, content="first"),
            make_message("conv_full", 1, "assistant", "second"),
        ]))

        first = store.first_messages()

        assert list(first) == ["conv_full"]
        assert first["conv_full"].content == "first"

    def test_list_conversations_in_insertion_order(self, store):
        for cid in ["conv_1", "conv_2", "conv_3"]:
            store.insert_conversation(make_conversation(cid))

        assert [c.conversation_id for c in store.list_conversations()] == ["conv_1", "conv_2", "conv_3"]


class TestSupabaseConversationStore:
    """Test suite for SupabaseConversationStore."""

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def store(self, client):
        with patch('services.conversation_store.create_client', return_value=client):
            return SupabaseConversationStore(
                supabase_url="https://test.supabase.co",
                supabase_key="test_key"
            )

    def test_initialization_without_credentials(self):
        with pytest.raises(ValueError, match="SUPABASE_URL and SUPABASE_KEY"):
            SupabaseConversationStore(supabase_url=None, supabase_key="test_key")

    @patch('services.conversation_store.create_client')
    def test_initialization_success(self, mock_create_client):
        store = SupabaseConversationStore(
            supabase_url="https://test.supabase.co",
            supabase_key="test_key"
        )

        assert store.conversations_table == "conversations"
        assert store.messages_table == "messages"
        mock_create_client.assert_called_once_with("https://test.supabase.co", "test_key")

    def test_insert_conversation(self, store, client):
        store.insert_conversation(make_conversation("conv_a", "conv_root"))

        client.table.assert_called_with("conversations")
        row = client.table.return_value.insert.call_args[0][0]
        assert row["conversation_id"] == "conv_a"
        assert row["parent_id"] == "conv_root"
        assert row["message_count"] == 0
        assert row["created_at"] == NOW.isoformat()

    def test_insert_conversation_failure_raises_runtime_error(self, store, client):
        client.table.return_value.insert.return_value.execute.side_effect = Exception("boom")

        with pytest.raises(RuntimeError, match="Failed to store conversation conv_a"):
            store.insert_conversation(make_conversation("conv_a"))

    def test_insert_branch_uses_rpc(self, store, client):
        branch = make_conversation("conv_b", "conv_a", [
            make_message("conv_b", 0),
            make_message("conv_b", 1, "assistant", "hi"),
        ])

        store.insert_branch(branch)

        name, params = client.rpc.call_args[0]
        assert name == "create_branch"
        assert params["p_conversation"]["parent_id"] == "conv_a"
        assert params["p_conversation"]["message_count"] == 2
        assert [m["position"] for m in params["p_messages"]] == [0, 1]

    def test_insert_messages_uses_rpc(self, store, client):
        store.insert_messages("conv_a", [make_message("conv_a", 3)], "hello", NOW)

        name, params = client.rpc.call_args[0]
        assert name == "append_messages"
        assert params["p_conversation_id"] == "conv_a"
        assert params["p_title"] == "hello"
        assert params["p_messages"][0]["message_id"] == "msg_conv_a_3"

    def test_insert_messages_failure(self, store, client):
        client.rpc.return_value.execute.side_effect = Exception("constraint violation")

        with pytest.raises(RuntimeError, match="Failed to append messages"):
            store.insert_messages("conv_a", [make_message("conv_a", 0)], "hello", NOW)

    def test_get_conversation_not_found(self, store, client):
        client.table.return_value.select.return_value.eq.return_value.execute.return_value = MagicMock(data=[])

        assert store.get_conversation("conv_missing") is None

    def test_get_conversation_with_messages(self, store, client):
        conversation_table = MagicMock()
        conversation_table.select.return_value.eq.return_value.execute.return_value = MagicMock(data=[{
            "conversation_id": "conv_a",
            "parent_id": None,
            "title": "hello",
            "message_count": 1,
            "created_at": "2024-08-01T12:30:00.12345+00:00",
            "updated_at": "2024-08-01T12:31:00Z",
        }])
        messages_table = MagicMock()
        messages_table.select.return_value.eq.return_value.order.return_value.execute.return_value = MagicMock(data=[{
            "message_id": "msg_1",
            "conversation_id": "conv_a",
            "role": "user",
            "content": "hello",
            "position": 0,
            "created_at": "2024-08-01T12:30:00.1+00:00",
        }])
        client.table.side_effect = lambda name: conversation_table if name == "conversations" else messages_table

        conversation = store.get_conversation("conv_a")

        assert conversation.title == "hello"
        assert conversation.created_at.microsecond == 123450
        assert conversation.updated_at.tzinfo is not None
        assert len(conversation.messages) == 1
        assert conversation.messages[0].created_at.microsecond == 100000
        messages_table.select.return_value.eq.return_value.order.assert_called_once_with("position", desc=False)

    def test_list_children_orders_by_creation(self, store, client):
        query = client.table.return_value.select.return_value.eq.return_value.order
        query.return_value.execute.return_value = MagicMock(data=[])

        assert store.list_children("conv_a") == []
        client.table.return_value.select.return_value.eq.assert_called_once_with("parent_id", "conv_a")
        query.assert_called_once_with("created_at", desc=False)

    def test_first_messages_keyed_by_conversation(self, store, client):
        client.table.return_value.select.return_value.eq.return_value.execute.return_value = MagicMock(data=[{
            "message_id": "msg_1",
            "conversation_id": "conv_a",
            "role": "user",
            "content": "hello",
            "position": 0,
            "created_at": "2024-08-01T12:30:00+00:00",
        }])

        first = store.first_messages()

        assert first["conv_a"].content == "hello"

    def test_list_conversations_failure(self, store, client):
        client.table.return_value.select.return_value.order.return_value.execute.side_effect = Exception("timeout")

        with pytest.raises(RuntimeError, match="Failed to list conversations"):
            store.list_conversations()


def test_create_store_memory():
    assert isinstance(create_store("memory"), InMemoryConversationStore)


def test_create_store_unknown_backend():
    with pytest.raises(ValueError, match="Unknown store backend"):
        create_store("redis")

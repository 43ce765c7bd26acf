from unittest.mock import Mock

import pytest

from replybot.database import build_session_factory
from replybot.services.chat_record_service import ChatRecordService


@pytest.fixture
def service():
    return ChatRecordService(build_session_factory("sqlite://"))


class TestChatRecordService:
    def test_append_and_list_in_order(self, service):
        service.append("c1", "user", "hello", message_id="m1", contact_name="Alice")
        service.append("c1", "assistant", "hi Alice")
        service.append("c2", "user", "other chat")

        records = service.list_for_conversation("c1")

        assert [(r.role, r.content) for r in records] == [("user", "hello"), ("assistant", "hi Alice")]
        assert records[0].created_at is not None

    def test_limit_keeps_most_recent(self, service):
        for i in range(5):
            service.append("c1", "user", f"m{i}")

        assert [r.content for r in service.list_for_conversation("c1", limit=2)] == ["m3", "m4"]

    def test_storage_failure_is_swallowed(self):
        session = Mock()
        session.commit.side_effect = RuntimeError("db down")
        service = ChatRecordService(Mock(return_value=session))

        assert service.append("c1", "user", "hello") is False
        session.close.assert_called_once()

from conftest import callback_payload

from replybot.schemas.agent import ChatRequest, ContextStrategy, SimpleMessage
from replybot.schemas.callback import MessageCallback, describe_source


class TestMessageCallback:
    def test_wire_names_are_accepted(self):
        event = MessageCallback.model_validate(callback_payload("m1", chat_id="chat-9"))

        assert event.message_id == "m1"
        assert event.conversation_id == "chat-9"
        assert event.contact_id == "contact-1"
        assert event.is_self is False

    def test_conversation_id_alias(self):
        payload = callback_payload("m1")
        del payload["chatId"]
        payload["conversationId"] = "conv-1"

        assert MessageCallback.model_validate(payload).conversation_id == "conv-1"

    def test_text_prefers_pure_text(self):
        event = MessageCallback.model_validate(
            callback_payload("m1", payload={"text": "@bot hello", "pureText": " hello "})
        )
        assert event.text == "hello"

    def test_non_text_message_has_no_text(self):
        event = MessageCallback.model_validate(callback_payload("m1", messageType=6, payload={"url": "x"}))
        assert event.is_text is False
        assert event.text == ""

    def test_missing_source_stays_unknown(self):
        payload = callback_payload("m1")
        del payload["source"]

        event = MessageCallback.model_validate(payload)

        assert event.source is None
        assert describe_source(event.source) == "unknown"

    def test_describe_source(self):
        assert describe_source(0) == "mobile_push"
        assert describe_source(999) == "unknown"


class TestChatRequest:
    def test_payload_uses_wire_names_and_drops_unset(self):
        request = ChatRequest(
            model="m",
            messages=[SimpleMessage(role="user", content="hi")],
            systemPrompt="be kind",
            contextStrategy=ContextStrategy.SKIP,
        )

        assert request.to_payload() == {
            "model": "m",
            "messages": [{"role": "user", "content": "hi"}],
            "systemPrompt": "be kind",
            "contextStrategy": "skip",
        }

from homecall.session import CallSession


class TestLatches:
    def test_begin_initializing_once(self, session):
        assert session.begin_initializing() is True
        assert session.begin_initializing() is False

    def test_begin_initializing_refused_when_ready(self, session):
        session.agent_ready = True
        assert session.begin_initializing() is False
        assert session.agent_initializing is False

    def test_claim_greeting_once(self, session):
        assert session.claim_greeting() is True
        assert session.claim_greeting() is False
        assert session.greeting_sent is True

    def test_claim_transfer_once(self, session):
        assert session.claim_transfer() is True
        assert session.claim_transfer() is False
        assert session.transfer_in_progress is True

    def test_emergency_set_at_most_once(self, session):
        session.mark_emergency("flooding")
        session.mark_emergency("fire")
        assert session.emergency_detected is True
        assert session.emergency_reason == "flooding"


class TestMessages:
    def test_user_then_agent_order(self, session):
        session.add_ai_message("Hello")
        session.add_human_message("my sink leaks")
        session.add_ai_message("Is the valve closed?")
        assert [m["role"] for m in session.messages] == ["ai", "human", "ai"]
        assert [m["content"] for m in session.messages][-2:] == ["my sink leaks", "Is the valve closed?"]

    def test_history_is_a_copy(self, session):
        session.add_human_message("hi")
        history = session.history()
        history.append({"role": "ai", "content": "x"})
        assert len(session.messages) == 1

    def test_messages_carry_timestamps(self, session):
        session.add_human_message("hi")
        assert "timestamp" in session.messages[0]


def test_duration_seconds():
    session = CallSession(call_id="c", call_started_at=1000.0)
    assert session.duration_seconds(now=1065.9) == 65
    assert session.duration_seconds(now=900.0) == 0

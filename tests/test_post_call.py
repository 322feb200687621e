import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from homecall.post_call import (
    build_summary_payload,
    chunk_transcript_dump,
    format_duration,
    handle_call_analyzed,
    handle_call_ended,
)
from homecall.session import CallSession, VideoContext


def finished_session(**overrides) -> CallSession:
    session = CallSession(call_id="call_pc", call_started_at=1000.0, caller_phone="+15125551234")
    session.messages = [
        {"role": "ai", "content": "Hello, how can I help?", "timestamp": 1000.5},
        {"role": "human", "content": "My water heater is leaking", "timestamp": 1004.0},
        {"role": "ai", "content": "Is the leak near the valve?", "timestamp": 1006.2},
    ]
    for key, value in overrides.items():
        setattr(session, key, value)
    return session


class TestFormatDuration:
    def test_minutes_and_seconds(self):
        assert format_duration(125) == "2m 5s"

    def test_zero(self):
        assert format_duration(0) == "N/A"


class TestBuildSummaryPayload:
    def test_completed_call(self):
        payload = build_summary_payload(finished_session(), end_time=1095.0)
        assert payload["call_id"] == "call_pc"
        assert payload["duration_seconds"] == 95
        assert payload["duration"] == "1m 35s"
        assert payload["outcome"] == "completed"
        assert payload["transcript"].splitlines() == [
            "Agent: Hello, how can I help?",
            "Caller: My water heater is leaking",
            "Agent: Is the leak near the valve?",
        ]
        assert payload["caller_message_count"] == 1
        assert payload["agent_message_count"] == 2
        assert payload["had_video"] is False

    def test_emergency_outranks_transfer(self):
        session = finished_session(
            transfer_in_progress=True, emergency_detected=True, emergency_reason="urgent_maintenance_flooding",
        )
        payload = build_summary_payload(session, end_time=1010.0)
        assert payload["outcome"] == "emergency_transfer"
        assert payload["emergency_reason"] == "urgent_maintenance_flooding"

    def test_human_transfer(self):
        payload = build_summary_payload(finished_session(transfer_in_progress=True), end_time=1010.0)
        assert payload["outcome"] == "human_transfer"

    def test_video_context(self):
        session = finished_session(
            video_context=VideoContext(transcript_ids=[4], has_video=True), prior_context_count=1,
        )
        payload = build_summary_payload(session, end_time=1010.0)
        assert payload["had_video"] is True
        assert payload["prior_context_count"] == 1

    def test_unknown_phone(self):
        payload = build_summary_payload(finished_session(caller_phone=None), end_time=1010.0)
        assert payload["phone_number"] == "unknown"


class TestChunkTranscriptDump:
    def test_small_dump_is_one_chunk(self):
        dump = {"call_id": "c", "phone": None, "outcome": "completed", "entries": [{"t": 0, "role": "agent", "content": "hi"}]}
        lines = chunk_transcript_dump(dump)
        assert len(lines) == 1
        assert lines[0].startswith("TRANSCRIPT_DUMP|1/1|")
        assert json.loads(lines[0].split("|", 2)[2]) == dump

    def test_large_dump_splits_and_keeps_header_first(self):
        entries = [{"t": i, "role": "caller", "content": "x" * 200} for i in range(40)]
        lines = chunk_transcript_dump({"call_id": "c", "outcome": "completed", "entries": entries}, max_bytes=1000)

        assert len(lines) > 1
        total = len(lines)
        bodies = [json.loads(line.split("|", 2)[2]) for line in lines]
        assert all(line.split("|")[1].endswith(f"/{total}") for line in lines)
        assert bodies[0]["call_id"] == "c"
        assert "call_id" not in bodies[1]
        assert sum(len(b["entries"]) for b in bodies) == 40

    def test_bodies_fit_the_byte_budget(self):
        entries = [{"t": i, "role": "agent", "content": "é" * 90} for i in range(30)]
        lines = chunk_transcript_dump({"call_id": "c", "phone": "+1", "entries": entries}, max_bytes=800)
        for line in lines:
            assert len(line.split("|", 2)[2].encode("utf-8")) <= 800

    def test_oversized_entry_gets_its_own_line(self):
        entries = [
            {"t": 0, "role": "agent", "content": "short"},
            {"t": 1, "role": "caller", "content": "y" * 2000},
            {"t": 2, "role": "agent", "content": "short"},
        ]
        lines = chunk_transcript_dump({"call_id": "c", "entries": entries}, max_bytes=500)
        bodies = [json.loads(line.split("|", 2)[2]) for line in lines]
        assert [len(b["entries"]) for b in bodies] == [1, 1, 1]

    def test_no_entries(self):
        lines = chunk_transcript_dump({"call_id": "c", "entries": []})
        assert lines == ['TRANSCRIPT_DUMP|1/1|{"call_id": "c", "entries": []}']


class TestHandleCallEnded:
    @pytest.mark.asyncio
    async def test_sends_summary(self, alerts):
        await handle_call_ended(finished_session(), alerts, end_time=1020.0)
        alerts.send_call_summary.assert_awaited_once()
        payload = alerts.send_call_summary.await_args.args[0]
        assert payload["call_id"] == "call_pc"
        assert payload["duration_seconds"] == 20

    @pytest.mark.asyncio
    async def test_skips_when_not_configured(self, alerts):
        alerts.summary_configured = False
        await handle_call_ended(finished_session(), alerts, end_time=1020.0)
        alerts.send_call_summary.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_logs_transcript_dump(self, caplog):
        with caplog.at_level(logging.INFO, logger="homecall.post_call"):
            await handle_call_ended(finished_session(), None, end_time=1020.0)
        dumps = [r.getMessage() for r in caplog.records if r.getMessage().startswith("TRANSCRIPT_DUMP|")]
        assert len(dumps) == 1
        body = json.loads(dumps[0].split("|", 2)[2])
        assert [e["role"] for e in body["entries"]] == ["agent", "caller", "agent"]
        assert body["entries"][1]["t"] == 4.0
        assert body["duration_s"] == 20.0


class TestHandleCallAnalyzed:
    @pytest.fixture
    def store(self):
        store = MagicMock()
        store.save_call_history = AsyncMock(return_value=True)
        return store

    @pytest.fixture
    def call(self):
        return {
            "call_id": "call_an",
            "from_number": "+15125551234",
            "to_number": "+15550009999",
            "transcript": "Agent: Hello\nUser: Hi",
            "call_duration_ms": 65400,
            "call_status": "ended",
            "recording_url": "https://recordings.example/call_an.wav",
            "call_analysis": {"call_summary": "Caller reported a leaking heater.", "user_sentiment": "Neutral"},
        }

    @pytest.mark.asyncio
    async def test_saves_history_and_forwards_summary(self, store, alerts, call):
        assert await handle_call_analyzed(call, store, alerts) is True

        record = store.save_call_history.await_args.args[0]
        assert record["call_id"] == "call_an"
        assert record["call_summary"] == "Caller reported a leaking heater."

        summary = alerts.send_call_summary.await_args.args[0]
        assert summary["duration_seconds"] == 65
        assert summary["duration"] == "1m 5s"
        assert summary["ai_summary"] == "Caller reported a leaking heater."
        assert summary["source"] == "call_analyzed"

    @pytest.mark.asyncio
    async def test_duration_from_timestamps(self, store, alerts, call):
        del call["call_duration_ms"]
        call["start_timestamp"] = 1_700_000_000_000
        call["end_timestamp"] = 1_700_000_030_000
        await handle_call_analyzed(call, store, alerts)
        assert alerts.send_call_summary.await_args.args[0]["duration_seconds"] == 30

    @pytest.mark.asyncio
    async def test_save_failure_still_reports(self, store, alerts, call):
        store.save_call_history.return_value = False
        assert await handle_call_analyzed(call, store, alerts) is False
        alerts.send_call_summary.assert_awaited_once()

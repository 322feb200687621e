import json
import time
import logging
from datetime import datetime, timezone

from homecall.session import CallSession
from homecall.transcript import to_plain_text, to_json_array, to_timestamped_dump

logger = logging.getLogger(__name__)


def format_duration(seconds: int) -> str:
    """``"Xm Ys"`` as read by people; ``"N/A"`` for zero-length calls."""
    if seconds <= 0:
        return "N/A"
    return f"{seconds // 60}m {seconds % 60}s"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _derive_outcome(session: CallSession) -> str:
    if session.emergency_detected:
        return "emergency_transfer"
    if session.transfer_in_progress:
        return "human_transfer"
    return "completed"


def build_summary_payload(session: CallSession, end_time: float) -> dict:
    """Build the end-of-call summary from session state."""
    duration = session.duration_seconds(now=end_time)
    messages = session.messages
    return {
        "call_id": session.call_id,
        "phone_number": session.caller_phone or "unknown",
        "started_at": _iso(session.call_started_at),
        "ended_at": _iso(end_time),
        "duration_seconds": duration,
        "duration": format_duration(duration),
        "outcome": _derive_outcome(session),

        # Transcript
        "transcript": to_plain_text(messages),
        "transcript_object": to_json_array(messages),
        "message_count": len(messages),
        "caller_message_count": sum(1 for m in messages if m.get("role") == "human"),
        "agent_message_count": sum(1 for m in messages if m.get("role") == "ai"),

        # Context
        "had_video": bool(session.video_context and session.video_context.has_video),
        "prior_context_count": session.prior_context_count,

        # Emergency
        "emergency_detected": session.emergency_detected,
        "emergency_reason": session.emergency_reason,

        "recording_url": session.recording_url,
    }


DUMP_TAG = "TRANSCRIPT_DUMP"


def _encoded_len(obj) -> int:
    return len(json.dumps(obj).encode("utf-8"))


def chunk_transcript_dump(dump: dict, max_bytes: int = 3500) -> list[str]:
    """Render a transcript dump as ``TRANSCRIPT_DUMP|n/total|{json}`` log lines.

    Fly truncates long log lines, so entries are packed greedily into bodies
    of at most ``max_bytes``.  Only the first body carries the call header;
    ``scripts/call_transcript.py`` stitches the rest back on.  An entry too
    big on its own still gets a body of its own.
    """
    header = {key: value for key, value in dump.items() if key != "entries"}
    batches: list[list[dict]] = [[]]
    room = max_bytes - _encoded_len({**header, "entries": []})

    for entry in dump.get("entries", []):
        cost = _encoded_len(entry) + len(", ")
        if batches[-1] and cost > room:
            batches.append([])
            room = max_bytes - _encoded_len({"entries": []})
        batches[-1].append(entry)
        room -= cost

    bodies = [{**header, "entries": batches[0]}] + [{"entries": batch} for batch in batches[1:]]
    return [
        f"{DUMP_TAG}|{number}/{len(bodies)}|{json.dumps(body)}"
        for number, body in enumerate(bodies, start=1)
    ]


def log_transcript_dump(session: CallSession, end_time: float) -> None:
    dump = to_timestamped_dump(
        session.messages,
        start_time=session.call_started_at,
        call_id=session.call_id,
        phone=session.caller_phone,
        outcome=_derive_outcome(session),
    )
    dump["duration_s"] = round(end_time - session.call_started_at, 1)
    for line in chunk_transcript_dump(dump):
        logger.info(line)


async def handle_call_ended(session: CallSession, alerts, end_time: float | None = None):
    """Session-end reporting. Called by the controller when the socket closes."""
    end_time = time.time() if end_time is None else end_time

    log_transcript_dump(session, end_time)

    if alerts is None or not alerts.summary_configured:
        logger.warning("Call summary URL not configured, skipping summary for %s", session.call_id)
        return

    result = await alerts.send_call_summary(build_summary_payload(session, end_time))
    logger.info("Call summary for %s: %s", session.call_id, result)


def _analyzed_duration_seconds(call: dict) -> int:
    if call.get("call_duration_ms"):
        return round(call["call_duration_ms"] / 1000)
    start, end = call.get("start_timestamp"), call.get("end_timestamp")
    if isinstance(start, (int, float)) and isinstance(end, (int, float)):
        return max(0, round((end - start) / 1000))
    return 0


async def handle_call_analyzed(call: dict, context_store, alerts) -> bool:
    """Persist Retell's analyzed call and forward its AI summary.

    Returns whether the call history row was saved.  The history is what lets
    a later callback pick up where this call left off.
    """
    call_id = call.get("call_id")
    analysis = call.get("call_analysis") or {}
    logger.info(
        "Processing call_analyzed for %s (from=%s, recording=%s, summary=%s)",
        call_id,
        call.get("from_number"),
        "yes" if call.get("recording_url") else "no",
        "yes" if analysis.get("call_summary") else "no",
    )

    saved = await context_store.save_call_history({
        "call_id": call_id,
        "from_number": call.get("from_number"),
        "to_number": call.get("to_number"),
        "transcript": call.get("transcript"),
        "call_duration_ms": call.get("call_duration_ms"),
        "call_status": call.get("call_status"),
        "recording_url": call.get("recording_url"),
        "call_summary": analysis.get("call_summary"),
    })
    if saved:
        logger.info("Call history saved for %s", call_id)
    else:
        logger.warning("Failed to save call history for %s", call_id)

    if alerts is not None and alerts.summary_configured:
        duration = _analyzed_duration_seconds(call)
        result = await alerts.send_call_summary({
            "call_id": call_id,
            "phone_number": call.get("from_number") or "unknown",
            "transcript": call.get("transcript") or "",
            "duration_seconds": duration,
            "duration": format_duration(duration),
            "recording_url": call.get("recording_url"),
            "ai_summary": analysis.get("call_summary"),
            "user_sentiment": analysis.get("user_sentiment"),
            "source": "call_analyzed",
        })
        logger.info("Analyzed call summary for %s: %s", call_id, result)
    return saved

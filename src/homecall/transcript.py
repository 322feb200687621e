from homecall.transfer_signal import message_text

_SPEAKERS = {"human": "Caller", "ai": "Agent"}
_DUMP_ROLES = {"human": "caller", "ai": "agent"}


def to_plain_text(messages: list[dict]) -> str:
    """Convert session messages to plain text.

    Caller lines are prefixed with "Caller:", agent lines with "Agent:".
    Any other role is left out.
    """
    if not messages:
        return ""

    lines = []
    for message in messages:
        speaker = _SPEAKERS.get(message.get("role", ""))
        if speaker:
            lines.append(f"{speaker}: {message_text(message)}")
    return "\n".join(lines)


def to_json_array(messages: list[dict]) -> list[dict]:
    """Convert session messages to the {role, content} array sent with call summaries."""
    if not messages:
        return []

    return [
        {"role": message["role"], "content": message_text(message)}
        for message in messages
        if message.get("role") in _SPEAKERS
    ]


def to_timestamped_dump(
    messages: list[dict],
    start_time: float,
    call_id: str,
    phone: str | None,
    outcome: str,
) -> dict:
    """Build a timestamped transcript dump dict for structured logging.

    Timestamps are converted to relative seconds from call start.
    If start_time is 0, uses the first message's timestamp as base.
    Messages missing a timestamp key are skipped.
    """
    base_time = start_time
    if base_time <= 0 and messages:
        for message in messages:
            if "timestamp" in message:
                base_time = message["timestamp"]
                break

    entries = []
    for message in messages:
        if "timestamp" not in message:
            continue
        role = message.get("role", "")
        entries.append({
            "t": round(message["timestamp"] - base_time, 1),
            "role": _DUMP_ROLES.get(role, role),
            "content": message_text(message),
        })

    return {
        "call_id": call_id,
        "phone": phone,
        "outcome": outcome,
        "entries": entries,
    }

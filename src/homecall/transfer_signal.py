"""Transfer signal carried through the agent's text channel.

Transfer tools can only hand plain text back to the agent, so a transfer
request is encoded as ``EMERGENCY_TRANSFER:<destination>:<reason>`` and
picked out of the agent's output by the turn processor.
"""

import json
from dataclasses import dataclass
from enum import Enum

TRANSFER_PREFIX = "EMERGENCY_TRANSFER:"
HUMAN_AGENT_REASON = "human_agent_requested"
URGENT_MAINTENANCE_PREFIX = "urgent_maintenance_"
DEFAULT_REASON = "Emergency situation"


class TransferKind(Enum):
    LIFE_THREATENING = "life_threatening"
    URGENT_MAINTENANCE = "urgent_maintenance"
    HUMAN_AGENT = "human_agent"


@dataclass(frozen=True)
class TransferSignal:
    destination: str
    reason: str
    kind: TransferKind
    display_reason: str

    @property
    def counts_as_emergency(self) -> bool:
        """Human-agent requests are transfers, not emergencies."""
        return self.kind != TransferKind.HUMAN_AGENT


def encode_transfer_signal(destination: str, reason: str) -> str:
    return f"{TRANSFER_PREFIX}{destination}:{reason}"


def classify_reason(reason: str) -> tuple[TransferKind, str]:
    """Map a reason tag to its transfer kind and the text shown to people."""
    if reason.startswith(URGENT_MAINTENANCE_PREFIX.rstrip("_")):
        return TransferKind.URGENT_MAINTENANCE, reason.replace(URGENT_MAINTENANCE_PREFIX, "", 1)
    if reason == HUMAN_AGENT_REASON:
        return TransferKind.HUMAN_AGENT, reason
    return TransferKind.LIFE_THREATENING, reason


def message_text(message) -> str:
    """Text of a message dict (or bare content); non-string content is JSON-encoded."""
    content = message.get("content", "") if isinstance(message, dict) else message
    if isinstance(content, str):
        return content
    if content is None:
        return ""
    return json.dumps(content)


def decode_transfer_signal(messages: list) -> TransferSignal | None:
    """Find the first transfer signal in an agent invocation's messages.

    Every message is checked, not just the last one: the signal usually sits
    in an intermediate tool result while the final entry is the spoken reply.
    """
    for message in messages:
        text = message_text(message)
        if not text.startswith(TRANSFER_PREFIX):
            continue
        parts = text.split(":")
        destination = parts[1] if len(parts) > 1 else ""
        reason = parts[2] if len(parts) > 2 and parts[2] else DEFAULT_REASON
        kind, display_reason = classify_reason(reason)
        return TransferSignal(
            destination=destination,
            reason=reason,
            kind=kind,
            display_reason=display_reason,
        )
    return None

import time
from dataclasses import dataclass, field


@dataclass
class VideoContext:
    transcript_ids: list = field(default_factory=list)
    has_video: bool = False


@dataclass
class CallSession:
    call_id: str
    call_started_at: float = field(default_factory=time.time)

    # Conversation, replayed to the agent in full every turn
    messages: list = field(default_factory=list)

    # From initialization
    caller_phone: str | None = None
    video_context: VideoContext | None = None
    prior_context_count: int = 0

    # One-way latches
    agent_ready: bool = False
    agent_initializing: bool = False
    greeting_sent: bool = False
    transfer_in_progress: bool = False

    # Reporting
    emergency_detected: bool = False
    emergency_reason: str | None = None
    recording_url: str | None = None

    # Latch helpers must stay free of awaits so check-and-set is atomic on the loop.

    def begin_initializing(self) -> bool:
        if self.agent_ready or self.agent_initializing:
            return False
        self.agent_initializing = True
        return True

    def claim_greeting(self) -> bool:
        if self.greeting_sent:
            return False
        self.greeting_sent = True
        return True

    def claim_transfer(self) -> bool:
        if self.transfer_in_progress:
            return False
        self.transfer_in_progress = True
        return True

    def mark_emergency(self, reason: str) -> None:
        if self.emergency_detected:
            return
        self.emergency_detected = True
        self.emergency_reason = reason

    def add_human_message(self, content: str) -> None:
        self.messages.append({"role": "human", "content": content, "timestamp": time.time()})

    def add_ai_message(self, content: str) -> None:
        self.messages.append({"role": "ai", "content": content, "timestamp": time.time()})

    def history(self) -> list:
        return list(self.messages)

    def duration_seconds(self, now: float | None = None) -> int:
        end = time.time() if now is None else now
        return max(0, int(end - self.call_started_at))

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from homecall.agent import AgentResult
from homecall.config import Settings
from homecall.controller import CallController, CallServices, TransportClosedError
from homecall.session import CallSession

TRANSFER_NUMBER = "+15550001111"
CALLER_PHONE = "+15125551234"


class FakeTransport:
    """In-memory socket. ``sent`` holds every outbound frame, decoded."""

    def __init__(self):
        self.is_open = True
        self.sent: list[dict] = []
        self.reject_transfers = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send_text(self, data: str) -> None:
        frame = json.loads(data)
        if self.reject_transfers and "transfer_number" in frame:
            raise ConnectionResetError("transfer rejected")
        self.sent.append(frame)

    async def receive_text(self) -> str:
        item = await self._inbox.get()
        if item is None:
            self.is_open = False
            raise TransportClosedError("closed")
        return item

    def feed(self, frame) -> None:
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def disconnect(self) -> None:
        self._inbox.put_nowait(None)

    def responses(self) -> list[dict]:
        return [f for f in self.sent if f.get("response_type") == "response"]

    def transfers(self) -> list[dict]:
        return [f for f in self.sent if "transfer_number" in f]


class FakeAgent:
    """Returns scripted outputs in order; the last script repeats."""

    def __init__(self, scripts: list[list[dict]] | None = None, error: Exception | None = None, delay: float = 0):
        self.scripts = scripts or [[{"role": "ai", "content": "How can I help?"}]]
        self.error = error
        self.delay = delay
        self.calls: list[list[dict]] = []

    async def invoke(self, messages):
        self.calls.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        index = min(len(self.calls) - 1, len(self.scripts) - 1)
        produced = [dict(m) for m in self.scripts[index]]
        return AgentResult(messages=list(messages) + produced, input_count=len(messages))


class FakeAgentBuilder:
    def __init__(self, agent: FakeAgent | None = None, fail_times: int = 0, gate: asyncio.Event | None = None):
        self.agent = agent or FakeAgent()
        self.fail_times = fail_times
        self.gate = gate
        self.builds: list[dict] = []

    async def build(self, system_prompt, transcript_ids, capabilities, session_ctx):
        if self.gate is not None:
            await self.gate.wait()
        self.builds.append({
            "system_prompt": system_prompt,
            "transcript_ids": list(transcript_ids),
            "capabilities": capabilities,
            "session_ctx": session_ctx,
        })
        if len(self.builds) <= self.fail_times:
            raise RuntimeError("agent build failed")
        return self.agent


def transfer_script(reason: str, final_text: str = "Transferring you now. Please stay on the line.") -> list[dict]:
    return [
        {"role": "ai", "content": None, "tool_calls": [{"id": "t1", "type": "function"}]},
        {"role": "tool", "tool_call_id": "t1", "content": f"EMERGENCY_TRANSFER:{TRANSFER_NUMBER}:{reason}"},
        {"role": "ai", "content": final_text},
    ]


def response_required(response_id: int, text: str | None) -> dict:
    transcript = [] if text is None else [{"role": "user", "content": text}]
    return {"interaction_type": "response_required", "response_id": response_id, "transcript": transcript}


@pytest.fixture
def settings():
    return Settings(
        emergency_transfer_number=TRANSFER_NUMBER,
        init_wait_timeout_s=0.5,
        identity_lookup_timeout_s=0.5,
        context_lookup_timeout_s=0.5,
        agent_timeout_s=1.0,
    )


@pytest.fixture
def session():
    return CallSession(call_id="call_test")


@pytest.fixture
def retell():
    client = MagicMock()
    client.lookup_caller_phone = AsyncMock(return_value=CALLER_PHONE)
    return client


@pytest.fixture
def context_store():
    store = MagicMock()
    store.get_transcripts_by_latest_upload = AsyncMock(return_value=[])
    store.has_visual_evidence = AsyncMock(return_value=False)
    return store


@pytest.fixture
def alerts():
    client = MagicMock()
    client.summary_configured = True
    client.send_emergency_alert = AsyncMock(return_value={"success": True})
    client.send_call_summary = AsyncMock(return_value={"success": True})
    return client


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def agent():
    return FakeAgent()


@pytest.fixture
def agent_builder(agent):
    return FakeAgentBuilder(agent)


@pytest.fixture
def make_controller(transport, retell, context_store, agent_builder, alerts, settings):
    def _make(call_id: str = "call_test", **overrides) -> CallController:
        services = CallServices(
            retell=overrides.get("retell", retell),
            context_store=overrides.get("context_store", context_store),
            agent_builder=overrides.get("agent_builder", agent_builder),
            alerts=overrides.get("alerts", alerts),
        )
        return CallController(
            call_id,
            overrides.get("transport", transport),
            services=services,
            settings=overrides.get("settings", settings),
        )
    return _make

"""Conversational agent: an OpenAI chat-completions tool loop.

The agent is handed the whole conversation every turn and returns it with
everything it produced appended: assistant tool requests, tool results, video
frames shown to the model, and finally the spoken reply.  Turn handling looks
through the produced messages for a transfer signal, so tool results are kept
verbatim.
"""

import json
import httpx
import logging
from dataclasses import dataclass, field

from homecall.agent_tools import Capabilities, SessionToolContext, Tool, build_tools

logger = logging.getLogger(__name__)

_OPENAI_ROLES = {"human": "user", "ai": "assistant", "system": "system", "tool": "tool"}
VIDEO_FRAMES_TEXT = "Here are the requested moments from the caller's video."


@dataclass
class AgentResult:
    messages: list
    input_count: int = 0

    @property
    def produced(self) -> list:
        """Messages added by this invocation."""
        return self.messages[self.input_count:]

    @property
    def final_text(self) -> str:
        for message in reversed(self.produced):
            if message.get("role") == "ai" and isinstance(message.get("content"), str):
                return message["content"]
        return ""


def to_openai_message(message: dict) -> dict:
    role = message.get("role", "")
    converted = {"role": _OPENAI_ROLES.get(role, role), "content": message.get("content")}
    if message.get("tool_calls"):
        converted["tool_calls"] = message["tool_calls"]
    if role == "tool":
        converted["tool_call_id"] = message.get("tool_call_id", "")
    return converted


def _frame_image_parts(tool_output: str) -> list[dict]:
    try:
        data = json.loads(tool_output)
    except (TypeError, ValueError):
        return []
    if not isinstance(data, dict) or not data.get("success"):
        return []
    return [
        {"type": "image_url", "image_url": {"url": frame["url"]}}
        for frame in data.get("frames", [])
        if frame.get("url")
    ]


class Agent:
    def __init__(
        self,
        *,
        system_prompt: str,
        tools: list[Tool],
        client: httpx.AsyncClient,
        model: str = "gpt-4o",
        temperature: float = 0.7,
        max_tool_rounds: int = 5,
        call_id: str = "",
    ):
        self.system_prompt = system_prompt
        self.tools = {tool.name: tool for tool in tools}
        self._client = client
        self.model = model
        self.temperature = temperature
        self.max_tool_rounds = max_tool_rounds
        self.call_id = call_id

    async def _complete(self, messages: list[dict], offer_tools: bool) -> dict:
        body = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [{"role": "system", "content": self.system_prompt}]
            + [to_openai_message(m) for m in messages],
        }
        if offer_tools and self.tools:
            body["tools"] = [tool.definition() for tool in self.tools.values()]
        resp = await self._client.post("/chat/completions", json=body)
        resp.raise_for_status()
        return resp.json()["choices"][0]["message"]

    async def _run_tool(self, call: dict) -> str:
        function = call.get("function") or {}
        name = function.get("name", "")
        tool = self.tools.get(name)
        if tool is None:
            logger.warning("Agent requested unknown tool %r on call %s", name, self.call_id)
            return json.dumps({"error": f"Unknown tool: {name}"})
        try:
            args = json.loads(function.get("arguments") or "{}")
            return await tool.handler(**args)
        except Exception as e:
            logger.error("Tool %s failed on call %s: %s", name, self.call_id, e)
            return json.dumps({"error": f"{name} failed: {e}"})

    async def invoke(self, messages: list[dict]) -> AgentResult:
        history = list(messages)
        produced: list[dict] = []

        for round_no in range(self.max_tool_rounds + 1):
            # Last round withholds tools so the model has to answer
            reply = await self._complete(history + produced, offer_tools=round_no < self.max_tool_rounds)
            tool_calls = reply.get("tool_calls") or []
            if not tool_calls:
                produced.append({"role": "ai", "content": reply.get("content") or ""})
                return AgentResult(messages=history + produced, input_count=len(history))

            produced.append({"role": "ai", "content": reply.get("content"), "tool_calls": tool_calls})
            image_parts = []
            for call in tool_calls:
                name = (call.get("function") or {}).get("name", "")
                logger.info("Call %s: agent using tool %s", self.call_id, name)
                output = await self._run_tool(call)
                produced.append({
                    "role": "tool",
                    "tool_call_id": call.get("id", ""),
                    "name": name,
                    "content": output,
                })
                if name == "fetch_video_frames":
                    image_parts.extend(_frame_image_parts(output))

            if image_parts:
                produced.append({
                    "role": "human",
                    "content": [{"type": "text", "text": VIDEO_FRAMES_TEXT}, *image_parts],
                })

        raise RuntimeError(f"agent kept requesting tools after {self.max_tool_rounds} rounds")


class AgentBuilder:
    """Builds one Agent per call, with tools bound to that call.

    Shares a single HTTP client to OpenAI across calls; everything
    call-specific lives on the Agent and its tool closures.
    """

    def __init__(self, settings, *, knowledge_base=None, context_store=None, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self.knowledge_base = knowledge_base
        self.context_store = context_store
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=settings.openai_base_url.rstrip("/"),
                headers={"Authorization": f"Bearer {settings.openai_api_key}"},
                timeout=settings.agent_timeout_s,
            )

    async def close(self):
        await self._client.aclose()

    async def build(
        self,
        system_prompt: str,
        transcript_ids: list,
        capabilities: Capabilities,
        session_ctx: SessionToolContext,
    ) -> Agent:
        if transcript_ids and not session_ctx.transcript_ids:
            session_ctx.transcript_ids = list(transcript_ids)
        tools = build_tools(
            session_ctx,
            capabilities=capabilities,
            knowledge_base=self.knowledge_base,
            context_store=self.context_store,
            emergency_number=self.settings.emergency_transfer_number,
        )
        return Agent(
            system_prompt=system_prompt,
            tools=tools,
            client=self._client,
            model=self.settings.openai_model,
            temperature=self.settings.openai_temperature,
            max_tool_rounds=self.settings.agent_max_tool_rounds,
            call_id=session_ctx.call_id,
        )

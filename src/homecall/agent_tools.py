"""Tools the conversational agent can call during a turn.

Tools are built fresh for every call.  Per-call data such as the caller's
phone number or uploaded video ids is captured in the handler closures, so
two concurrent calls never see each other's context.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from homecall.transfer_signal import HUMAN_AGENT_REASON, URGENT_MAINTENANCE_PREFIX, encode_transfer_signal

logger = logging.getLogger(__name__)


@dataclass
class Tool:
    name: str
    description: str
    parameters: dict
    handler: Callable[..., Awaitable[str]]

    def definition(self) -> dict:
        """OpenAI function-tool declaration."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass(frozen=True)
class Capabilities:
    knowledge_base: bool = True
    transfers: bool = True
    video: bool = False


@dataclass
class SessionToolContext:
    call_id: str
    caller_phone: str | None = None
    transcript_ids: list = field(default_factory=list)


def _string_param(description: str) -> dict:
    return {"type": "string", "description": description}


def _object_schema(properties: dict, required: list[str]) -> dict:
    return {"type": "object", "properties": properties, "required": required}


def _knowledge_base_tool(knowledge_base) -> Tool:
    async def search_knowledge_base(query: str) -> str:
        logger.info("Agent searching knowledge base: %r", query)
        return await knowledge_base.search_text(query)

    return Tool(
        name="search_knowledge_base",
        description=(
            "Search the home-maintenance documentation for repair procedures, "
            "troubleshooting steps, safety procedures and technical specifications. "
            "Use it before giving detailed technical instructions."
        ),
        parameters=_object_schema(
            {"query": _string_param("Specific search query, e.g. 'water heater not heating troubleshooting'")},
            ["query"],
        ),
        handler=search_knowledge_base,
    )


def _transfer_tools(ctx: SessionToolContext, emergency_number: str) -> list[Tool]:
    def destination() -> str:
        if not emergency_number:
            logger.error("EMERGENCY_TRANSFER_NUMBER not configured (call %s)", ctx.call_id)
        return emergency_number

    async def transfer_emergency_call(reason: str) -> str:
        logger.warning("Life-threatening emergency on call %s: %s", ctx.call_id, reason)
        return encode_transfer_signal(destination(), reason)

    async def transfer_urgent_maintenance(issue: str, urgency: str = "") -> str:
        logger.warning("Urgent maintenance issue on call %s: %s (%s)", ctx.call_id, issue, urgency)
        return encode_transfer_signal(destination(), f"{URGENT_MAINTENANCE_PREFIX}{issue}")

    async def transfer_to_human_agent(user_request: str = "") -> str:
        logger.info("Caller on %s asked for a human agent: %s", ctx.call_id, user_request)
        return encode_transfer_signal(destination(), HUMAN_AGENT_REASON)

    return [
        Tool(
            name="transfer_emergency_call",
            description=(
                "Transfer a life-threatening emergency to the emergency response team. "
                "Only after telling the caller to dial 911 and learning they cannot."
            ),
            parameters=_object_schema(
                {"reason": _string_param("Brief description, e.g. 'gas leak with injured person'")},
                ["reason"],
            ),
            handler=transfer_emergency_call,
        ),
        Tool(
            name="transfer_urgent_maintenance",
            description=(
                "Transfer to the emergency maintenance team for urgent, non life-threatening "
                "home issues: major leaks or flooding, total power loss, gas smell without "
                "symptoms, HVAC failure in extreme weather, sewage backup."
            ),
            parameters=_object_schema(
                {
                    "issue": _string_param("Brief description, e.g. 'burst pipe flooding basement'"),
                    "urgency": _string_param("Why immediate professional help is needed"),
                },
                ["issue"],
            ),
            handler=transfer_urgent_maintenance,
        ),
        Tool(
            name="transfer_to_human_agent",
            description="Transfer to a human support agent when the caller explicitly asks for a person.",
            parameters=_object_schema(
                {"user_request": _string_param("What the caller said when asking for a human")},
                ["user_request"],
            ),
            handler=transfer_to_human_agent,
        ),
    ]


def _video_tools(ctx: SessionToolContext, context_store) -> list[Tool]:
    def resolve(video_number: int) -> Any:
        index = int(video_number) - 1
        if index < 0 or index >= len(ctx.transcript_ids):
            return None
        return ctx.transcript_ids[index]

    async def get_available_timestamps(video_number: int = 1) -> str:
        transcript_id = resolve(video_number)
        if transcript_id is None:
            return json.dumps({"error": "No video associated with this call"})
        timestamps = await context_store.get_available_frame_timestamps(transcript_id)
        if not timestamps:
            return json.dumps({"error": "No frames available", "videoDuration": 0})
        duration = max(timestamps)
        return json.dumps({
            "success": True,
            "videoDuration": duration,
            "frameCount": len(timestamps),
            "availableTimestamps": timestamps,
        })

    async def fetch_video_frames(timestamps: list, video_number: int = 1) -> str:
        transcript_id = resolve(video_number)
        if transcript_id is None:
            return json.dumps({"error": "No video associated with this call"})
        frames = await context_store.fetch_frames(transcript_id, timestamps)
        if not frames:
            return json.dumps({
                "error": "No frames found for the requested timestamps",
                "requestedTimestamps": timestamps,
            })
        logger.info("Returning %d frame(s) from video %s", len(frames), video_number)
        return json.dumps({
            "success": True,
            "frameCount": len(frames),
            "frames": [
                {
                    "timestamp": frame.get("frame_timestamp"),
                    "url": frame.get("frame_storage_url"),
                    "description": f"Frame at {frame.get('frame_timestamp')} seconds",
                }
                for frame in frames
            ],
        })

    video_number_param = {
        "type": "integer",
        "description": "Which uploaded video (1 for the first)",
        "minimum": 1,
    }
    return [
        Tool(
            name="get_available_timestamps",
            description="How long the caller's uploaded video is and which seconds can be viewed.",
            parameters=_object_schema({"video_number": video_number_param}, []),
            handler=get_available_timestamps,
        ),
        Tool(
            name="fetch_video_frames",
            description=(
                "Look at the caller's uploaded video at specific seconds. "
                "Frames exist at 1-second intervals; request neighbours (e.g. [9, 10, 11])."
            ),
            parameters=_object_schema(
                {
                    "timestamps": {
                        "type": "array",
                        "items": {"type": "number"},
                        "description": "Seconds into the video, e.g. [10, 15, 20]",
                    },
                    "video_number": video_number_param,
                },
                ["timestamps"],
            ),
            handler=fetch_video_frames,
        ),
    ]


def build_tools(
    ctx: SessionToolContext,
    *,
    capabilities: Capabilities,
    knowledge_base=None,
    context_store=None,
    emergency_number: str = "",
) -> list[Tool]:
    tools: list[Tool] = []
    if capabilities.video and ctx.transcript_ids and context_store is not None:
        tools.extend(_video_tools(ctx, context_store))
    if capabilities.knowledge_base and knowledge_base is not None:
        tools.append(_knowledge_base_tool(knowledge_base))
    if capabilities.transfers:
        tools.extend(_transfer_tools(ctx, emergency_number))
    logger.info(
        "Built %d tool(s) for call %s: %s",
        len(tools), ctx.call_id, ", ".join(t.name for t in tools),
    )
    return tools

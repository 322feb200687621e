"""Call-control protocol spoken over the LLM WebSocket.

Inbound events are decoded once, at the socket boundary, into one model per
``interaction_type``; everything downstream matches on the model class.
"""

import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

ERROR_REPLY_TEXT = "I'm sorry, I encountered a technical issue. Could you please repeat that?"


class MalformedEventError(ValueError):
    """Inbound frame that cannot be decoded into a known event."""

    def __init__(self, message: str, response_id: int = 0):
        super().__init__(message)
        self.response_id = response_id


class TranscriptUtterance(BaseModel):
    model_config = ConfigDict(extra="ignore")
    role: str
    content: str = ""


class CallInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")
    call_id: Optional[str] = None
    from_number: Optional[str] = None
    recording_url: Optional[str] = None


class InboundCallDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")
    interaction_type: Literal["call_details"]
    call: Optional[CallInfo] = None


class InboundResponseRequired(BaseModel):
    model_config = ConfigDict(extra="ignore")
    interaction_type: Literal["response_required"]
    response_id: int
    transcript: list[TranscriptUtterance] = Field(default_factory=list)

    def latest_utterance(self) -> str:
        """The caller's most recent line; agent lines are never treated as the caller's."""
        for utterance in reversed(self.transcript):
            if utterance.role == "user":
                return utterance.content.strip()
        return ""


class InboundUpdateOnly(BaseModel):
    model_config = ConfigDict(extra="ignore")
    interaction_type: Literal["update_only"]
    transcript: list[TranscriptUtterance] = Field(default_factory=list)
    call: Optional[CallInfo] = None


class InboundCallEnded(BaseModel):
    model_config = ConfigDict(extra="ignore")
    interaction_type: Literal["call_ended"]
    call: Optional[CallInfo] = None


class InboundPingPong(BaseModel):
    model_config = ConfigDict(extra="ignore")
    interaction_type: Literal["ping_pong"]
    timestamp: int


class InboundUnknown(BaseModel):
    """Any interaction type this server does not handle yet."""

    model_config = ConfigDict(extra="ignore")
    interaction_type: str


KnownInboundEvent = Annotated[
    Union[
        InboundCallDetails,
        InboundResponseRequired,
        InboundUpdateOnly,
        InboundCallEnded,
        InboundPingPong,
    ],
    Field(discriminator="interaction_type"),
]

InboundEvent = Union[
    InboundCallDetails,
    InboundResponseRequired,
    InboundUpdateOnly,
    InboundCallEnded,
    InboundPingPong,
    InboundUnknown,
]

KNOWN_INTERACTION_TYPES = frozenset({
    "call_details", "response_required", "update_only", "call_ended", "ping_pong",
})

_inbound_adapter = TypeAdapter(KnownInboundEvent)


class RetellConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    auto_reconnect: bool = True
    call_details: bool = True


class OutboundConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    response_type: Literal["config"] = "config"
    config: RetellConfig = Field(default_factory=RetellConfig)


class OutboundResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")
    response_type: Literal["response"] = "response"
    response_id: int
    content: str
    content_complete: bool = True
    end_call: bool = False
    transfer_number: Optional[str] = None

    @property
    def is_transfer(self) -> bool:
        return self.transfer_number is not None


class OutboundPingPong(BaseModel):
    model_config = ConfigDict(extra="forbid")
    response_type: Literal["ping_pong"] = "ping_pong"
    timestamp: int


OutboundEvent = Union[OutboundConfig, OutboundResponse, OutboundPingPong]


def _recover_response_id(obj: dict) -> int:
    value = obj.get("response_id")
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def parse_inbound_obj(obj: Any) -> InboundEvent:
    if not isinstance(obj, dict):
        raise MalformedEventError("inbound event is not a JSON object")
    response_id = _recover_response_id(obj)
    interaction_type = obj.get("interaction_type")
    if not isinstance(interaction_type, str):
        raise MalformedEventError("inbound event has no interaction_type", response_id)
    if interaction_type not in KNOWN_INTERACTION_TYPES:
        return InboundUnknown(interaction_type=interaction_type)
    try:
        return _inbound_adapter.validate_python(obj)
    except ValidationError as e:
        raise MalformedEventError(
            f"invalid {interaction_type} event: {e.error_count()} error(s)", response_id
        ) from e


def parse_inbound_json(raw_text: str | bytes) -> InboundEvent:
    try:
        obj = json.loads(raw_text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedEventError(f"inbound frame is not valid JSON: {e}") from e
    return parse_inbound_obj(obj)


def dumps_outbound(event: OutboundEvent) -> str:
    return json.dumps(event.model_dump(exclude_none=True), separators=(",", ":"))


def config_ack() -> OutboundConfig:
    return OutboundConfig()


def reply(response_id: int, content: str, end_call: bool = False) -> OutboundResponse:
    return OutboundResponse(response_id=response_id, content=content, end_call=end_call)


def transfer_reply(response_id: int, content: str, transfer_number: str) -> OutboundResponse:
    # end_call stays False so the provider can carry out the transfer itself
    return OutboundResponse(
        response_id=response_id,
        content=content,
        end_call=False,
        transfer_number=transfer_number,
    )


def error_reply(response_id: int = 0) -> OutboundResponse:
    return OutboundResponse(response_id=response_id, content=ERROR_REPLY_TEXT, end_call=False)


def ping_pong(timestamp: int) -> OutboundPingPong:
    return OutboundPingPong(timestamp=timestamp)

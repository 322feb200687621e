"""One controller per LLM WebSocket connection.

The controller owns the call's session and wires the per-call pieces
together: initializer (started as soon as the socket opens), turn processor,
and the outbound channel every reply goes through.  It decodes each inbound
frame once and dispatches on the event model.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from homecall import post_call
from homecall.background import BackgroundTasks
from homecall.initializer import AgentInitializer
from homecall.processor import TurnProcessor
from homecall.protocol import (
    CallInfo,
    InboundCallDetails,
    InboundCallEnded,
    InboundEvent,
    InboundPingPong,
    InboundResponseRequired,
    InboundUnknown,
    InboundUpdateOnly,
    MalformedEventError,
    OutboundEvent,
    OutboundResponse,
    config_ack,
    dumps_outbound,
    error_reply,
    parse_inbound_json,
    ping_pong,
)
from homecall.session import CallSession
from homecall.states import TurnPhase

logger = logging.getLogger(__name__)


class TransportClosedError(ConnectionError):
    """The socket is gone; nothing more can be sent or received."""


class Transport(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def send_text(self, data: str) -> None: ...

    async def receive_text(self) -> str: ...


class WebSocketTransport:
    """Transport over an accepted Starlette/FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def receive_text(self) -> str:
        try:
            return await self.websocket.receive_text()
        except WebSocketDisconnect as e:
            raise TransportClosedError(f"websocket disconnected ({e.code})") from e


class OutboundChannel:
    """Serializes sends so frames from concurrent turns never interleave."""

    def __init__(self, transport: Transport, call_id: str):
        self.transport = transport
        self.call_id = call_id
        self._lock = asyncio.Lock()

    async def send(self, event: OutboundEvent) -> bool:
        async with self._lock:
            if not self.transport.is_open:
                logger.warning("Dropping %s for %s: socket closed", event.response_type, self.call_id)
                return False
            await self.transport.send_text(dumps_outbound(event))
            return True

    async def send_transfer(self, event: OutboundResponse) -> None:
        """Like ``send``, but a closed socket is an error the caller has to handle."""
        async with self._lock:
            if not self.transport.is_open:
                raise TransportClosedError(f"cannot transfer {self.call_id}: socket closed")
            await self.transport.send_text(dumps_outbound(event))


@dataclass
class CallServices:
    """Process-wide clients shared by every call; built once at startup."""

    retell: object
    context_store: object
    agent_builder: object
    alerts: object = None
    background: BackgroundTasks = field(default_factory=BackgroundTasks)


class CallController:
    def __init__(self, call_id: str, transport: Transport, *, services: CallServices, settings):
        self.call_id = call_id
        self.transport = transport
        self.services = services
        self.settings = settings
        self.session = CallSession(call_id=call_id)
        self.outbound = OutboundChannel(transport, call_id)
        self.initializer = AgentInitializer(
            self.session,
            retell=services.retell,
            context_store=services.context_store,
            agent_builder=services.agent_builder,
            settings=settings,
            on_ready=self._on_agent_ready,
        )
        self.processor = TurnProcessor(
            self.session, self.initializer, self.outbound, services.alerts, settings, services.background,
        )
        self._init_task: Optional[asyncio.Task] = None
        self._turns: set[asyncio.Task] = set()
        self._closed = False

    async def _on_agent_ready(self) -> None:
        await self.processor.ensure_greeting()

    async def open(self) -> None:
        logger.info("Call %s connected", self.call_id)
        self._init_task = self.initializer.start()

    async def handle_message(self, raw: str | bytes) -> Optional[TurnPhase]:
        """Decode one inbound frame and handle it to completion."""
        event = await self._parse(raw)
        if event is None:
            return None
        return await self.dispatch(event)

    async def _parse(self, raw: str | bytes) -> Optional[InboundEvent]:
        try:
            return parse_inbound_json(raw)
        except MalformedEventError as e:
            logger.error("Malformed event on %s: %s", self.call_id, e)
            await self._send_quietly(error_reply(e.response_id))
            return None

    async def dispatch(self, event: InboundEvent) -> Optional[TurnPhase]:
        try:
            if isinstance(event, InboundResponseRequired):
                return await self.processor.handle(event)
            if isinstance(event, InboundCallDetails):
                logger.info("Call details received for %s", self.call_id)
                await self.outbound.send(config_ack())
            elif isinstance(event, (InboundUpdateOnly, InboundCallEnded)):
                if isinstance(event, InboundCallEnded):
                    logger.info("Call ended event received for %s", self.call_id)
                self._capture_recording(event.call)
            elif isinstance(event, InboundPingPong):
                await self.outbound.send(ping_pong(event.timestamp))
            elif isinstance(event, InboundUnknown):
                logger.debug("Ignoring %s event on %s", event.interaction_type, self.call_id)
        except Exception as e:
            logger.error("Error handling %s on %s: %r", event.interaction_type, self.call_id, e)
            await self._send_quietly(error_reply(getattr(event, "response_id", 0)))
        return None

    def _capture_recording(self, call: Optional[CallInfo]) -> None:
        if call is not None and call.recording_url:
            self.session.recording_url = call.recording_url
            logger.info("Recording available for %s: %s", self.call_id, call.recording_url)

    async def _send_quietly(self, event: OutboundEvent) -> None:
        try:
            await self.outbound.send(event)
        except Exception as e:
            logger.error("Send failed on %s: %r", self.call_id, e)

    def on_transport_error(self, exc: BaseException) -> None:
        logger.error("Transport error on %s: %r", self.call_id, exc)

    def _spawn_turn(self, event: InboundResponseRequired) -> None:
        task = asyncio.create_task(self.dispatch(event))
        self._turns.add(task)
        task.add_done_callback(self._turns.discard)

    async def run(self) -> None:
        """Receive until the socket closes, then report.

        Turns run as tasks, started in arrival order, so ping-pong and
        updates are still answered while the agent is thinking.
        """
        await self.open()
        try:
            while True:
                try:
                    raw = await self.transport.receive_text()
                except TransportClosedError:
                    logger.info("Socket closed for %s", self.call_id)
                    break
                event = await self._parse(raw)
                if isinstance(event, InboundResponseRequired):
                    self._spawn_turn(event)
                elif event is not None:
                    await self.dispatch(event)
        except Exception as e:
            self.on_transport_error(e)
        finally:
            await self.close()

    async def close(self) -> None:
        """Best-effort teardown and end-of-call reporting. Never raises."""
        if self._closed:
            return
        self._closed = True
        end_time = time.time()
        logger.info(
            "Call %s closed after %ds (%d messages, emergency=%s)",
            self.call_id,
            self.session.duration_seconds(now=end_time),
            len(self.session.messages),
            self.session.emergency_detected,
        )

        pending = [t for t in self._turns if not t.done()]
        if self._init_task is not None and not self._init_task.done():
            pending.append(self._init_task)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        # Emergency alerts keep running in services.background after the socket is gone
        try:
            await post_call.handle_call_ended(self.session, self.services.alerts, end_time=end_time)
        except Exception as e:
            logger.error("Post-call reporting failed for %s: %r", self.call_id, e)

import asyncio
import logging

from homecall.alerts import build_emergency_alert
from homecall.background import BackgroundTasks
from homecall.protocol import InboundResponseRequired, error_reply, reply, transfer_reply
from homecall.session import CallSession
from homecall.states import TurnPhase
from homecall.transfer_signal import TransferKind, TransferSignal, decode_transfer_signal
from homecall.validation import normalize_transfer_number, speak_digits

logger = logging.getLogger(__name__)

TRANSFER_IN_PROGRESS_TEXT = "The transfer is in progress. Please stay on the line."
TRANSFERRED_MARKER = "[CALL TRANSFERRED]"

DEFAULT_TRANSFER_TEXT = {
    TransferKind.HUMAN_AGENT: (
        "I understand you'd like to speak with a human agent. "
        "I'm transferring you to our support team now. Please stay on the line."
    ),
    TransferKind.URGENT_MAINTENANCE: (
        "This needs immediate professional attention. I'm transferring you to our emergency "
        "maintenance team who will dispatch help right away. Please stay on the line."
    ),
    TransferKind.LIFE_THREATENING: (
        "I'm transferring you to our emergency support team now. Please stay on the line."
    ),
}


def transfer_failed_text(signal: TransferSignal) -> str:
    """What to say when the transfer command could not be sent."""
    number = speak_digits(signal.destination).strip()
    if signal.kind == TransferKind.HUMAN_AGENT:
        return (
            "I apologize, the transfer to our support team didn't go through. "
            f"Please call our support line directly at: {number}. "
            "A human agent will be happy to assist you."
        )
    if signal.kind == TransferKind.URGENT_MAINTENANCE:
        return (
            "I apologize, the transfer failed. Please write this down and call our "
            f"emergency maintenance line directly: {number}. They will dispatch help immediately."
        )
    return (
        "This is a life-threatening emergency. Please listen carefully. "
        "Hang up this call immediately and dial 9 1 1. That's 9 1 1 for emergency services. "
        "Your safety is the absolute priority. Hang up now and make that call."
    )


class TurnProcessor:
    """Handles one ``response_required`` event and answers it exactly once.

    A turn waits for the agent to be ready, makes sure the greeting went out
    first, runs the agent over the whole conversation and then either replies,
    transfers the call, or answers with the protocol error reply.  Nothing
    raised inside a turn escapes ``handle``.
    """

    def __init__(self, session: CallSession, initializer, outbound, alerts, settings, background: BackgroundTasks):
        self.session = session
        self.initializer = initializer
        self.outbound = outbound
        self.alerts = alerts
        self.settings = settings
        # Process-wide, so alerts outlive this call's socket
        self.background = background

    async def ensure_greeting(self) -> bool:
        """Send the greeting unless it already went out. Returns whether this call sent it."""
        if not self.session.claim_greeting():
            return False
        text = self.initializer.first_message
        self.session.add_ai_message(text)
        logger.info("Greeting caller on %s", self.session.call_id)
        await self.outbound.send(reply(0, text))
        return True

    async def handle(self, event: InboundResponseRequired) -> TurnPhase:
        response_id = event.response_id
        call_id = self.session.call_id

        if not await self.initializer.wait_ready(self.settings.init_wait_timeout_s):
            logger.error(
                "Turn %d on %s failed during %s: agent not ready",
                response_id, call_id, TurnPhase.WAIT_INIT.value,
            )
            await self._send_error(response_id)
            return TurnPhase.ERROR

        phase = TurnPhase.ENSURE_GREETING
        try:
            await self.ensure_greeting()

            utterance = event.latest_utterance()
            if not utterance:
                logger.info("Empty utterance for turn %d on %s, nothing to answer", response_id, call_id)
                return TurnPhase.SKIPPED
            self.session.add_human_message(utterance)
            logger.info("Caller on %s: %r", call_id, utterance)

            phase = TurnPhase.RUN_AGENT
            result = await asyncio.wait_for(
                self.initializer.agent.invoke(self.session.history()),
                self.settings.agent_timeout_s,
            )

            phase = TurnPhase.CLASSIFY_RESULT
            text = result.final_text
            signal = decode_transfer_signal(result.produced)
            if signal is not None:
                return await self._transfer(response_id, signal, text)

            self.session.add_ai_message(text)
            logger.info("Agent on %s: %r", call_id, text)
            await self.outbound.send(reply(response_id, text))
            return TurnPhase.REPLY
        except Exception as e:
            logger.error(
                "Turn %d on %s failed during %s: %r", response_id, call_id, phase.value, e,
                exc_info=True,
            )
            await self._send_error(response_id)
            return TurnPhase.ERROR

    async def _transfer(self, response_id: int, signal: TransferSignal, agent_text: str) -> TurnPhase:
        call_id = self.session.call_id
        if not self.session.claim_transfer():
            logger.warning("Transfer already in progress on %s, sending holding reply", call_id)
            await self.outbound.send(reply(response_id, TRANSFER_IN_PROGRESS_TEXT))
            return TurnPhase.REPLY

        if signal.kind == TransferKind.HUMAN_AGENT:
            logger.info("Caller on %s asked for a human agent", call_id)
        else:
            logger.warning("%s on %s: %s", signal.kind.value, call_id, signal.display_reason)
        if signal.counts_as_emergency:
            self.session.mark_emergency(signal.display_reason)

        content = agent_text or DEFAULT_TRANSFER_TEXT[signal.kind]
        try:
            if not signal.destination:
                raise ValueError("no transfer destination")
            destination = normalize_transfer_number(signal.destination)
            await self.outbound.send_transfer(transfer_reply(response_id, content, destination))
            self.session.add_ai_message(f"{content} {TRANSFERRED_MARKER}")
            logger.info("Transfer to %s sent for %s (response %d)", destination, call_id, response_id)
        except Exception as e:
            logger.error("Transfer on %s failed, reading the number out instead: %r", call_id, e)
            fallback = transfer_failed_text(signal)
            self.session.add_ai_message(fallback)
            await self.outbound.send(reply(response_id, fallback))

        if signal.counts_as_emergency:
            self._fire_alert(signal)
        return TurnPhase.TRANSFER

    def _fire_alert(self, signal: TransferSignal) -> None:
        if self.alerts is None:
            return
        payload = build_emergency_alert(
            call_id=self.session.call_id,
            phone=self.session.caller_phone,
            signal=signal,
        )
        self.background.spawn(self._send_alert(payload), name=f"emergency-alert-{self.session.call_id}")

    async def _send_alert(self, payload: dict) -> None:
        try:
            result = await self.alerts.send_emergency_alert(payload)
            logger.info("Emergency alert for %s: %s", self.session.call_id, result)
        except Exception as e:
            logger.error("Emergency alert for %s failed: %r", self.session.call_id, e)

    async def _send_error(self, response_id: int) -> None:
        try:
            await self.outbound.send(error_reply(response_id))
        except Exception as e:
            logger.error("Could not send error reply on %s: %r", self.session.call_id, e)

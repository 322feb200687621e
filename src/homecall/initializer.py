import asyncio
import logging
from typing import Awaitable, Callable, Optional

from homecall.agent_tools import Capabilities, SessionToolContext
from homecall.prompts import (
    create_receptionist_prompt,
    create_technical_support_prompt,
    generate_first_message,
    number_transcripts,
)
from homecall.session import CallSession, VideoContext

logger = logging.getLogger(__name__)


class AgentInitializer:
    """Works out who is calling and builds the call's agent, once.

    ``initialize`` may be triggered any number of times (socket open, first
    turn); only the first trigger does any work.  Every failure path ends in
    receptionist mode: a caller we cannot identify, or whose uploads we cannot
    read, still gets a working agent.  Turns wait on ``wait_ready``.
    """

    def __init__(
        self,
        session: CallSession,
        *,
        retell,
        context_store,
        agent_builder,
        settings,
        on_ready: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.session = session
        self.retell = retell
        self.context_store = context_store
        self.agent_builder = agent_builder
        self.settings = settings
        self.on_ready = on_ready
        self.agent = None
        self.first_message = generate_first_message(0)
        self._started = False
        self._done = asyncio.Event()

    @property
    def started(self) -> bool:
        return self._started

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def start(self) -> Optional[asyncio.Task]:
        """Launch initialization in the background; None if it was already launched."""
        if not self.session.begin_initializing():
            logger.debug("Initialization already running or done for %s", self.session.call_id)
            return None
        self._started = True
        return asyncio.create_task(self._run())

    async def initialize(self) -> None:
        task = self.start()
        if task is not None:
            await task

    async def _run(self) -> None:
        call_id = self.session.call_id
        logger.info("Initializing agent for call %s", call_id)

        try:
            try:
                self.agent = await self._build_for_caller()
            except Exception as e:
                logger.warning("Initialization failed for %s, falling back to receptionist: %s", call_id, e)
                self.agent = await self._build_receptionist()
            self.session.agent_ready = True
            logger.info("Agent ready for call %s", call_id)
        except Exception as e:
            logger.error("Could not build an agent for call %s: %s", call_id, e)
        finally:
            self.session.agent_initializing = False
            self._done.set()

        if self.session.agent_ready and self.on_ready is not None:
            try:
                await self.on_ready()
            except Exception as e:
                logger.error("on_ready callback failed for %s: %s", call_id, e)

    async def wait_ready(self, timeout: float) -> bool:
        """True once the agent is built; False if it never started, failed, or took too long."""
        if self.session.agent_ready:
            return True
        if not self._started:
            return False
        try:
            await asyncio.wait_for(self._done.wait(), timeout)
        except asyncio.TimeoutError:
            logger.error("Agent for %s not ready after %.1fs", self.session.call_id, timeout)
            return False
        return self.session.agent_ready

    async def _lookup_phone(self) -> str | None:
        try:
            return await asyncio.wait_for(
                self.retell.lookup_caller_phone(self.session.call_id),
                self.settings.identity_lookup_timeout_s,
            )
        except Exception as e:
            logger.warning(
                "Caller lookup failed for %s, continuing without caller identity: %r",
                self.session.call_id, e,
            )
            return None

    async def _lookup_context(self, phone: str):
        records = await self.context_store.get_transcripts_by_latest_upload(phone)
        has_video = False
        for record in records:
            if await self.context_store.has_visual_evidence(record.transcript_id):
                has_video = True
        return records, has_video

    async def _build_for_caller(self):
        phone = await self._lookup_phone()
        if not phone:
            return await self._build_receptionist()
        self.session.caller_phone = phone

        records, has_video = await asyncio.wait_for(
            self._lookup_context(phone),
            self.settings.context_lookup_timeout_s,
        )
        if not records:
            logger.info("No prior uploads for %s, using receptionist agent", phone)
            return await self._build_receptionist()

        transcript_ids = [record.transcript_id for record in records]
        logger.info(
            "Using technical support agent for %s: %d video(s), frames=%s",
            phone, len(records), has_video,
        )
        agent = await self.agent_builder.build(
            create_technical_support_prompt(number_transcripts(records), has_video, len(records)),
            transcript_ids,
            Capabilities(knowledge_base=True, transfers=True, video=has_video),
            SessionToolContext(
                call_id=self.session.call_id,
                caller_phone=phone,
                transcript_ids=list(transcript_ids),
            ),
        )
        self.session.video_context = VideoContext(transcript_ids=transcript_ids, has_video=has_video)
        self.session.prior_context_count = len(records)
        self.first_message = generate_first_message(len(records))
        return agent

    async def _build_receptionist(self):
        agent = await self.agent_builder.build(
            create_receptionist_prompt(),
            [],
            Capabilities(knowledge_base=True, transfers=True, video=False),
            SessionToolContext(call_id=self.session.call_id, caller_phone=self.session.caller_phone),
        )
        self.first_message = generate_first_message(0)
        return agent

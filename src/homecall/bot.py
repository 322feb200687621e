import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse

from homecall.agent import AgentBuilder
from homecall.alerts import AlertClient
from homecall.config import Settings, validate_config
from homecall.context_store import ContextStore
from homecall.controller import CallController, CallServices, WebSocketTransport
from homecall.knowledge_base import KnowledgeBase
from homecall.post_call import handle_call_analyzed
from homecall.retell import RetellClient
from homecall.validation import format_to_e164

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "Home Maintenance Voice Agent"
SERVICE_VERSION = "1.0.0"


def build_services(settings: Settings) -> CallServices:
    context_store = ContextStore(settings.supabase_url, settings.supabase_anon_key)
    knowledge_base = KnowledgeBase(
        openai_api_key=settings.openai_api_key,
        pinecone_api_key=settings.pinecone_api_key,
        pinecone_index_host=settings.pinecone_index_host,
        embedding_model=settings.openai_embedding_model,
        openai_base_url=settings.openai_base_url,
    )
    return CallServices(
        retell=RetellClient(
            settings.retell_api_key,
            base_url=settings.retell_base_url,
            from_number=settings.retell_phone_number,
            agent_id=settings.retell_agent_id,
        ),
        context_store=context_store,
        agent_builder=AgentBuilder(
            settings,
            knowledge_base=knowledge_base,
            context_store=context_store,
        ),
        alerts=AlertClient(
            emergency_url=settings.alerts_emergency_url,
            summary_url=settings.alerts_summary_url,
            webhook_secret=settings.alerts_webhook_secret,
        ),
    )


async def close_services(services: CallServices) -> None:
    builder = services.agent_builder
    for client in (services.retell, services.context_store, builder, getattr(builder, "knowledge_base", None)):
        if client is None:
            continue
        try:
            await client.close()
        except Exception as e:
            logger.warning("Closing %s failed: %s", type(client).__name__, e)


async def drain_background(services: CallServices, timeout: float) -> None:
    """Let alerts fired by finished calls complete before the process exits."""
    pending = len(services.background)
    if not pending:
        return
    logger.info("Waiting up to %.0fs for %d background task(s)", timeout, pending)
    cancelled = await services.background.drain(timeout)
    if cancelled:
        logger.error("%d background task(s) did not finish before shutdown", cancelled)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests install their own settings/services on app.state before startup
    if getattr(app.state, "services", None) is None:
        validate_config()
        app.state.settings = Settings.from_env()
        app.state.services = build_services(app.state.settings)
        owns_services = True
    else:
        owns_services = False
    logger.info("%s started", SERVICE_NAME)
    yield
    await drain_background(app.state.services, app.state.settings.shutdown_drain_timeout_s)
    if owns_services:
        await close_services(app.state.services)


app = FastAPI(title=SERVICE_NAME, lifespan=lifespan)


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "endpoints": {
            "websocket": "/llm-websocket/{call_id}",
            "callback": "POST /request-callback",
            "call_analyzed": "POST /webhook/call-analyzed",
            "health": "/health",
        },
    }


@app.post("/request-callback")
async def request_callback(request: Request):
    """Have the agent call the user back."""
    body = await request.json()
    phone = (body or {}).get("phoneNumber")
    if not phone:
        return JSONResponse({"success": False, "error": "Phone number is required"}, status_code=400)

    logger.info("Callback requested for %s", phone)
    try:
        call = await request.app.state.services.retell.create_phone_call(format_to_e164(phone))
    except Exception as e:
        logger.error("Error initiating callback to %s: %s", phone, e)
        return JSONResponse({"success": False, "error": str(e)}, status_code=500)
    return {
        "success": True,
        "callId": call.get("call_id"),
        "message": "Callback initiated successfully",
    }


@app.post("/webhook/call-analyzed")
async def call_analyzed(request: Request):
    body = await request.json()
    event = (body or {}).get("event")
    if event != "call_analyzed":
        logger.info("Ignoring webhook event %s", event)
        return {"received": True}

    call = body.get("call")
    if not call or not call.get("call_id"):
        logger.warning("call_analyzed webhook missing call data")
        return JSONResponse({"error": "Missing call data"}, status_code=400)

    services = request.app.state.services
    try:
        saved = await handle_call_analyzed(call, services.context_store, services.alerts)
    except Exception as e:
        logger.error("call_analyzed webhook failed for %s: %s", call.get("call_id"), e)
        return JSONResponse({"error": str(e)}, status_code=500)
    return {"received": True, "saved": saved}


@app.websocket("/llm-websocket/{call_id}")
async def llm_websocket(websocket: WebSocket, call_id: str):
    await websocket.accept()
    controller = CallController(
        call_id,
        WebSocketTransport(websocket),
        services=websocket.app.state.services,
        settings=websocket.app.state.settings,
    )
    await controller.run()


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8080"))
    uvicorn.run("homecall.bot:app", host="0.0.0.0", port=port, reload=True)

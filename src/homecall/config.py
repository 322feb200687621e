"""Startup configuration.

``validate_config`` checks that all required environment variables are set
before the server accepts connections, so a missing key fails loudly at boot
rather than mid-call.  ``Settings`` is the single configuration object built
at startup and handed to every client and call controller.
"""

import os
import sys
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "RETELL_API_KEY",
    "OPENAI_API_KEY",
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
]

OPTIONAL_VARS = [
    "EMERGENCY_TRANSFER_NUMBER",
    "RETELL_AGENT_ID",
    "RETELL_PHONE_NUMBER",
    "PINECONE_API_KEY",
    "PINECONE_INDEX_HOST",
    "ALERTS_EMERGENCY_URL",
    "ALERTS_SUMMARY_URL",
    "ALERTS_WEBHOOK_SECRET",
    "LOG_LEVEL",
]


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty.  Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or in the deployment's secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)


def _getenv_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


@dataclass(frozen=True)
class Settings:
    # Retell
    retell_api_key: str = ""
    retell_base_url: str = "https://api.retellai.com"
    retell_agent_id: str = ""
    retell_phone_number: str = ""

    # OpenAI
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"
    openai_embedding_model: str = "text-embedding-3-small"
    openai_temperature: float = 0.7

    # Supabase (prior uploads + call history)
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Pinecone (knowledge base)
    pinecone_api_key: str = ""
    pinecone_index_host: str = ""

    # Transfers
    emergency_transfer_number: str = ""

    # Alerting / reporting webhooks
    alerts_emergency_url: str = ""
    alerts_summary_url: str = ""
    alerts_webhook_secret: str = ""

    # Timeouts (seconds)
    init_wait_timeout_s: float = 10.0
    identity_lookup_timeout_s: float = 5.0
    context_lookup_timeout_s: float = 5.0
    agent_timeout_s: float = 30.0
    agent_max_tool_rounds: int = 5

    # Worst case for one alert: two 15s attempts plus the retry backoff
    shutdown_drain_timeout_s: float = 35.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            retell_api_key=os.getenv("RETELL_API_KEY", ""),
            retell_base_url=os.getenv("RETELL_BASE_URL", "https://api.retellai.com"),
            retell_agent_id=os.getenv("RETELL_AGENT_ID", ""),
            retell_phone_number=os.getenv("RETELL_PHONE_NUMBER", ""),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
            openai_embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
            openai_temperature=_getenv_float("OPENAI_TEMPERATURE", 0.7),
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY", ""),
            pinecone_api_key=os.getenv("PINECONE_API_KEY", ""),
            pinecone_index_host=os.getenv("PINECONE_INDEX_HOST", ""),
            emergency_transfer_number=os.getenv("EMERGENCY_TRANSFER_NUMBER", ""),
            alerts_emergency_url=os.getenv("ALERTS_EMERGENCY_URL", ""),
            alerts_summary_url=os.getenv("ALERTS_SUMMARY_URL", ""),
            alerts_webhook_secret=os.getenv("ALERTS_WEBHOOK_SECRET", ""),
            init_wait_timeout_s=_getenv_float("INIT_WAIT_TIMEOUT_S", 10.0),
            identity_lookup_timeout_s=_getenv_float("IDENTITY_LOOKUP_TIMEOUT_S", 5.0),
            context_lookup_timeout_s=_getenv_float("CONTEXT_LOOKUP_TIMEOUT_S", 5.0),
            agent_timeout_s=_getenv_float("AGENT_TIMEOUT_S", 30.0),
            agent_max_tool_rounds=int(_getenv_float("AGENT_MAX_TOOL_ROUNDS", 5)),
            shutdown_drain_timeout_s=_getenv_float("SHUTDOWN_DRAIN_TIMEOUT_S", 35.0),
        )

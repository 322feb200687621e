import httpx
import logging

from homecall.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)


class RetellClient:
    """HTTP client for the Retell call API.

    Caller identity comes from ``get_call``.  Unlike the other collaborator
    clients, lookups raise on failure: the initializer decides what the
    fallback is, and it needs to know the lookup did not succeed.  After 3
    consecutive failures the breaker opens and lookups fail fast for 60s.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.retellai.com",
        from_number: str = "",
        agent_id: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.from_number = from_number
        self.agent_id = agent_id
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="Retell API",
        )
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {api_key}",
                },
                timeout=self.timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def get_call(self, call_id: str) -> dict:
        if not self._circuit.should_try():
            raise CircuitOpenError("Retell API unavailable (circuit open)")
        try:
            resp = await self._client.get(f"/v2/get-call/{call_id}")
            resp.raise_for_status()
            details = resp.json()
        except Exception as e:
            self._circuit.record_failure()
            logger.error("get_call failed for %s: %s", call_id, e)
            raise
        self._circuit.record_success()
        return details

    async def lookup_caller_phone(self, call_id: str) -> str | None:
        """Caller's phone number for a live call, or None when the call has none (web calls)."""
        details = await self.get_call(call_id)
        phone = details.get("from_number") if isinstance(details, dict) else None
        if phone:
            logger.info("Call details retrieved for %s, caller: %s", call_id, phone)
        else:
            logger.warning("Call details for %s have no from_number", call_id)
        return phone or None

    async def create_phone_call(self, to_number: str) -> dict:
        payload = {"from_number": self.from_number, "to_number": to_number}
        if self.agent_id:
            payload["override_agent_id"] = self.agent_id
        resp = await self._client.post("/v2/create-phone-call", json=payload)
        resp.raise_for_status()
        call = resp.json()
        logger.info("Outbound call to %s created: %s", to_number, call.get("call_id"))
        return call

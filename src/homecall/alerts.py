import asyncio
import httpx
import logging
from datetime import datetime, timezone

from homecall.transfer_signal import TransferKind, TransferSignal

logger = logging.getLogger(__name__)


def build_emergency_alert(
    *,
    call_id: str,
    phone: str | None,
    signal: TransferSignal,
) -> dict:
    """Payload for the emergency-team alert sent when a transfer fires."""
    is_urgent = signal.kind == TransferKind.URGENT_MAINTENANCE
    return {
        "call_id": call_id,
        "phone_number": phone or "unknown",
        "reason": signal.display_reason,
        "transfer_number": signal.destination,
        "is_urgent_maintenance": is_urgent,
        "alert_type": "urgent_maintenance" if is_urgent else "life_threatening",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class AlertClient:
    """HTTP client for emergency alerts and end-of-call summaries.

    Uses separate URLs per alert type and retries once after a short backoff.
    Never raises: a failed alert is logged and reported in the returned dict,
    it must not affect the call.
    """

    def __init__(
        self,
        *,
        emergency_url: str,
        summary_url: str,
        webhook_secret: str,
        timeout: float = 15.0,
        retry_delay: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.emergency_url = emergency_url
        self.summary_url = summary_url
        self.secret = webhook_secret
        self.timeout = timeout
        self.retry_delay = retry_delay
        self._client = client

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["X-Webhook-Secret"] = self.secret
        return headers

    async def _post(self, url: str, payload: dict) -> dict:
        if self._client is not None:
            resp = await self._client.post(url, json=payload, headers=self._headers())
            resp.raise_for_status()
            return resp.json() if resp.content else {"success": True}
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(url, json=payload, headers=self._headers())
            resp.raise_for_status()
            return resp.json() if resp.content else {"success": True}

    async def _post_with_retry(self, url: str, payload: dict, label: str) -> dict:
        """POST with one retry after ``retry_delay`` seconds on failure."""
        if not url:
            logger.warning("%s skipped: no URL configured", label)
            return {"success": False, "error": "not configured"}
        for attempt in range(2):
            try:
                return await self._post(url, payload)
            except Exception as e:
                if attempt == 0:
                    logger.warning("%s failed (attempt 1), retrying in %.0fs: %s", label, self.retry_delay, e)
                    await asyncio.sleep(self.retry_delay)
                else:
                    logger.error("%s failed after retry: %s", label, e)
                    return {"success": False, "error": str(e)}
        return {"success": False, "error": "unreachable"}

    @property
    def summary_configured(self) -> bool:
        return bool(self.summary_url)

    async def send_emergency_alert(self, payload: dict) -> dict:
        """Notify the emergency team that a call is being transferred."""
        return await self._post_with_retry(self.emergency_url, payload, "Emergency alert")

    async def send_call_summary(self, payload: dict) -> dict:
        """Send the end-of-call summary."""
        return await self._post_with_retry(self.summary_url, payload, "Call summary")

import httpx
import logging
from dataclasses import dataclass

from homecall.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

TRANSCRIPT_COLUMNS = 'id,name,"phoneNumber",transcript,created_at,upload_id'
FRAME_COLUMNS = "id,frame_storage_url,frame_timestamp,transcript_id,created_at"


@dataclass
class PriorContext:
    transcript_id: int
    transcript: str
    name: str = ""
    created_at: str = ""

    @classmethod
    def from_row(cls, row: dict) -> "PriorContext":
        return cls(
            transcript_id=row["id"],
            transcript=row.get("transcript") or "",
            name=row.get("name") or "",
            created_at=row.get("created_at") or "",
        )


class ContextStore:
    """Reads what a caller uploaded before the call (video transcripts and frames).

    Backed by Supabase's REST API.  Every method logs and returns an empty
    result on failure so a database outage degrades the call to receptionist
    mode instead of breaking it.
    """

    def __init__(
        self,
        supabase_url: str,
        api_key: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = supabase_url.rstrip("/")
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="Supabase",
        )
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/rest/v1",
                headers={
                    "apikey": api_key,
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def _select(self, table: str, params: dict) -> list[dict] | None:
        if not self._circuit.should_try():
            logger.warning("Supabase circuit breaker open, skipping %s lookup", table)
            return None
        try:
            resp = await self._client.get(f"/{table}", params=params)
            resp.raise_for_status()
            rows = resp.json()
        except Exception as e:
            self._circuit.record_failure()
            logger.error("Supabase %s query failed: %s", table, e)
            return None
        self._circuit.record_success()
        return rows if isinstance(rows, list) else []

    async def get_transcripts_by_latest_upload(self, phone: str) -> list[PriorContext]:
        """Transcripts from the caller's most recent upload, oldest first.

        One upload can carry several videos; rows from the same upload share
        an ``upload_id``.  Rows without one are treated as single-video uploads.
        """
        latest = await self._select("transcript", {
            "select": TRANSCRIPT_COLUMNS,
            "phoneNumber": f"eq.{phone}",
            "order": "created_at.desc",
            "limit": "1",
        })
        if not latest:
            logger.info("No prior uploads for %s", phone)
            return []

        upload_id = latest[0].get("upload_id")
        if upload_id is None:
            rows = latest
        else:
            rows = await self._select("transcript", {
                "select": TRANSCRIPT_COLUMNS,
                "upload_id": f"eq.{upload_id}",
                "order": "created_at.asc",
            }) or latest

        records = [PriorContext.from_row(row) for row in rows if row.get("transcript")]
        logger.info("Found %d transcript(s) from latest upload for %s", len(records), phone)
        return records

    async def fetch_frames(self, transcript_id, timestamps: list | None = None) -> list[dict]:
        params = {
            "select": FRAME_COLUMNS,
            "transcript_id": f"eq.{transcript_id}",
            "order": "frame_timestamp.asc",
        }
        if timestamps:
            params["frame_timestamp"] = "in.(" + ",".join(str(t) for t in timestamps) + ")"
        rows = await self._select("frame", params)
        return rows or []

    async def get_available_frame_timestamps(self, transcript_id) -> list:
        rows = await self._select("frame", {
            "select": "frame_timestamp",
            "transcript_id": f"eq.{transcript_id}",
            "order": "frame_timestamp.asc",
        })
        return [row["frame_timestamp"] for row in rows or [] if "frame_timestamp" in row]

    async def has_visual_evidence(self, transcript_id) -> bool:
        rows = await self._select("frame", {
            "select": "id",
            "transcript_id": f"eq.{transcript_id}",
            "limit": "1",
        })
        return bool(rows)

    async def save_call_history(self, record: dict) -> bool:
        try:
            resp = await self._client.post(
                "/call_history",
                json=record,
                headers={"Prefer": "return=minimal"},
            )
            resp.raise_for_status()
            return True
        except Exception as e:
            logger.error("save_call_history failed for %s: %s", record.get("call_id"), e)
            return False

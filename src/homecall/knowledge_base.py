import httpx
import logging

logger = logging.getLogger(__name__)

NO_RESULTS_TEXT = (
    "No relevant information found in the knowledge base for this query. "
    "You may need to provide guidance based on general best practices."
)
UNAVAILABLE_TEXT = (
    "Unable to access the knowledge base at the moment. "
    "Please provide guidance based on general best practices."
)


def format_results(matches: list[dict]) -> str:
    """Render Pinecone matches as plain text the agent can quote from."""
    if not matches:
        return NO_RESULTS_TEXT
    lines = [f"Found {len(matches)} relevant section(s) in the documentation:", ""]
    for i, match in enumerate(matches, start=1):
        score = match.get("score")
        score_str = f"{score:.3f}" if isinstance(score, (int, float)) else "N/A"
        metadata = match.get("metadata") or {}
        source = metadata.get("fileName") or "Unknown"
        lines.append(f"Result {i} (Relevance: {score_str}, Source: {source}):")
        lines.append(metadata.get("text", ""))
        lines.append("")
    return "\n".join(lines)


class KnowledgeBase:
    """Semantic search over the home-maintenance documentation index.

    The query is embedded with OpenAI and matched against a Pinecone index.
    Document ingestion happens elsewhere; this is the read path used by the
    ``search_knowledge_base`` tool during calls.
    """

    def __init__(
        self,
        *,
        openai_api_key: str,
        pinecone_api_key: str,
        pinecone_index_host: str,
        embedding_model: str = "text-embedding-3-small",
        openai_base_url: str = "https://api.openai.com/v1",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.openai_api_key = openai_api_key
        self.pinecone_api_key = pinecone_api_key
        host = pinecone_index_host.rstrip("/")
        if host and not host.startswith("http"):
            host = f"https://{host}"
        self.index_url = host
        self.embedding_model = embedding_model
        self.openai_base_url = openai_base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def configured(self) -> bool:
        return bool(self.pinecone_api_key and self.index_url)

    async def close(self):
        await self._client.aclose()

    async def embed(self, text: str) -> list[float]:
        resp = await self._client.post(
            f"{self.openai_base_url}/embeddings",
            headers={"Authorization": f"Bearer {self.openai_api_key}"},
            json={"model": self.embedding_model, "input": text},
        )
        resp.raise_for_status()
        return resp.json()["data"][0]["embedding"]

    async def search(self, query: str, top_k: int = 3) -> list[dict]:
        vector = await self.embed(query)
        resp = await self._client.post(
            f"{self.index_url}/query",
            headers={"Api-Key": self.pinecone_api_key},
            json={"vector": vector, "topK": top_k, "includeMetadata": True},
        )
        resp.raise_for_status()
        return resp.json().get("matches", [])

    async def search_text(self, query: str, top_k: int = 3) -> str:
        """Search and format for the agent; never raises."""
        if not self.configured:
            logger.warning("Knowledge base not configured, skipping search")
            return UNAVAILABLE_TEXT
        try:
            matches = await self.search(query, top_k=top_k)
        except Exception as e:
            logger.error("Knowledge base search failed: %s", e)
            return UNAVAILABLE_TEXT
        logger.info("Knowledge base search %r returned %d match(es)", query, len(matches))
        return format_results(matches)

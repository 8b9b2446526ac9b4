import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from .providers import EMBEDDING_CATALOG, EmbeddingProviderId, OPENROUTER_APP_TITLE, OPENROUTER_DEFAULT_REFERRER
from .settings import EmbeddingSettings, VectorStoreSettings, clamp_top_k
from .streaming import CancellationToken, RequestAborted

logger = logging.getLogger(__name__)

PAYLOAD_TEXT_KEYS = ("text", "content", "chunk", "document", "body", "summary")


class RetrievalError(RuntimeError):
    pass


@dataclass(frozen=True)
class RetrievalMatch:
    text: str
    score: float
    metadata: Optional[Dict[str, Any]] = None


class QdrantRetriever:
    def __init__(self, timeout_seconds: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def fetch_matches(
        self,
        query: str,
        settings: VectorStoreSettings,
        token: Optional[CancellationToken] = None,
    ) -> List[RetrievalMatch]:
        if not settings.enabled or not query.strip():
            return []

        token = token or CancellationToken()
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                vector = await self._request_embedding(client, query.strip(), settings.embedding, token)
                return await self._search(client, settings, vector, token)
        except RequestAborted:
            raise
        except (RetrievalError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Vector store lookup failed: %s", exc)
            return []

    async def _request_embedding(
        self, client: httpx.AsyncClient, text: str, embedding: EmbeddingSettings, token: CancellationToken
    ) -> List[float]:
        endpoint = embedding.base_url.strip() or EMBEDDING_CATALOG[embedding.provider].default_endpoint
        if not endpoint:
            raise RetrievalError("No embedding endpoint configured for the selected provider.")
        model = embedding.model.strip()
        if not model:
            raise RetrievalError("An embedding model is required to query the vector store.")

        is_ollama = embedding.provider == EmbeddingProviderId.OLLAMA
        body: Dict[str, Any] = {"model": model, ("prompt" if is_ollama else "input"): text}
        response = await token.race(client.post(endpoint, json=body, headers=_embedding_headers(embedding)))
        if response.status_code >= 400:
            raise RetrievalError(f"Embedding request failed ({response.status_code}): {response.text}")

        data = response.json()
        if is_ollama:
            vector = data.get("embedding") if isinstance(data, dict) else None
        else:
            items = data.get("data") if isinstance(data, dict) else None
            vector = items[0].get("embedding") if isinstance(items, list) and items else None
        if not isinstance(vector, list):
            raise RetrievalError("Embedding provider did not return a valid vector.")
        return [float(value) for value in vector]

    async def _search(
        self,
        client: httpx.AsyncClient,
        settings: VectorStoreSettings,
        vector: List[float],
        token: CancellationToken,
    ) -> List[RetrievalMatch]:
        base_url = settings.url.strip().rstrip("/")
        collection = settings.collection.strip()
        if not base_url or not collection:
            raise RetrievalError("Qdrant URL and collection are required to fetch context.")

        headers = {"Content-Type": "application/json"}
        if settings.api_key.strip():
            headers["api-key"] = settings.api_key.strip()

        response = await token.race(
            client.post(
                f"{base_url}/collections/{quote(collection, safe='')}/points/search",
                json={"vector": vector, "limit": clamp_top_k(settings.top_k), "with_payload": True, "with_vectors": False},
                headers=headers,
            )
        )
        if response.status_code >= 400:
            raise RetrievalError(f"Qdrant search failed ({response.status_code}): {response.text}")

        data = response.json()
        results = data.get("result") if isinstance(data, dict) else None
        matches: List[RetrievalMatch] = []
        for item in results if isinstance(results, list) else []:
            if not isinstance(item, dict):
                continue
            text, metadata = extract_payload_text(item.get("payload"))
            if not text:
                continue
            score = item.get("score")
            matches.append(
                RetrievalMatch(text=text, score=float(score) if isinstance(score, (int, float)) else 0.0, metadata=metadata)
            )
        return matches


def extract_payload_text(payload: Any):
    if isinstance(payload, str):
        return payload, None
    if not isinstance(payload, dict):
        return None, None

    for key in PAYLOAD_TEXT_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            text = value
        elif isinstance(value, list) and value and all(isinstance(item, str) for item in value):
            text = "\n".join(value)
        else:
            continue
        metadata = {k: v for k, v in payload.items() if k != key}
        return text, metadata or None

    return json.dumps(payload, ensure_ascii=False), None


def format_context_sections(matches: Sequence[RetrievalMatch]) -> List[str]:
    sections: List[str] = []
    for index, match in enumerate(matches, start=1):
        header = f"#{index}"
        if math.isfinite(match.score):
            header += f" score={match.score:.3f}"
        section = f"{header}\n{match.text}"
        if match.metadata:
            section += f"\n\nMetadata: {json.dumps(match.metadata, ensure_ascii=False)}"
        sections.append(section)
    return sections


def _embedding_headers(embedding: EmbeddingSettings) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    api_key = embedding.api_key.strip()
    if embedding.provider != EmbeddingProviderId.OLLAMA and api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    if embedding.provider == EmbeddingProviderId.OPENROUTER:
        headers["HTTP-Referer"] = OPENROUTER_DEFAULT_REFERRER
        headers["X-Title"] = OPENROUTER_APP_TITLE
    return headers

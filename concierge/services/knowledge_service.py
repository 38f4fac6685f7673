from typing import List

import httpx

from concierge.config import settings
from concierge.logging_config import get_logger

logger = get_logger("knowledge_service")


async def get_embedding(text: str) -> List[float]:
    """Get embedding from the BGE-M3 service."""
    async with httpx.AsyncClient(timeout=15.0) as client:
        response = await client.post(settings.embedding_url, json={"inputs": text})
        if response.status_code != 200:
            raise RuntimeError(f"Embedding error: {response.status_code} - {response.text[:200]}")

        data = response.json()
        # TEI returns [[...]], older deployments return {"embedding": [...]}
        if isinstance(data, list) and len(data) > 0:
            return data[0] if isinstance(data[0], list) else data
        return data.get("embedding") or data.get("embeddings") or data


async def search_knowledge(
    query: str,
    salon_id,
    limit: int | None = None,
    score_threshold: float | None = None,
) -> List[dict]:
    """Search the salon's knowledge corpus. Only hits above the threshold are returned."""
    limit = limit or settings.knowledge_limit
    score_threshold = settings.knowledge_score_threshold if score_threshold is None else score_threshold

    if not query or not query.strip():
        return []

    embedding = await get_embedding(query)

    async with httpx.AsyncClient(timeout=15.0) as client:
        response = await client.post(
            f"{settings.qdrant_host}/collections/{settings.qdrant_collection}/points/search",
            headers={"api-key": settings.qdrant_api_key} if settings.qdrant_api_key else {},
            json={
                "vector": embedding,
                "limit": limit,
                "score_threshold": score_threshold,
                "filter": {"must": [{"key": "salon_id", "match": {"value": str(salon_id)}}]},
                "with_payload": True,
            },
        )

    if response.status_code != 200:
        logger.error(f"Qdrant search error: {response.status_code} - {response.text[:200]}")
        return []

    results = []
    for point in response.json().get("result", []):
        score = point.get("score") or 0.0
        if score < score_threshold:
            continue
        payload = point.get("payload", {})
        results.append(
            {
                "score": score,
                "text": payload.get("content"),
                "source": payload.get("source"),
            }
        )

    logger.info(f"Knowledge search: found {len(results)} results for salon {salon_id}")
    return results


def format_knowledge_context(results: List[dict]) -> str:
    """Format knowledge search results for LLM context."""
    if not results:
        return ""

    context_parts = ["Informações relevantes da base de conhecimento do salão:"]
    for i, r in enumerate(results, 1):
        text = r.get("text", "")
        if text:
            context_parts.append(f"{i}. {text}")

    return "\n".join(context_parts) if len(context_parts) > 1 else ""

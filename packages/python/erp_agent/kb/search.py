"""
Semantic search for files relevant to a prompt.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

import litellm
import stamina

import erp_agent as ea
from .errors import (
    is_permanent_embedding_error,
    is_retryable_embedding_error,
    is_retryable_vector_index_error,
)

logger = logging.getLogger(__name__)

__all__ = ["FileMatch", "SemanticFileSearch", "MongoSemanticFileSearch", "build_file_search_pipeline"]

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
CHUNKS_COLLECTION = "file_chunks"
VECTOR_INDEX = "file_chunk_vector_index"


@dataclass
class FileMatch:
    file_id: str
    score: float
    file_name: Optional[str] = None


class SemanticFileSearch(Protocol):
    async def search(
        self, user_id: str, query: str, threshold: float, max_files: int
    ) -> List[FileMatch]:
        ...


@stamina.retry(on=is_retryable_embedding_error)
async def _generate_query_embedding_with_retry(query: str, embedding_model: str, api_key: Optional[str] = None) -> List[float]:
    params = {"model": embedding_model, "input": [query]}
    if api_key:
        params["api_key"] = api_key
    response = await litellm.aembedding(**params)
    return response.data[0]["embedding"]


@stamina.retry(on=is_retryable_vector_index_error)
async def _execute_vector_search_with_retry(collection, pipeline: list, limit: int) -> List[dict]:
    cursor = collection.aggregate(pipeline)
    return await cursor.to_list(length=limit)


def build_file_search_pipeline(
    user_id: str,
    query_embedding: List[float],
    threshold: float,
    max_files: int,
) -> List[dict]:
    """
    $vectorSearch over the user's chunks, best chunk score per file,
    files at or above threshold, ranked, at most max_files.
    """
    return [
        {
            # $vectorSearch must be the first stage
            "$vectorSearch": {
                "index": VECTOR_INDEX,
                "path": "embedding",
                "queryVector": query_embedding,
                "numCandidates": max(max_files * 20, 100),
                "limit": max_files * 10,
                "filter": {"user_id": user_id},
            }
        },
        {"$addFields": {"score": {"$meta": "vectorSearchScore"}}},
        {"$match": {"score": {"$gte": threshold}}},
        {
            "$group": {
                "_id": "$file_id",
                "score": {"$max": "$score"},
                "file_name": {"$first": "$file_name"},
            }
        },
        {"$sort": {"score": -1}},
        {"$limit": max_files},
    ]


class MongoSemanticFileSearch:
    def __init__(
        self,
        agent_client: Any,
        embedding_model: str = DEFAULT_EMBEDDING_MODEL,
        api_key: Optional[str] = None,
    ):
        self.agent_client = agent_client
        self.embedding_model = embedding_model
        self.api_key = api_key

    async def search(
        self, user_id: str, query: str, threshold: float, max_files: int
    ) -> List[FileMatch]:
        if not query or not query.strip() or max_files <= 0:
            return []
        try:
            query_embedding = await _generate_query_embedding_with_retry(query, self.embedding_model, self.api_key)
        except Exception as e:
            if is_permanent_embedding_error(e):
                logger.error(f"Embedding model {self.embedding_model} rejected the query (check model and API key): {e}")
                raise ValueError(f"Embedding configuration error: {str(e)}")
            logger.error(f"Error generating query embedding: {e}")
            raise ValueError(f"Failed to generate query embedding: {str(e)}")

        db = ea.common.get_async_db(self.agent_client)
        pipeline = build_file_search_pipeline(user_id, query_embedding, threshold, max_files)
        results = await _execute_vector_search_with_retry(db[CHUNKS_COLLECTION], pipeline, max_files)
        matches = [
            FileMatch(file_id=str(r["_id"]), score=float(r.get("score") or 0.0), file_name=r.get("file_name"))
            for r in results
            if r.get("_id") is not None
        ]
        logger.info(f"Semantic search for user {user_id} matched {len(matches)} files")
        return matches

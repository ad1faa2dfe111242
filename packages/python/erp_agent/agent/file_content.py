"""
Content of context files for the prompt, within a token budget.

Files are read in order. The first successful file is always kept; later files
stop being added once the budget would be exceeded. A file whose content cannot
be read is reported as a failure and the others are still used.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Protocol

import tiktoken
from bson import ObjectId

import erp_agent as ea
from erp_agent.kb.search import CHUNKS_COLLECTION

if TYPE_CHECKING:
    from .file_context import FileMetadata

logger = logging.getLogger(__name__)

FILES_COLLECTION = "files"
DEFAULT_MAX_CONTEXT_TOKENS = 100000
DEFAULT_MAX_CHUNKS = 5


@lru_cache(maxsize=1)
def _encoding():
    return tiktoken.get_encoding("cl100k_base")  # Used by OpenAI models


def count_tokens(text: str) -> int:
    if not text:
        return 0
    return len(_encoding().encode(text))


@dataclass
class FileContent:
    file_id: str
    file_name: str
    text: str
    tokens: int


@dataclass
class ContentFailure:
    file_id: str
    file_name: str
    reason: str


@dataclass
class ContentRetrieval:
    contents: list[FileContent] = field(default_factory=list)
    failures: list[ContentFailure] = field(default_factory=list)
    total_tokens: int = 0
    truncated: bool = False

    def content_for(self, file_id: str) -> FileContent | None:
        for content in self.contents:
            if content.file_id == file_id:
                return content
        return None


class ContentRetriever(Protocol):
    async def get_content(self, user_id: str | None, file: FileMetadata, query: str) -> str:
        """Text of the file for the prompt. Raises when the content is unavailable."""
        ...


class MongoContentRetriever:
    """
    Extracted text stored on the file document, or else the file's first indexed chunks.
    """

    def __init__(self, agent_client: Any, max_chunks: int = DEFAULT_MAX_CHUNKS):
        self.agent_client = agent_client
        self.max_chunks = max_chunks

    async def get_content(self, user_id: str | None, file: FileMetadata, query: str) -> str:
        db = ea.common.get_async_db(self.agent_client)
        if ea.common.is_valid_object_id(file.file_id):
            file_query: dict[str, Any] = {"_id": ObjectId(file.file_id)}
            if user_id:
                file_query["user_id"] = user_id
            doc = await db[FILES_COLLECTION].find_one(
                file_query, projection={"extracted_text": 1}
            )
            if doc and doc.get("extracted_text"):
                return doc["extracted_text"]

        chunk_query: dict[str, Any] = {"file_id": file.file_id}
        if user_id:
            chunk_query["user_id"] = user_id
        cursor = db[CHUNKS_COLLECTION].find(
            chunk_query, projection={"text": 1, "chunk_index": 1}
        ).sort("chunk_index", 1).limit(self.max_chunks)
        chunks = await cursor.to_list(length=self.max_chunks)
        text = "\n\n".join(c.get("text") or "" for c in chunks).strip()
        if not text:
            raise ValueError(f"Extracted text not found for file {file.file_id}")
        return text


async def retrieve_contents(
    retriever: ContentRetriever,
    user_id: str | None,
    files: list[FileMetadata],
    query: str,
    max_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS,
) -> ContentRetrieval:
    retrieval = ContentRetrieval()
    for i, file in enumerate(files):
        try:
            text = await retriever.get_content(user_id, file, query)
        except Exception as e:
            logger.error(f"Failed to retrieve content of file {file.file_id}: {e}")
            retrieval.failures.append(ContentFailure(file_id=file.file_id, file_name=file.file_name, reason=str(e)))
            continue

        tokens = count_tokens(text)
        if retrieval.contents and retrieval.total_tokens + tokens > max_tokens:
            logger.warning(
                f"Context token budget {max_tokens} reached at file {file.file_id} "
                f"({retrieval.total_tokens} + {tokens}); leaving out the remaining files"
            )
            retrieval.truncated = True
            break

        retrieval.contents.append(FileContent(file_id=file.file_id, file_name=file.file_name, text=text, tokens=tokens))
        retrieval.total_tokens += tokens
        if retrieval.total_tokens > max_tokens and i < len(files) - 1:
            logger.warning(
                f"Context token budget {max_tokens} exceeded by the first file; "
                f"leaving out {len(files) - i - 1} remaining files"
            )
            retrieval.truncated = True
            break

    logger.info(
        f"Retrieved content of {len(retrieval.contents)}/{len(files)} files "
        f"({retrieval.total_tokens} tokens, truncated={retrieval.truncated})"
    )
    return retrieval

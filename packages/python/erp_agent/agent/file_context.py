"""
Files given to a turn as context, and the cited files reported when it completes.

Manual attachments win: when any are given, semantic search is not consulted and
every attachment must resolve. Otherwise semantic search (if enabled for a known
user) proposes files, and those that do not resolve are skipped. With a content
retriever, the text of the resolved files is read for the prompt within a token budget.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from bson import ObjectId

import erp_agent as ea
from erp_agent.kb.search import SemanticFileSearch

from .errors import AgentValidationError, AttachmentNotFoundError
from .events import CitedFile
from .file_content import (
    DEFAULT_MAX_CONTEXT_TOKENS,
    FILES_COLLECTION,
    ContentRetrieval,
    ContentRetriever,
    retrieve_contents,
)

logger = logging.getLogger(__name__)


@dataclass
class FileMetadata:
    file_id: str
    file_name: str
    mime_type: str | None = None
    size: int | None = None


class FileResolver(Protocol):
    async def get_file(self, user_id: str | None, file_id: str) -> FileMetadata | None:
        ...


class MongoFileResolver:
    def __init__(self, agent_client: Any):
        self.agent_client = agent_client

    async def get_file(self, user_id: str | None, file_id: str) -> FileMetadata | None:
        if not ea.common.is_valid_object_id(file_id):
            return None
        query: dict[str, Any] = {"_id": ObjectId(file_id), "deleted_at": None}
        if user_id:
            query["user_id"] = user_id
        db = ea.common.get_async_db(self.agent_client)
        doc = await db[FILES_COLLECTION].find_one(query)
        if not doc:
            return None
        return FileMetadata(
            file_id=str(doc["_id"]),
            file_name=doc.get("file_name") or doc.get("name") or file_id,
            mime_type=doc.get("mime_type"),
            size=doc.get("size"),
        )


@dataclass
class FileContext:
    files: list[FileMetadata] = field(default_factory=list)
    cited_files: list[CitedFile] = field(default_factory=list)
    source: Literal["attachment", "semantic_search", "none"] = "none"
    # File text for the prompt; None when no content retriever is configured
    content: ContentRetrieval | None = None

    @property
    def file_ids_by_name(self) -> dict[str, str]:
        return {f.file_name: f.file_id for f in self.files}


class FileContextPreparer:
    def __init__(
        self,
        resolver: FileResolver | None = None,
        search: SemanticFileSearch | None = None,
        threshold: float = 0.7,
        max_files: int = 3,
        content_retriever: ContentRetriever | None = None,
        max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS,
    ):
        self.resolver = resolver
        self.search = search
        self.threshold = threshold
        self.max_files = max_files
        self.content_retriever = content_retriever
        self.max_context_tokens = max_context_tokens

    async def _from_attachments(self, user_id: str | None, attachment_ids: list[str]) -> FileContext:
        if self.resolver is None:
            raise AgentValidationError("File attachments are not supported without a file resolver")
        files: list[FileMetadata] = []
        for file_id in attachment_ids:
            meta = await self.resolver.get_file(user_id, file_id)
            if meta is None:
                raise AttachmentNotFoundError(file_id)
            files.append(meta)
        return FileContext(
            files=files,
            cited_files=[CitedFile(file_id=f.file_id, file_name=f.file_name, source="attachment") for f in files],
            source="attachment",
        )

    async def _from_search(self, user_id: str, prompt: str) -> FileContext:
        try:
            matches = await self.search.search(user_id, prompt, self.threshold, self.max_files)
        except Exception as e:
            logger.warning(f"Semantic file search failed for user {user_id}: {e}")
            return FileContext()

        files: list[FileMetadata] = []
        cited: list[CitedFile] = []
        for match in matches:
            try:
                meta = await self.resolver.get_file(user_id, match.file_id)
            except Exception as e:
                logger.warning(f"Could not resolve search result {match.file_id}: {e}")
                continue
            if meta is None:
                logger.debug(f"Skipping unresolvable search result {match.file_id}")
                continue
            files.append(meta)
            cited.append(CitedFile(
                file_id=meta.file_id, file_name=meta.file_name, source="semantic_search", score=match.score
            ))
        return FileContext(files=files, cited_files=cited, source="semantic_search" if files else "none")

    async def prepare(
        self,
        user_id: str | None,
        prompt: str,
        attachment_ids: list[str] | None = None,
        enable_semantic_search: bool = False,
    ) -> FileContext:
        if attachment_ids:
            context = await self._from_attachments(user_id, attachment_ids)
        elif enable_semantic_search and user_id and self.search is not None and self.resolver is not None:
            context = await self._from_search(user_id, prompt)
        else:
            return FileContext()
        if context.files and self.content_retriever is not None:
            context.content = await retrieve_contents(
                self.content_retriever, user_id, context.files, prompt, self.max_context_tokens
            )
        return context

"""
Citation collection and resolution of bracketed file references.

The model cites context files inline as `[report.pdf]`. References are matched
case-sensitively against the names of the files given to the turn; references
without a match are kept with file_id None.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# [name.ext]: no nested brackets or newlines, extension of 1-10 alphanumerics
_FILE_REFERENCE = re.compile(r"\[([^\[\]\n]+?\.[A-Za-z0-9]{1,10})\]")
_NUMERIC = re.compile(r"[\d.]+")

# Keys providers use for the cited document's name in structured citations
_TITLE_KEYS = ("file_name", "document_title", "title")


@dataclass(frozen=True)
class Citation:
    reference: str
    file_id: str | None = None


@dataclass(frozen=True)
class CitationResolution:
    citations: list[Citation]
    # ids of the files actually cited, first occurrence order, no duplicates
    matched_file_ids: list[str]


def extract_file_references(text: str) -> list[str]:
    """Bracketed references that look like file names, first occurrence order, no duplicates."""
    refs: list[str] = []
    seen: set[str] = set()
    for match in _FILE_REFERENCE.finditer(text or ""):
        ref = match.group(1).strip()
        if not ref or _NUMERIC.fullmatch(ref):
            continue
        if ref in seen:
            continue
        seen.add(ref)
        refs.append(ref)
    return refs


class CitationAccumulator:
    """Collects structured citation fragments attached to text blocks during a stream."""

    def __init__(self):
        self._by_block: dict[int, list[dict[str, Any]]] = {}

    def add(self, block_index: int, citation: dict[str, Any]) -> None:
        self._by_block.setdefault(block_index, []).append(citation)

    def for_block(self, block_index: int) -> list[dict[str, Any]]:
        return list(self._by_block.get(block_index, []))

    def all(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for index in sorted(self._by_block):
            out.extend(self._by_block[index])
        return out

    def references(self) -> list[str]:
        refs: list[str] = []
        for citation in self.all():
            for key in _TITLE_KEYS:
                value = citation.get(key)
                if isinstance(value, str) and value.strip():
                    refs.append(value.strip())
                    break
        return refs

    def resolve(self, text: str, file_ids_by_name: dict[str, str]) -> CitationResolution:
        """
        Resolve structured citations and bracketed references in text to file ids.
        Each reference appears once, in first-occurrence order.
        """
        resolved: list[Citation] = []
        matched: list[str] = []
        seen: set[str] = set()
        for ref in self.references() + extract_file_references(text):
            if ref in seen:
                continue
            seen.add(ref)
            file_id = file_ids_by_name.get(ref)
            if file_id is None:
                logger.debug(f"Citation {ref!r} does not match any context file")
            elif file_id not in matched:
                matched.append(file_id)
            resolved.append(Citation(reference=ref, file_id=file_id))
        return CitationResolution(citations=resolved, matched_file_ids=matched)

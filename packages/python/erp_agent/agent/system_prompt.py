"""
Builds the system message for the ERP agent: role, available tools, context files
with their retrieved content, and citation instructions.
"""
from __future__ import annotations

import logging

from .file_context import FileContext
from .tool_registry import ToolCatalog

logger = logging.getLogger(__name__)

BASE_INSTRUCTIONS = (
    "You are an ERP assistant with tools to look up and change business records "
    "(customers, vendors, items, orders, invoices and similar)."
)


def build_system_message(
    catalog: ToolCatalog,
    file_context: FileContext | None = None,
    instructions: str | None = None,
) -> str:
    parts = [
        BASE_INSTRUCTIONS,
        "Use read-only tools freely to answer questions. Tools that create, update or delete "
        "records may require the user's approval; if an action is denied, do not retry it.",
        "",
    ]

    names = catalog.names()
    if names:
        read_only = [n for n in names if catalog.is_read_only_tool(n)]
        mutating = [n for n in names if not catalog.is_read_only_tool(n)]
        parts.append("## Tools")
        if read_only:
            parts.append(f"- Read-only: {', '.join(read_only)}")
        if mutating:
            parts.append(f"- Require approval: {', '.join(mutating)}")
        parts.append("")

    if file_context and file_context.files:
        content = file_context.content
        parts.append("## Context files")
        for f in file_context.files:
            if content is not None and content.content_for(f.file_id) is None:
                parts.append(f"- {f.file_name} (content not available)")
            else:
                parts.append(f"- {f.file_name}")
        parts.append("")
        parts.append(
            "When your answer relies on one of these files, cite it inline by its exact "
            "file name in square brackets, e.g. [" + file_context.files[0].file_name + "]."
        )
        parts.append("")
        if content is not None and content.contents:
            parts.append("## File contents")
            for c in content.contents:
                parts.append(f'<document name="{c.file_name}">')
                parts.append(c.text.strip())
                parts.append("</document>")
            if content.truncated:
                parts.append("Some files were left out to stay within the context size limit.")
            parts.append("")

    if instructions:
        parts.append("## Additional instructions")
        parts.append(instructions.strip())

    return "\n".join(parts).rstrip() + "\n"

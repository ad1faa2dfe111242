"""
Tool catalog for the ERP agent.
definitions() is sent to the LLM; execute() runs the chosen tool with (context, params)
and normalizes whatever the handler does into a ToolOutcome.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable

from bson import ObjectId

logger = logging.getLogger(__name__)

# Handler contract: async (context, params) -> result. Raising means failure.
ToolHandler = Callable[[Any, dict[str, Any]], Awaitable[Any]]

# Name tokens that mark an unlisted tool as mutating
WRITE_VERBS: frozenset[str] = frozenset({"create", "update", "delete", "post", "patch", "put"})

_NAME_TOKENS = re.compile(r"[_\-\s.]+|(?<=[a-z0-9])(?=[A-Z])")


def _json_serial_default(obj: Any) -> Any:
    """Convert non-JSON-serializable values for tool result payloads."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, ObjectId):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__!r} is not JSON serializable")


def looks_mutating(name: str) -> bool:
    tokens = {t.lower() for t in _NAME_TOKENS.split(name or "") if t}
    return bool(tokens & WRITE_VERBS)


@dataclass
class ToolOutcome:
    success: bool
    result: Any = None
    error: str | None = None

    def to_content(self) -> str:
        """JSON string returned to the LLM as the tool message content."""
        if not self.success:
            return json.dumps({"error": self.error or "Tool failed"})
        try:
            return json.dumps(self.result, default=_json_serial_default)
        except (TypeError, ValueError) as e:
            logger.warning(f"Tool result not JSON serializable ({e}); sending str()")
            return json.dumps(str(self.result))


def normalize_result(result: Any) -> ToolOutcome:
    """
    Map a handler's return value onto ToolOutcome. Handlers may return a ToolOutcome,
    a dict with an explicit "success" flag, a bare {"error": ...} dict, or any value.
    """
    if isinstance(result, ToolOutcome):
        return result
    if isinstance(result, dict):
        if isinstance(result.get("success"), bool):
            error = result.get("error")
            return ToolOutcome(
                success=result["success"],
                result=result.get("result", result) if result["success"] else None,
                error=None if result["success"] else str(error or "Tool reported failure"),
            )
        if set(result) == {"error"}:
            return ToolOutcome(success=False, error=str(result["error"]))
    return ToolOutcome(success=True, result=result)


@dataclass
class _ToolSpec:
    name: str
    handler: ToolHandler
    description: str
    parameters: dict[str, Any]
    read_only: bool


class ToolCatalog:
    def __init__(self):
        self._tools: dict[str, _ToolSpec] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        *,
        description: str = "",
        parameters: dict[str, Any] | None = None,
        read_only: bool | None = None,
    ) -> None:
        """Add a tool. read_only defaults to the write-verb heuristic on the name."""
        if read_only is None:
            read_only = not looks_mutating(name)
        self._tools[name] = _ToolSpec(
            name=name,
            handler=handler,
            description=description,
            parameters=parameters or {"type": "object", "properties": {}},
            read_only=read_only,
        )

    def tool(self, name: str, **kwargs) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of register()."""
        def decorator(handler: ToolHandler) -> ToolHandler:
            self.register(name, handler, **kwargs)
            return handler
        return decorator

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def is_read_only_tool(self, name: str) -> bool:
        spec = self._tools.get(name)
        if spec is not None:
            return spec.read_only
        return not looks_mutating(name)

    def is_mutating(self, name: str) -> bool:
        return not self.is_read_only_tool(name)

    def definitions(self) -> list[dict[str, Any]]:
        # OpenAI function-calling format
        return [
            {
                "type": "function",
                "function": {
                    "name": spec.name,
                    "description": spec.description,
                    "parameters": spec.parameters,
                },
            }
            for spec in self._tools.values()
        ]

    async def execute(self, name: str, context: Any, arguments: str | dict | None) -> ToolOutcome:
        """
        Execute a tool by name. arguments: JSON string (from LLM) or dict.
        Never raises; unknown tools, bad arguments and handler errors become failed outcomes.
        """
        spec = self._tools.get(name)
        if spec is None:
            return ToolOutcome(success=False, error=f"Unknown tool: {name}")
        if isinstance(arguments, str):
            try:
                params = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError as e:
                return ToolOutcome(success=False, error=f"Invalid JSON arguments: {e}")
        else:
            params = arguments or {}
        try:
            result = await spec.handler(context, params)
        except Exception as e:
            logger.exception("Tool %s failed", name)
            return ToolOutcome(success=False, error=str(e) or type(e).__name__)
        return normalize_result(result)

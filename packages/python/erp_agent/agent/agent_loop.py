"""
Core agent loop: stream one LLM turn -> reassemble blocks -> execute tools -> loop.

Each request runs requesting -> accumulating -> (executing_tools) -> deciding, repeated
until a terminal stop reason, a pause, a fatal error, or the turn limit.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from erp_agent.llm.provider import LLMProvider, ProviderRequest
from erp_agent.llm.signals import (
    BlockDelta,
    BlockStart,
    BlockStop,
    DeltaKind,
    StopReason,
    StreamEnd,
    StreamStart,
    TurnDelta,
    Usage,
    parse_stop_reason,
)

from .blocks import (
    ContentBlock,
    ContentBlockAccumulator,
    ReasoningBlock,
    ToolInvocationBlock,
    text_of,
    tool_invocations,
)
from .citations import CitationAccumulator
from .config import AgentSettings
from .context import EventCallback, ExecutionContext
from .errors import (
    AgentError,
    AgentInternalError,
    AgentValidationError,
    ProviderStreamError,
    UnknownStopReasonError,
)
from .events import (
    CitedFile,
    CompleteEvent,
    ContentRefusedEvent,
    ErrorEvent,
    MessageChunkEvent,
    MessageEvent,
    ThinkingChunkEvent,
    TurnPausedEvent,
)
from .file_context import FileContext, FileContextPreparer
from .file_usage import FileUsageRecorder, record_file_usage
from .sequencing import SequencedEventEmitter
from .session import PausedTurnStore
from .system_prompt import build_system_message
from .tool_executor import ToolExecutionCoordinator

logger = logging.getLogger(__name__)

MAX_TOKENS_NOTICE = "[Response truncated - reached max tokens]"
MAX_TURNS_NOTICE = "[Execution stopped - reached maximum turns]"
STOP_SEQUENCE_NOTICE = "[Stopped at custom sequence]"
PAUSE_NOTICE = "[Turn paused]"
REFUSAL_NOTICE = "[Content refused due to policy]"
REFUSAL_REASON = "The model declined to generate this content due to a usage policy violation."
PAUSE_REASON = "Long-running turn was paused by the model provider. The conversation can be continued."


class TurnState(str, Enum):
    REQUESTING = "requesting"
    ACCUMULATING = "accumulating"
    EXECUTING_TOOLS = "executing_tools"
    DECIDING = "deciding"
    DONE = "done"
    PAUSED = "paused"
    FAILED = "failed"


@dataclass
class AgentOptions:
    model: str | None = None
    enable_thinking: bool = False
    thinking_budget: int | None = None
    max_tokens: int | None = None
    attachments: list[str] | None = None
    enable_semantic_search: bool = False
    auto_approve: bool = False
    auto_approved_tools: set[str] | None = None
    instructions: str | None = None
    # Prior conversation in LLM message format (user/assistant/tool), oldest first
    history: list[dict[str, Any]] | None = None


@dataclass
class AgentResult:
    success: bool
    state: TurnState
    response: str = ""
    message_id: str | None = None
    stop_reason: str | None = None
    tools_used: list[str] = field(default_factory=list)
    token_usage: dict[str, int] = field(default_factory=dict)
    cited_files: list[CitedFile] = field(default_factory=list)
    turns: int = 0
    duration_ms: int = 0
    error: str | None = None
    error_code: str | None = None


@dataclass
class _Turn:
    message_id: str
    blocks: list[ContentBlock]
    stop_reason: StopReason | str | None
    citations: CitationAccumulator


def _assistant_message(blocks: list[ContentBlock]) -> dict[str, Any]:
    """Assistant message in LLM format for the next request, including thinking and tool calls."""
    text = text_of(blocks)
    msg: dict[str, Any] = {"role": "assistant", "content": text or None}
    thinking = [
        {"type": "thinking", "thinking": b.text, "signature": b.signature or ""}
        for b in blocks
        if isinstance(b, ReasoningBlock) and b.text
    ]
    if thinking:
        msg["thinking_blocks"] = thinking
    tool_calls = []
    seen: set[str] = set()
    for b in tool_invocations(blocks):
        if b.tool_use_id in seen:
            continue
        seen.add(b.tool_use_id)
        tool_calls.append({
            "id": b.tool_use_id,
            "type": "function",
            "function": {"name": b.name, "arguments": json.dumps(b.input)},
        })
    if tool_calls:
        msg["tool_calls"] = tool_calls
    return msg


def _tool_messages(invocations: list[ToolInvocationBlock], ctx: ExecutionContext) -> list[dict[str, Any]]:
    out = []
    seen: set[str] = set()
    for b in invocations:
        if b.tool_use_id in seen:
            continue
        seen.add(b.tool_use_id)
        outcome = ctx.tool_results.get(b.tool_use_id)
        content = outcome.to_content() if outcome is not None else json.dumps({"error": "Tool result unavailable"})
        out.append({"role": "tool", "tool_call_id": b.tool_use_id, "content": content})
    return out


class TurnLoopController:
    def __init__(
        self,
        provider: LLMProvider,
        coordinator: ToolExecutionCoordinator,
        emitter: SequencedEventEmitter | None = None,
        file_context: FileContextPreparer | None = None,
        paused_turns: PausedTurnStore | None = None,
        settings: AgentSettings | None = None,
        usage_recorder: FileUsageRecorder | None = None,
    ):
        self.provider = provider
        self.coordinator = coordinator
        self.catalog = coordinator.catalog
        self.emitter = emitter if emitter is not None else coordinator.emitter
        self.settings = settings if settings is not None else AgentSettings()
        self.file_context = file_context if file_context is not None else FileContextPreparer(
            threshold=self.settings.semantic_search_threshold,
            max_files=self.settings.semantic_search_max_files,
        )
        self.paused_turns = paused_turns if paused_turns is not None else PausedTurnStore(
            ttl_sec=self.settings.paused_turn_ttl_secs
        )
        self.usage_recorder = usage_recorder

    def _new_context(
        self,
        session_id: str,
        user_id: str | None,
        on_event: EventCallback | None,
        options: AgentOptions,
    ) -> ExecutionContext:
        return ExecutionContext(
            session_id=session_id,
            user_id=user_id,
            callback=on_event,
            enable_thinking=options.enable_thinking,
            thinking_budget=options.thinking_budget or self.settings.thinking_budget,
            auto_approve=options.auto_approve,
            auto_approved_tools=options.auto_approved_tools,
        )

    async def run(
        self,
        prompt: str,
        session_id: str,
        user_id: str | None = None,
        on_event: EventCallback | None = None,
        options: AgentOptions | None = None,
    ) -> AgentResult:
        """
        Run one user request to completion. Never raises for request-level failures;
        they come back as AgentResult(success=False) after an error event.
        """
        options = options or AgentOptions()
        if not session_id:
            logger.error("Agent request rejected: session_id is required")
            return AgentResult(
                success=False,
                state=TurnState.FAILED,
                error="session_id is required",
                error_code=AgentValidationError.code,
            )
        ctx = self._new_context(session_id, user_id, on_event, options)
        logger.info(f"Agent request {ctx.execution_id} for session {session_id} (user {user_id})")
        try:
            return await self._run(ctx, prompt, options)
        except AgentError as e:
            return await self._fail(ctx, e)
        except Exception as e:
            logger.exception(f"Agent request {ctx.execution_id} aborted by an unexpected error")
            return await self._fail(ctx, AgentInternalError(f"Agent request failed: {e}"))

    async def _run(self, ctx: ExecutionContext, prompt: str, options: AgentOptions) -> AgentResult:
        if not prompt or not prompt.strip():
            raise AgentValidationError("prompt is required")
        file_context = await self.file_context.prepare(
            ctx.user_id,
            prompt,
            attachment_ids=options.attachments,
            enable_semantic_search=options.enable_semantic_search,
        )
        system_content = build_system_message(self.catalog, file_context, options.instructions)
        messages: list[dict[str, Any]] = [{"role": "system", "content": system_content}]
        messages.extend(options.history or [])
        messages.append({"role": "user", "content": prompt})
        return await self._loop(ctx, messages, file_context, options)

    async def resume(
        self,
        session_id: str,
        user_id: str | None = None,
        on_event: EventCallback | None = None,
        options: AgentOptions | None = None,
    ) -> AgentResult:
        """Continue a turn the provider paused, in a fresh execution context."""
        if not session_id:
            return AgentResult(
                success=False,
                state=TurnState.FAILED,
                error="session_id is required",
                error_code=AgentValidationError.code,
            )
        state = self.paused_turns.get(session_id)
        if options is None:
            options = state["options"] if state else AgentOptions()
        ctx = self._new_context(session_id, user_id, on_event, options)
        if state is None:
            return await self._fail(ctx, AgentValidationError(f"No paused turn for session {session_id}"))
        if state.get("user_id") and state["user_id"] != user_id:
            logger.warning(f"User {user_id} tried to resume a paused turn of session {session_id} they do not own")
            return await self._fail(ctx, AgentValidationError("Paused turn belongs to another user"))
        self.paused_turns.pop(session_id)
        logger.info(f"Resuming paused turn for session {session_id}")
        try:
            return await self._loop(ctx, list(state["messages"]), state["file_context"], options)
        except AgentError as e:
            return await self._fail(ctx, e)
        except Exception as e:
            logger.exception(f"Resumed request {ctx.execution_id} aborted by an unexpected error")
            return await self._fail(ctx, AgentInternalError(f"Agent request failed: {e}"))

    async def _loop(
        self,
        ctx: ExecutionContext,
        messages: list[dict[str, Any]],
        file_context: FileContext,
        options: AgentOptions,
    ) -> AgentResult:
        model = options.model or self.settings.model
        tools = self.catalog.definitions()
        last_message_id: str | None = None

        while ctx.turn_count < self.settings.max_turns:
            ctx.turn_count += 1
            try:
                turn = await self._stream_turn(ctx, model, messages, tools, options)
            except AgentError as e:
                return await self._fail(ctx, e)
            last_message_id = turn.message_id

            # Deciding
            text = text_of(turn.blocks)
            invocations = tool_invocations(turn.blocks)
            stop = parse_stop_reason(turn.stop_reason) if isinstance(turn.stop_reason, str) else turn.stop_reason
            if not isinstance(stop, StopReason):
                if self.settings.unknown_stop_reason == "fail":
                    return await self._fail(ctx, UnknownStopReasonError(f"Unknown stop reason: {stop!r}"))
                logger.warning(f"Unknown stop reason {stop!r} in session {ctx.session_id}; treating as end_turn")
                stop = StopReason.END_TURN
            if stop == StopReason.TOOL_USE and not invocations:
                logger.warning(f"tool_use stop without tool invocations in session {ctx.session_id}; ending")
                stop = StopReason.END_TURN

            if stop == StopReason.TOOL_USE:
                if text.strip():
                    await self.emitter.publish(ctx, MessageEvent(
                        session_id=ctx.session_id,
                        message_id=turn.message_id,
                        content=text,
                        stop_reason=StopReason.TOOL_USE.value,
                    ))
                logger.debug(f"Turn {ctx.turn_count}: executing {len(invocations)} tool invocations")
                await self.coordinator.process_executions(invocations, ctx)
                messages.append(_assistant_message(turn.blocks))
                messages.extend(_tool_messages(invocations, ctx))
                continue

            if stop == StopReason.PAUSE_TURN:
                return await self._pause(ctx, messages, turn, text, file_context, options)

            return await self._finish(ctx, turn, stop, text, file_context)

        logger.warning(f"Session {ctx.session_id} reached the limit of {self.settings.max_turns} turns")
        await self.emitter.publish(ctx, MessageEvent(
            session_id=ctx.session_id,
            message_id=last_message_id or f"system_max_turns_{ctx.execution_id}",
            content=MAX_TURNS_NOTICE,
            stop_reason="max_turns",
        ))
        return await self._complete(
            ctx,
            state=TurnState.DONE,
            reason="max_turns",
            message_id=last_message_id,
            stop_reason=StopReason.TOOL_USE.value,
            response=MAX_TURNS_NOTICE,
            file_context=file_context,
        )

    async def _stream_turn(
        self,
        ctx: ExecutionContext,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        options: AgentOptions,
    ) -> _Turn:
        request = ProviderRequest(
            model=model,
            messages=messages,
            tools=tools,
            max_tokens=options.max_tokens or self.settings.max_tokens,
            enable_thinking=ctx.enable_thinking,
            thinking_budget=ctx.thinking_budget,
        )
        try:
            stream = await self.provider.open_stream(request)
        except Exception as e:
            logger.error(f"Failed to open model stream for session {ctx.session_id}: {e}")
            raise ProviderStreamError(f"Failed to start model stream: {e}") from e

        citations = CitationAccumulator()
        accumulator = ContentBlockAccumulator(citations)
        message_id: str | None = None
        stop_reason: StopReason | str | None = None
        final_usage: Usage | None = None
        signals = aiter(stream)
        while True:
            # Only failures of the stream itself are provider errors; emit failures propagate as-is
            try:
                signal = await anext(signals)
            except StopAsyncIteration:
                break
            except Exception as e:
                logger.error(f"Model stream failed for session {ctx.session_id}: {e}")
                raise ProviderStreamError(f"Model stream failed: {e}") from e

            if isinstance(signal, StreamStart):
                if not signal.message_id:
                    raise ProviderStreamError("Model stream did not provide a message id")
                message_id = signal.message_id
                ctx.add_usage(signal.usage)
            elif isinstance(signal, (BlockStart, BlockDelta, BlockStop)):
                if message_id is None:
                    raise ProviderStreamError("Model stream sent content before a message id")
                applied = accumulator.apply(signal)
                if applied is not None and isinstance(signal, BlockDelta):
                    await self._emit_chunk(ctx, signal)
            elif isinstance(signal, TurnDelta):
                stop_reason = signal.stop_reason
                final_usage = signal.usage
            elif isinstance(signal, StreamEnd):
                break

        if message_id is None:
            raise ProviderStreamError("Model stream did not provide a message id")
        ctx.add_usage(final_usage)
        return _Turn(
            message_id=message_id,
            blocks=accumulator.finalize(),
            stop_reason=stop_reason,
            citations=citations,
        )

    async def _emit_chunk(self, ctx: ExecutionContext, delta: BlockDelta) -> None:
        if not delta.text:
            return
        if delta.kind == DeltaKind.TEXT:
            await self.emitter.publish(ctx, MessageChunkEvent(
                session_id=ctx.session_id, content=delta.text, block_index=delta.index
            ))
        elif delta.kind == DeltaKind.REASONING and ctx.enable_thinking:
            await self.emitter.publish(ctx, ThinkingChunkEvent(
                session_id=ctx.session_id, content=delta.text, block_index=delta.index
            ))

    async def _finish(
        self,
        ctx: ExecutionContext,
        turn: _Turn,
        stop: StopReason,
        text: str,
        file_context: FileContext,
    ) -> AgentResult:
        if stop == StopReason.MAX_TOKENS:
            content = MAX_TOKENS_NOTICE
        elif stop == StopReason.STOP_SEQUENCE:
            content = text or STOP_SEQUENCE_NOTICE
        elif stop == StopReason.REFUSAL:
            content = text or REFUSAL_NOTICE
        else:
            content = text

        resolution = turn.citations.resolve(text, file_context.file_ids_by_name)
        await self.emitter.publish(ctx, MessageEvent(
            session_id=ctx.session_id,
            message_id=turn.message_id,
            content=content,
            stop_reason=stop.value,
            citations=[{"reference": c.reference, "file_id": c.file_id} for c in resolution.citations] or None,
        ))
        if self.usage_recorder is not None and file_context.files:
            self.emitter.background.spawn(
                record_file_usage(
                    self.usage_recorder, ctx.session_id, turn.message_id, file_context, resolution.matched_file_ids
                ),
                f"file usage for message {turn.message_id}",
            )
        if stop == StopReason.REFUSAL:
            logger.warning(f"Content refused in session {ctx.session_id}")
            await self.emitter.publish(ctx, ContentRefusedEvent(
                session_id=ctx.session_id,
                message_id=turn.message_id,
                content=text,
                reason=REFUSAL_REASON,
            ))
        return await self._complete(
            ctx,
            state=TurnState.DONE,
            reason="success",
            message_id=turn.message_id,
            stop_reason=stop.value,
            response=content,
            file_context=file_context,
        )

    async def _pause(
        self,
        ctx: ExecutionContext,
        messages: list[dict[str, Any]],
        turn: _Turn,
        text: str,
        file_context: FileContext,
        options: AgentOptions,
    ) -> AgentResult:
        logger.warning(f"Turn paused by provider in session {ctx.session_id} after {ctx.turn_count} turns")
        self.paused_turns.set(ctx.session_id, {
            "messages": messages + [_assistant_message(turn.blocks)],
            "file_context": file_context,
            "options": options,
            "user_id": ctx.user_id,
        })
        await self.emitter.publish(ctx, TurnPausedEvent(
            session_id=ctx.session_id,
            message_id=turn.message_id,
            content=text or PAUSE_NOTICE,
            reason=PAUSE_REASON,
        ))
        return await self._complete(
            ctx,
            state=TurnState.PAUSED,
            reason="paused",
            message_id=turn.message_id,
            stop_reason=StopReason.PAUSE_TURN.value,
            response=text,
            file_context=file_context,
        )

    async def _complete(
        self,
        ctx: ExecutionContext,
        *,
        state: TurnState,
        reason: str,
        message_id: str | None,
        stop_reason: str | None,
        response: str,
        file_context: FileContext,
    ) -> AgentResult:
        cited_files = list(file_context.cited_files)
        await self.emitter.publish(ctx, CompleteEvent(
            session_id=ctx.session_id,
            reason=reason,
            message_id=message_id,
            stop_reason=stop_reason,
            token_usage=ctx.token_usage(),
            tools_used=list(ctx.tools_used),
            cited_files=cited_files or None,
        ))
        logger.info(
            f"Agent request {ctx.execution_id} finished ({reason}) after {ctx.turn_count} turns, "
            f"tools={len(ctx.tools_used)} usage={ctx.token_usage()}"
        )
        return AgentResult(
            success=True,
            state=state,
            response=response,
            message_id=message_id,
            stop_reason=stop_reason,
            tools_used=list(ctx.tools_used),
            token_usage=ctx.token_usage(),
            cited_files=cited_files,
            turns=ctx.turn_count,
            duration_ms=ctx.elapsed_ms(),
        )

    async def _fail(self, ctx: ExecutionContext, error: AgentError) -> AgentResult:
        logger.error(f"Agent request {ctx.execution_id} failed ({error.code}): {error}")
        try:
            await self.emitter.publish(ctx, ErrorEvent(
                session_id=ctx.session_id, error=str(error), code=error.code
            ))
        except Exception as e:
            logger.error(f"Could not emit error event for session {ctx.session_id}: {e}")
        return AgentResult(
            success=False,
            state=TurnState.FAILED,
            stop_reason=None,
            tools_used=list(ctx.tools_used),
            token_usage=ctx.token_usage(),
            turns=ctx.turn_count,
            duration_ms=ctx.elapsed_ms(),
            error=str(error),
            error_code=error.code,
        )


async def run_agent_turn(
    controller: TurnLoopController,
    prompt: str,
    session_id: str,
    user_id: str | None = None,
    on_event: EventCallback | None = None,
    **options: Any,
) -> AgentResult:
    """Convenience wrapper: keyword options are AgentOptions fields."""
    return await controller.run(prompt, session_id, user_id, on_event, AgentOptions(**options))

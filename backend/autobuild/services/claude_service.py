from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeSDKClient,
    ResultMessage,
    TextBlock,
    ToolUseBlock,
)

from autobuild.services.agent_invoker import (
    AgentInvoker,
    AgentRunResult,
    InputRequest,
    OutputHandler,
    parse_input_marker,
)
from autobuild.services.clarification import (
    CONFIDENCE_THRESHOLD,
    clarification_confidence,
    detects_clarification_request,
    extract_core_question,
    extract_options,
)
from autobuild.services.prompts import AGENT_SYSTEM_PROMPT
from autobuild.tools.builders import build_claude_options

logger = logging.getLogger(__name__)


class ClaudeAgentInvoker(AgentInvoker):
    """Agent backed by the Claude Agent SDK, streaming messages via a callback."""

    def __init__(self, *, max_turns: int | None = None) -> None:
        self._max_turns = max_turns
        self._clients: dict[str, ClaudeSDKClient] = {}
        self._active: set[str] = set()
        self._cancelled: set[str] = set()

    @property
    def is_available(self) -> bool:
        return bool(os.getenv("ANTHROPIC_API_KEY"))

    async def run_agent(
        self,
        workspace_path: Path,
        prompt: str,
        *,
        run_id: str,
        on_output: OutputHandler | None = None,
    ) -> AgentRunResult:
        if not self.is_available:
            return AgentRunResult(success=False, error="Claude API key is not configured")

        texts: list[str] = []
        input_request: InputRequest | None = None
        result: Any = None

        options = build_claude_options(
            workspace_path,
            system_prompt=AGENT_SYSTEM_PROMPT,
            max_turns=self._max_turns,
        )
        self._active.add(run_id)
        try:
            async with ClaudeSDKClient(options=options) as client:
                self._clients[run_id] = client
                if run_id in self._cancelled:
                    logger.info("Agent run %s was cancelled while connecting", run_id)
                else:
                    await client.query(prompt=prompt)
                    async for message in client.receive_messages():
                        if isinstance(message, AssistantMessage):
                            text = await self._forward_assistant_message(message, on_output)
                            if not text:
                                continue
                            texts.append(text)
                            input_request = self._find_marker(text)
                            if input_request is not None:
                                break
                        elif isinstance(message, ResultMessage):
                            result = message
                            break
        except Exception:
            if run_id not in self._cancelled:
                raise
            logger.debug("Agent run %s raised after cancellation", run_id, exc_info=True)
        finally:
            self._clients.pop(run_id, None)
            self._active.discard(run_id)

        output = "\n".join(texts)
        if run_id in self._cancelled:
            self._cancelled.discard(run_id)
            return AgentRunResult(
                success=False, output=output, error="Agent run cancelled", cancelled=True
            )
        if input_request is not None:
            return AgentRunResult(success=False, output=output, input_request=input_request)
        if result is None:
            return AgentRunResult(
                success=False, output=output, error="Agent stopped without a result"
            )

        metadata = {
            "total_cost_usd": getattr(result, "total_cost_usd", None),
            "session_id": getattr(result, "session_id", None),
        }
        if getattr(result, "is_error", False):
            error = getattr(result, "result", None) or f"Error: {getattr(result, 'subtype', '')}"
            return AgentRunResult(success=False, output=output, error=error, metadata=metadata)

        last_text = texts[-1] if texts else ""
        question = self._trailing_question(last_text)
        if question is not None:
            return AgentRunResult(
                success=False, output=output, input_request=question, metadata=metadata
            )
        return AgentRunResult(success=True, output=output, metadata=metadata)

    async def cancel(self, run_id: str) -> bool:
        if run_id not in self._active:
            return False
        self._cancelled.add(run_id)
        client = self._clients.get(run_id)
        if client is None:
            logger.info("Cancelling agent run %s before the client connected", run_id)
            return True
        logger.info("Interrupting agent run %s", run_id)
        await client.interrupt()
        return True

    @staticmethod
    def _find_marker(text: str) -> InputRequest | None:
        for line in text.splitlines():
            request = parse_input_marker(line)
            if request is not None:
                return request
        return None

    @staticmethod
    def _trailing_question(text: str) -> InputRequest | None:
        """Treat a run that ends on a confident question as waiting for input."""
        if not detects_clarification_request(text):
            return None
        confidence = clarification_confidence(text)
        if confidence < CONFIDENCE_THRESHOLD:
            logger.debug("Low confidence question (%s%%) not treated as a pause", confidence)
            return None
        return InputRequest(
            question=extract_core_question(text),
            options=extract_options(text) or None,
            confidence=confidence,
        )

    async def _forward_assistant_message(
        self,
        message: Any,
        on_output: OutputHandler | None,
    ) -> str:
        """Forward tool uses and text of an AssistantMessage; return its text."""
        text_blocks = []

        for block in getattr(message, "content", []):
            if isinstance(block, TextBlock):
                text_blocks.append(block.text)
            elif isinstance(block, ToolUseBlock) and on_output is not None:
                await on_output(self._describe_tool_use(block))

        text = "\n".join(text_blocks).strip()
        if text and on_output is not None:
            await on_output(text)
        return text

    @staticmethod
    def _describe_tool_use(block: Any) -> str:
        tool_name = getattr(block, "name", None) or "tool"
        tool_input = getattr(block, "input", None)
        if not tool_input:
            return f"Tool use {tool_name}"
        try:
            serialized = json.dumps(tool_input)
        except TypeError:
            serialized = str(tool_input)
        return f"Tool use {tool_name}: {serialized}"

"""AssistantService produces the AI reply for a visitor conversation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from openai import AsyncOpenAI, OpenAIError

from src.config import settings
from src.models.chat_message import ChatMessage
from src.models.chat_session import ChatSession
from src.models.enums import MessageRole
from src.modules.chat.schemas import FunctionCall
from src.modules.chat.system_prompt import get_system_prompt
from src.modules.chat.tools import TOOL_DEFINITIONS

logger = logging.getLogger(__name__)

# ADMIN replies are shown to the model as assistant turns so it keeps the thread
_ROLE_MAP: dict[MessageRole, str] = {
    MessageRole.USER: "user",
    MessageRole.ASSISTANT: "assistant",
    MessageRole.ADMIN: "assistant",
}


@dataclass
class AssistantReply:
    content: str
    function_calls: list[FunctionCall] = field(default_factory=list)


class AssistantService:
    """Single-shot completion with tool calls surfaced to the caller."""

    def __init__(self, client: AsyncOpenAI | None = None) -> None:
        if client is None and settings.openai_api_key:
            client = AsyncOpenAI(api_key=settings.openai_api_key)
        self.client = client

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _build_messages(self, session: ChatSession, history: list[ChatMessage]) -> list[dict]:
        """Build the OpenAI messages array from stored history."""
        messages: list[dict] = [
            {"role": "system", "content": get_system_prompt(session.locale)},
        ]
        if session.current_page:
            messages.append(
                {"role": "system", "content": f"[Visitor is on page: {session.current_page}]"}
            )
        for msg in history:
            role = _ROLE_MAP.get(msg.role)
            if role and msg.content:
                messages.append({"role": role, "content": msg.content})
        return messages

    @staticmethod
    def _parse_function_calls(tool_calls) -> list[FunctionCall]:
        calls: list[FunctionCall] = []
        for tool_call in tool_calls or []:
            try:
                arguments = json.loads(tool_call.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning(
                    "Unparseable arguments for tool %s (call_id=%s)",
                    tool_call.function.name,
                    tool_call.id,
                )
                arguments = {}
            if not isinstance(arguments, dict):
                arguments = {}
            calls.append(FunctionCall(name=tool_call.function.name, arguments=arguments))
        return calls

    async def reply(
        self, session: ChatSession, history: list[ChatMessage]
    ) -> AssistantReply | None:
        """Ask the model for the next assistant turn.

        Returns None when the assistant is not configured or the provider
        call fails; the visitor's message is already stored either way.
        """
        if not self.enabled:
            logger.debug("OpenAI API key not configured; skipping assistant reply")
            return None

        try:
            response = await self.client.chat.completions.create(
                model=settings.openai_model,
                messages=self._build_messages(session, history),
                tools=TOOL_DEFINITIONS,
                tool_choice="auto",
                max_tokens=settings.assistant_max_tokens,
                temperature=settings.assistant_temperature,
            )
        except OpenAIError:
            logger.exception("Assistant completion failed for chat session %s", session.id)
            return None

        message = response.choices[0].message
        calls = self._parse_function_calls(message.tool_calls)
        if calls:
            logger.info(
                "Assistant requested %d function call(s) in chat session %s: %s",
                len(calls),
                session.id,
                ", ".join(call.name for call in calls),
            )
        return AssistantReply(content=message.content or "", function_calls=calls)

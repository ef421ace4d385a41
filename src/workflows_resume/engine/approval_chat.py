"""
Approval chat: lets a reviewer ask questions about the content under review.

Backed by any OpenAI-compatible chat completion endpoint (OpenAI, LM Studio,
vLLM, ...). The approval token gates access exactly like the approve action:
unknown tokens are 404, consumed tokens are 410.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from .exceptions import ApprovalChatError, ResumeValidationError
from .resume_coordinator import ResumeCoordinator
from .settings import EngineSettings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an AI assistant helping a user review and discuss content that requires approval. The content to review is:

{content}

Your role is to:
- Help the user understand the content
- Answer questions about it
- Provide analysis or recommendations
- Help them make an informed decision

IMPORTANT: Follow the user's exact request. Provide direct answers with no preamble, introduction, or summary unless specifically asked. Be concise, helpful, and professional."""

MAX_COMPLETION_TOKENS = 1000


class ApprovalChat:
    """
    Chat assistant for the approval page.

    Usage:
        chat = ApprovalChat(coordinator, settings)
        reply = await chat.reply(token, "What does this change?", chat_history=[...])
    """

    def __init__(
        self,
        coordinator: ResumeCoordinator,
        settings: EngineSettings | None = None,
        *,
        api_key: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        self.coordinator = coordinator
        self.settings = settings or coordinator.runtime.settings
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

    async def reply(
        self,
        token: str,
        message: str,
        chat_history: list[dict[str, Any]] | None = None,
        content: str | None = None,
    ) -> dict[str, Any]:
        """
        Answer one reviewer message.

        Args:
            content: Content under review; defaults to the paused block's content

        Raises:
            ResumeValidationError: Empty message or missing token
            PausedExecutionNotFoundError: Unknown token
            ResumeAlreadyUsedError: Token already consumed
            ApprovalChatError: The model call failed
        """
        if not message:
            raise ResumeValidationError("Message is required")
        details = await self.coordinator.get_approval(token)
        if content is None:
            content = details.get("content")

        messages = build_messages(message, chat_history, content)
        logger.info(
            f"Generating approval chat reply for {details['executionId']} "
            f"({len(messages)} messages)"
        )
        text = await self._complete(messages)
        logger.info(f"Approval chat reply generated ({len(text)} chars)")
        return {"success": True, "response": text}

    async def _complete(self, messages: list[dict[str, str]]) -> str:
        client_kwargs: dict[str, Any] = {
            "timeout": self.timeout,
            "max_retries": 0,  # Retries handled here
            "api_key": self.api_key or "sk-no-key-required",
        }
        base_url = self.settings.approval_chat_api_url
        if base_url:
            if base_url.endswith("/chat/completions"):
                base_url = base_url.rsplit("/chat/completions", 1)[0]
            client_kwargs["base_url"] = base_url

        async with AsyncOpenAI(**client_kwargs) as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.chat.completions.create(
                        model=self.settings.approval_chat_model,
                        messages=messages,  # type: ignore[arg-type]
                        max_completion_tokens=MAX_COMPLETION_TOKENS,
                    )
                except (
                    httpx.TimeoutException,
                    httpx.NetworkError,
                    openai.APITimeoutError,
                    openai.APIConnectionError,
                    openai.RateLimitError,
                    openai.InternalServerError,
                ) as e:
                    if attempt == self.max_retries - 1:
                        logger.error(f"Approval chat failed after {attempt + 1} attempts: {e}")
                        raise ApprovalChatError(f"Chat model unavailable: {e}") from e
                    await asyncio.sleep(self.retry_delay * (2**attempt))
                    continue
                except openai.APIStatusError as e:
                    logger.error(f"Approval chat rejected by model API: {e}")
                    raise ApprovalChatError(f"Chat model error: {e.message}") from e

                if not response.choices or not response.choices[0].message.content:
                    raise ApprovalChatError("Chat model returned an empty response")
                return response.choices[0].message.content

        raise ApprovalChatError("Chat model unavailable")


def build_messages(
    message: str, chat_history: list[dict[str, Any]] | None, content: Any
) -> list[dict[str, str]]:
    """System prompt with the reviewed content, prior turns, then the new message."""
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT.format(content=content or "No content provided")}
    ]
    for turn in chat_history or []:
        messages.append(
            {
                "role": "user" if turn.get("role") == "user" else "assistant",
                "content": str(turn.get("content", "")),
            }
        )
    messages.append({"role": "user", "content": message})
    return messages


__all__ = ["ApprovalChat", "build_messages"]

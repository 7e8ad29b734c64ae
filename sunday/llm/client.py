"""Summarization and completion capability backed by Azure OpenAI agents."""

import asyncio
import logging
from typing import Optional, Sequence

from agent_framework import ChatMessage, Role

from sunday.errors import SummarizationUnavailable

from .factory import create_agent
from .model_registry import ModelRegistry

logger = logging.getLogger(__name__)


class SundayLLM:
    """Explicit LLM client, constructed once at startup and passed by reference.

    - summarize(): bounded, timeout-guarded call used by the memory compressor
    - complete(): the chat turn itself
    """

    def __init__(
        self,
        registry: Optional[ModelRegistry] = None,
        chat_model: Optional[str] = None,
        memory_model: Optional[str] = None,
        summarization_timeout: float = 20.0,
        completion_timeout: float = 45.0,
    ):
        """Initialize the client.

        Args:
            registry: ModelRegistry (None = env settings for local dev)
            chat_model: Model for chat turns
            memory_model: Model for memory synthesis
            summarization_timeout: Seconds before a summarization call is abandoned
            completion_timeout: Seconds before a chat completion is abandoned
        """
        self.registry = registry
        self.chat_model = chat_model
        self.memory_model = memory_model
        self.summarization_timeout = summarization_timeout
        self.completion_timeout = completion_timeout

    async def summarize(self, instructions: str, text: str) -> str:
        """Run a one-shot summarization.

        Args:
            instructions: System instructions for the summarizer
            text: Text to summarize

        Returns:
            Non-empty summary text

        Raises:
            SummarizationUnavailable: On timeout, call failure or empty output
        """
        agent = create_agent(
            name="memory-agent",
            description="Condenses Sunday conversations into memory",
            instructions=instructions,
            registry=self.registry,
            model_name=self.memory_model,
        )
        try:
            response = await asyncio.wait_for(
                agent.run(messages=[ChatMessage(Role.USER, text=text)]),
                timeout=self.summarization_timeout,
            )
        except asyncio.TimeoutError as e:
            raise SummarizationUnavailable(
                f"Summarization timed out after {self.summarization_timeout}s"
            ) from e
        except Exception as e:
            raise SummarizationUnavailable(f"Summarization failed: {e}") from e

        result = (response.text or "").strip()
        if not result:
            raise SummarizationUnavailable("Summarization returned no text")
        return result

    async def complete(
        self,
        system_prompt: str,
        history: Sequence[dict],
        user_message: str,
    ) -> str:
        """Generate Sunday's reply to a user message.

        Args:
            system_prompt: Persona + assembled context
            history: Prior messages, oldest first ({"role", "content"})
            user_message: Current user message

        Returns:
            Reply text (may be empty if the model returned nothing)
        """
        agent = create_agent(
            name="sunday",
            description="Sunday wellness companion",
            instructions=system_prompt,
            registry=self.registry,
            model_name=self.chat_model,
        )
        messages = [
            ChatMessage(Role.USER if msg["role"] == "user" else Role.ASSISTANT, text=msg["content"])
            for msg in history
        ]
        messages.append(ChatMessage(Role.USER, text=user_message))

        response = await asyncio.wait_for(
            agent.run(messages=messages),
            timeout=self.completion_timeout,
        )
        return (response.text or "").strip()

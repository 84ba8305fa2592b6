"""Concrete implementations for LLM providers.

Every provider streams its answer, reports the accumulated text through the
``on_thinking``/``on_answer`` callbacks, and observes the cooperative
cancellation signal between stream chunks.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from .config import Config
from .models import ASSISTANT_ROLE, SYSTEM_ROLE, USER_ROLE, GenerationResult, Message

logger = logging.getLogger(__name__)

PartialCallback = Callable[[str], None]


class GenerationCancelled(Exception):
    """Raised by a provider once it observes the cancellation signal."""


def compose_messages(
    history: List[Message], config: Config, extra_context: Optional[str] = None
) -> List[Dict[str, str]]:
    """Turns the ancestor chain into the provider-neutral message list.

    Parameters
    ----------
    history : List[Message]
        Ordered root -> anchor messages.
    config : Config
        Supplies the system prompt and the history limit.
    extra_context : str, optional
        One-off context for this call only. It is sent as a user message and
        never stored in the tree.

    Returns
    -------
    List[Dict[str, str]]
        ``{"role", "content"}`` dicts: system prompt, extra context, then the
        most recent ``history_limit`` user/assistant messages.
    """
    result: List[Dict[str, str]] = []

    system_prompt = config.system_prompt.strip()
    if system_prompt:
        if config.include_date:
            system_prompt += f"\nToday is {date.today().strftime('%A, %B %d, %Y')}."
        result.append({"role": SYSTEM_ROLE, "content": system_prompt})

    if extra_context and extra_context.strip():
        result.append({"role": USER_ROLE, "content": f"[Context]\n{extra_context.strip()}"})

    plain = [
        {"role": message.role, "content": message.content}
        for message in history
        if message.role in (USER_ROLE, ASSISTANT_ROLE)
    ]
    if config.history_limit > 0:
        plain = plain[-config.history_limit :]
    result.extend(plain)
    return result


class LLM(ABC):
    """Abstract Base Class for all LLM providers."""

    @abstractmethod
    async def generate(
        self,
        messages: List[Dict[str, str]],
        config: Config,
        cancel_event: asyncio.Event,
        on_thinking: PartialCallback,
        on_answer: PartialCallback,
    ) -> GenerationResult:
        """Generates a response, streaming partial output through the callbacks.

        Parameters
        ----------
        messages : List[Dict[str, str]]
            Output of ``compose_messages``. Must not be mutated.
        config : Config
            Model and sampling settings.
        cancel_event : asyncio.Event
            Cooperative cancellation signal. Once set, the provider should
            stop and raise ``GenerationCancelled``.
        on_thinking, on_answer : Callable[[str], None]
            Receive the accumulated reasoning/answer text so far. May be
            called any number of times, including zero.

        Returns
        -------
        GenerationResult
            The final content and optional reasoning.

        Raises
        ------
        GenerationCancelled
            When cancellation was observed.
        Exception
            Any provider failure.
        """
        pass


class OpenAI(LLM):
    """OpenAI-compatible chat completions with streaming.

    Reads ``delta.reasoning_content`` as well, which reasoning models behind
    OpenAI-compatible APIs (e.g. DeepSeek) use for their thinking trace.
    """

    def __init__(self, default_model: str = "gpt-4o", **client_kwargs: Any):
        from openai import AsyncOpenAI

        self.client = AsyncOpenAI(**client_kwargs)
        self.model = default_model

    def _request_kwargs(self, config: Config) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"temperature": config.temperature}
        if config.max_tokens:
            kwargs["max_tokens"] = config.max_tokens
        return kwargs

    async def generate(self, messages, config, cancel_event, on_thinking, on_answer):
        logger.debug(f"Streaming completion from {config.model or self.model}")
        stream = await self.client.chat.completions.create(
            model=config.model or self.model,
            messages=messages,
            stream=True,
            **self._request_kwargs(config),
        )
        content = ""
        reasoning = ""
        try:
            async for chunk in stream:
                if cancel_event.is_set():
                    raise GenerationCancelled()
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                reasoning_delta = getattr(delta, "reasoning_content", None)
                if reasoning_delta:
                    reasoning += reasoning_delta
                    on_thinking(reasoning)
                if delta.content:
                    content += delta.content
                    on_answer(content)
        finally:
            await stream.close()

        if cancel_event.is_set():
            raise GenerationCancelled()
        return GenerationResult(content=content, reasoning=reasoning or None)


class DeepSeek(OpenAI):
    def __init__(self, default_model: str = "deepseek-reasoner"):
        super().__init__(
            default_model=default_model,
            base_url="https://api.deepseek.com",
            api_key=os.environ["DEEPSEEK_API_KEY"],
        )

    def _request_kwargs(self, config: Config) -> Dict[str, Any]:
        kwargs = super()._request_kwargs(config)
        if (config.model or self.model) == "deepseek-reasoner":
            # the reasoner ignores sampling parameters
            kwargs.pop("temperature")
        return kwargs


class OpenRouter(OpenAI):
    def __init__(self, default_model: str = "openai/gpt-4o-mini"):
        super().__init__(
            default_model=default_model,
            base_url="https://openrouter.ai/api/v1",
            api_key=os.environ["OPENROUTER_API_KEY"],
            default_headers={
                "HTTP-Referer": "https://github.com/chatbranch/chatbranch",
                "X-Title": "Chatbranch",
            },
        )


class Anthropic(LLM):
    def __init__(self, default_model: str = "claude-3-5-sonnet-20241022"):
        from anthropic import AsyncAnthropic

        self.client = AsyncAnthropic(api_key=os.environ["ANTHROPIC_API_KEY"])
        self.model = default_model

    async def generate(self, messages, config, cancel_event, on_thinking, on_answer):
        system = "\n\n".join(m["content"] for m in messages if m["role"] == SYSTEM_ROLE)
        chat = [m for m in messages if m["role"] != SYSTEM_ROLE]
        kwargs: Dict[str, Any] = {
            "max_tokens": config.max_tokens or 4096,
            "temperature": config.temperature,
        }
        if system:
            kwargs["system"] = system
        logger.debug(f"Streaming message from {config.model or self.model}")

        content = ""
        reasoning = ""
        async with self.client.messages.stream(
            model=config.model or self.model, messages=chat, **kwargs
        ) as stream:
            async for event in stream:
                if cancel_event.is_set():
                    raise GenerationCancelled()
                if event.type != "content_block_delta":
                    continue
                if event.delta.type == "text_delta":
                    content += event.delta.text
                    on_answer(content)
                elif event.delta.type == "thinking_delta":
                    reasoning += event.delta.thinking
                    on_thinking(reasoning)

        if cancel_event.is_set():
            raise GenerationCancelled()
        return GenerationResult(content=content, reasoning=reasoning or None)


class Echo(LLM):
    """Streams the last user prompt back. Needs no credentials or network."""

    def __init__(
        self, default_model: str = "echo-v1", chunk_size: int = 8, delay: float = 0.01
    ):
        self.model = default_model
        self.chunk_size = chunk_size
        self.delay = delay

    async def generate(self, messages, config, cancel_event, on_thinking, on_answer):
        user_prompt = next(
            (m["content"] for m in reversed(messages) if m["role"] == USER_ROLE),
            "No message provided",
        )
        text = f"**Echo LLM - static response for testing**\n\n_Your prompt:_\n\n{user_prompt}"

        content = ""
        for start in range(0, len(text), self.chunk_size):
            if cancel_event.is_set():
                raise GenerationCancelled()
            await asyncio.sleep(self.delay)
            content += text[start : start + self.chunk_size]
            on_answer(content)

        if cancel_event.is_set():
            raise GenerationCancelled()
        return GenerationResult(content=content)

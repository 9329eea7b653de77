"""
Chat-completion client for the investor and evaluator agents.

Provides:
- Startup model validation (Groq)
- Groq or OpenAI backends through the OpenAI-compatible API
- Streaming completion collected into a single response with timing
"""

import time
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx
import structlog
from openai import AsyncOpenAI

from src.pitchroom.config import get_config

logger = structlog.get_logger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"


@dataclass
class LLMResponse:
    """Response from LLM."""
    text: str
    first_token_ms: float = 0.0
    total_ms: float = 0.0
    tokens_generated: int = 0


async def validate_groq_model(api_key: str, model_name: str) -> bool:
    """
    Validate that the configured Groq model exists.

    Calls GET https://api.groq.com/openai/v1/models to check.

    Raises:
        SystemExit: If model doesn't exist (fail fast)
    """
    logger.info("Validating Groq model", model=model_name)

    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(
                f"{GROQ_BASE_URL}/models",
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=10.0,
            )

            if response.status_code != 200:
                logger.error(
                    "Failed to fetch Groq models",
                    status_code=response.status_code,
                    response=response.text[:200],
                )
                raise SystemExit(
                    f"Failed to validate Groq model. API returned status {response.status_code}. "
                    "Check your GROQ_API_KEY."
                )

            model_ids = [m.get("id") for m in response.json().get("data", [])]

            if model_name not in model_ids:
                available = ", ".join(sorted(model_ids)[:10])
                logger.error(
                    "Groq model not found",
                    requested_model=model_name,
                    available_models=available,
                )
                raise SystemExit(
                    f"GROQ_MODEL '{model_name}' not found in available models.\n"
                    f"Available models include: {available}\n"
                    "Please update GROQ_MODEL in your .env file."
                )

            logger.info("Groq model validated successfully", model=model_name)
            return True

        except httpx.RequestError as e:
            logger.error("Failed to connect to Groq API", error=str(e))
            raise SystemExit(
                f"Failed to connect to Groq API: {e}\n"
                "Check your network connection and GROQ_API_KEY."
            )


class ChatModel:
    """
    Stateless chat-completion client.

    Conversation history is owned by the caller; every call sends the full
    message list. Errors propagate to the caller.
    """

    def __init__(self, config: Optional[Any] = None, client: Optional[AsyncOpenAI] = None):
        if config is None:
            config = get_config()

        self.config = config
        provider = (config.llm_provider or "groq").strip().lower()
        self.provider = provider

        if provider == "openai":
            self.model = config.openai_model
            self._client = client or AsyncOpenAI(api_key=config.openai_api_key)
        else:
            self.model = config.groq_model
            # Use OpenAI client with Groq base URL
            self._client = client or AsyncOpenAI(
                api_key=config.groq_api_key,
                base_url=GROQ_BASE_URL,
            )

    async def validate_model(self) -> bool:
        """Validate the configured model exists (Groq only)."""
        if self.provider != "groq":
            return True
        return await validate_groq_model(self.config.groq_api_key, self.model)

    async def stream(
        self,
        messages: List[Dict[str, str]],
        system_prompt: Optional[str] = None,
    ) -> AsyncGenerator[str, None]:
        """Yield text deltas for a completion over `messages`."""
        payload: List[Dict[str, str]] = []
        if system_prompt:
            payload.append({"role": "system", "content": system_prompt})
        payload.extend(messages)

        stream = await self._client.chat.completions.create(
            model=self.model,
            messages=payload,
            stream=True,
            max_tokens=self.config.llm_max_tokens,
            temperature=self.config.llm_temperature,
        )

        async for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content

    async def complete(
        self,
        messages: List[Dict[str, str]],
        system_prompt: Optional[str] = None,
    ) -> LLMResponse:
        """Generate a complete response (non-streaming to the caller)."""
        start_time = time.time()
        first_token_time = None

        full_text = ""
        token_count = 0

        async for delta in self.stream(messages, system_prompt=system_prompt):
            if first_token_time is None:
                first_token_time = time.time()
            full_text += delta
            token_count += 1

        end_time = time.time()

        logger.debug(
            "LLM completion",
            model=self.model,
            tokens=token_count,
            total_ms=round((end_time - start_time) * 1000, 1),
        )

        return LLMResponse(
            text=full_text,
            first_token_ms=(first_token_time - start_time) * 1000 if first_token_time else 0,
            total_ms=(end_time - start_time) * 1000,
            tokens_generated=token_count,
        )


async def initialize_llm(config: Optional[Any] = None) -> ChatModel:
    """
    Create the chat client and validate its model at startup.

    Returns:
        Initialized and validated ChatModel instance
    """
    llm = ChatModel(config)
    await llm.validate_model()
    return llm

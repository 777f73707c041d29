"""
Incident RCA - LLM Factory
===========================

Builds the chat model shared by all pipeline stages.

The model is created once by the caller and passed into each stage
explicitly, so tests can hand in any langchain runnable instead.
"""

from typing import Optional

from langchain_openai import ChatOpenAI

from incident_rca.config import (
    GENERATION_MODEL,
    GENERATION_TEMPERATURE,
    OPENAI_API_KEY,
    REQUEST_TIMEOUT_SECONDS,
)


def create_chat_model(
    model: str = GENERATION_MODEL,
    temperature: float = GENERATION_TEMPERATURE,
    api_key: Optional[str] = None,
) -> ChatOpenAI:
    """
    Create the OpenAI chat model used as the completion service.

    Raises:
        ValueError: If no API key is configured
    """
    api_key = api_key or OPENAI_API_KEY
    if not api_key:
        raise ValueError(
            "OPENAI_API_KEY not set. "
            "Add it to your .env file or set the environment variable."
        )

    return ChatOpenAI(
        model=model,
        temperature=temperature,
        openai_api_key=api_key,
        request_timeout=REQUEST_TIMEOUT_SECONDS,
    )

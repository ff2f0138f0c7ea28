"""
Text generation with Claude through langchain-anthropic.
"""

import asyncio
import json
from typing import Any, Optional

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage

from studio_backend.providers.base import ProviderError
from studio_backend.utils.logging import provider_logger


def parse_json_response(response_text: str) -> Any:
    """
    Parse a JSON document out of an LLM response.

    Models often wrap JSON in markdown code fences; those are stripped.

    Raises:
        ValueError: no parseable JSON in the response
    """
    text = response_text.strip()

    # Handle markdown code blocks
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0].strip()
    elif "```" in text:
        text = text.split("```")[1].split("```")[0].strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Response is not valid JSON: {e}")


class AnthropicTextGenerator:
    """
    Generates marketing text and structured JSON with Claude.

    Args:
        api_key: Anthropic API key
        model_name: Claude model id
        temperature: sampling temperature
        max_tokens: response budget
    """

    def __init__(
        self,
        api_key: str,
        model_name: str,
        temperature: float = 0.7,
        max_tokens: int = 4000,
        timeout: float = 120.0,
    ):
        if not api_key:
            raise ProviderError("anthropic", "ANTHROPIC_API_KEY is not configured")

        self.model_name = model_name
        self.llm = ChatAnthropic(
            model=model_name,
            temperature=temperature,
            max_tokens=max_tokens,
            anthropic_api_key=api_key,
            timeout=timeout,
        )

    async def generate(
        self,
        prompt: str,
        context: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        messages = []
        if context:
            messages.append(SystemMessage(content=context))
        messages.append(HumanMessage(content=prompt))

        try:
            if timeout:
                response = await asyncio.wait_for(self.llm.ainvoke(messages), timeout=timeout)
            else:
                response = await self.llm.ainvoke(messages)
        except asyncio.TimeoutError:
            raise ProviderError("anthropic", f"no response within {timeout:g}s")
        except Exception as e:
            raise ProviderError("anthropic", str(e))

        content = response.content
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part)
                for part in content
            )

        provider_logger.debug("Text generated", model=self.model_name, chars=len(content))
        return content

    async def generate_json(
        self,
        prompt: str,
        context: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        text = await self.generate(
            prompt + "\n\nRespond with JSON only, no commentary.",
            context=context,
            timeout=timeout,
        )
        try:
            return parse_json_response(text)
        except ValueError as e:
            raise ProviderError("anthropic", str(e))

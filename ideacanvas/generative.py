"""
Generative service client for IdeaCanvas.

The canvas consumes three asynchronous requests:

- request_expansion(source_text, style_instruction) -> list of idea strings
- request_synthesis(text_a, text_b, style_instruction) -> merged text
- request_image(prompt_text) -> image data URI, or None when nothing was produced

Every transport or protocol failure surfaces as ServiceError. An empty idea
list and a None image are valid results, not failures.
"""

import json
import logging
from typing import Protocol, List, Optional, Any, runtime_checkable

import openai
from openai import AsyncOpenAI

from ideacanvas import config


logger = logging.getLogger(__name__)

SYNTHESIS_FALLBACK = "Could not synthesize."
IDEA_KEYS = ("idea", "label", "title", "name", "text", "content")


class ServiceError(Exception):
    """A generative request failed or returned something unusable."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation


@runtime_checkable
class GenerativeService(Protocol):
    """Request contracts the node action dispatcher depends on."""

    async def request_expansion(self, source_text: str,
                                style_instruction: Optional[str] = None) -> List[str]:
        ...

    async def request_synthesis(self, text_a: str, text_b: str,
                                style_instruction: Optional[str] = None) -> str:
        ...

    async def request_image(self, prompt_text: str) -> Optional[str]:
        ...


def _idea_text(item: Any) -> str:
    """Flatten one element of an idea list to a string."""
    if isinstance(item, str):
        return item.strip()
    if isinstance(item, dict):
        for key, value in item.items():
            if key.lower() in IDEA_KEYS and isinstance(value, str):
                return value.strip()
        return json.dumps(item)
    return str(item).strip()


def parse_ideas(content: Optional[str]) -> List[str]:
    """
    Turn a model response into a list of ideas.

    Accepts a bare JSON array, or a JSON object holding the array under any
    key (the first list value wins). Anything else degrades to the raw text
    as a single idea.
    """
    if not content or not content.strip():
        return []

    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        logger.warning(f"Expansion response is not JSON, using it as one idea: {content[:200]}")
        return [content.strip()]

    candidates = None
    if isinstance(data, list):
        candidates = data
    elif isinstance(data, dict):
        for value in data.values():
            if isinstance(value, list):
                candidates = value
                break

    if candidates is None:
        logger.warning(f"Expansion response has no idea list, using it as one idea: {content[:200]}")
        return [content.strip()]

    return [text for text in (_idea_text(c) for c in candidates) if text]


def _messages(prompt: str, style_instruction: Optional[str]) -> List[dict]:
    messages = []
    if style_instruction:
        messages.append({"role": "system", "content": style_instruction})
    messages.append({"role": "user", "content": prompt})
    return messages


class OpenAIGenerativeService:
    """GenerativeService backed by the OpenAI API."""

    def __init__(self, client: Optional[AsyncOpenAI] = None,
                 text_model: Optional[str] = None,
                 synthesis_model: Optional[str] = None,
                 image_model: Optional[str] = None):
        self._client = client
        self.text_model = text_model or config.get_text_model()
        self.synthesis_model = synthesis_model or config.get_synthesis_model()
        self.image_model = image_model or config.get_image_model()

    @property
    def client(self) -> AsyncOpenAI:
        # Created on first use so the canvas starts without an API key
        if self._client is None:
            try:
                self._client = AsyncOpenAI(api_key=config.get_api_key())
            except openai.OpenAIError as e:
                raise ServiceError("client", str(e)) from e
        return self._client

    async def _complete(self, operation: str, model: str, messages: List[dict],
                        json_mode: bool = False) -> Optional[str]:
        kwargs = {"model": model, "messages": messages}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        logger.debug(f"[{operation}] Sending request to {model}")
        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            raise ServiceError(operation, f"{type(e).__name__}: {e}") from e

        if not response.choices:
            raise ServiceError(operation, "response contained no choices")

        content = response.choices[0].message.content
        logger.debug(f"[{operation}] Received: {(content or '')[:200]}")
        return content

    async def request_expansion(self, source_text: str,
                                style_instruction: Optional[str] = None) -> List[str]:
        prompt = (
            f"User Prompt: {source_text}\n\n"
            "Task: Generate 3 to 5 distinct, concise, and creative related ideas or "
            "follow-up concepts based on the User Prompt.\n"
            'Return a JSON object of the form {"ideas": ["...", "..."]}.'
        )
        content = await self._complete(
            "expansion", self.text_model, _messages(prompt, style_instruction), json_mode=True
        )
        ideas = parse_ideas(content)
        logger.info(f"[expansion] Parsed {len(ideas)} ideas")
        return ideas

    async def request_synthesis(self, text_a: str, text_b: str,
                                style_instruction: Optional[str] = None) -> str:
        prompt = (
            f'Find a creative connection or synthesis between these two concepts: "{text_a}" '
            f'and "{text_b}". Write a concise paragraph explaining the link or a new idea '
            "that merges them."
        )
        content = await self._complete(
            "synthesis", self.synthesis_model, _messages(prompt, style_instruction)
        )
        return content.strip() if content and content.strip() else SYNTHESIS_FALLBACK

    async def request_image(self, prompt_text: str) -> Optional[str]:
        kwargs = {"model": self.image_model, "prompt": prompt_text, "n": 1}
        if self.image_model.startswith("dall-e"):
            # dall-e returns URLs by default; gpt-image models only return base64
            kwargs["response_format"] = "b64_json"

        logger.debug(f"[image] Sending request to {self.image_model}")
        try:
            response = await self.client.images.generate(**kwargs)
        except openai.OpenAIError as e:
            raise ServiceError("image", f"{type(e).__name__}: {e}") from e

        for image in response.data or []:
            if image.b64_json:
                return f"data:image/png;base64,{image.b64_json}"

        if any(getattr(image, "url", None) for image in response.data or []):
            logger.warning(f"[image] {self.image_model} returned only image URLs, which the canvas cannot show")
            return None

        logger.info("[image] Service returned no image data")
        return None

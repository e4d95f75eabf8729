"""
Prompt construction and completion flow for one session.

The assistant turns a conversation's history plus the new prompt into a
single completion prompt that fits the token budget, streams the completion
and decorates the result with search sources, image descriptions, generated
images and follow-up suggestions.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Protocol

from chatrelay.conversation import prompts
from chatrelay.conversation.exceptions import GenerationError, GenerationErrorType
from chatrelay.conversation.interaction import Interaction
from chatrelay.conversation.tokens import TokenBudget
from chatrelay.logging_config import logger
from chatrelay.models import (
    CompletionData,
    GeneratedImage,
    ImageAttachment,
    ResponseMessage,
    SourceAttribution,
    SuggestedResponse,
)
from chatrelay.services.search_service import SearchService
from chatrelay.settings import Settings
from chatrelay.upstream.openai_client import ProgressCallback, UpstreamClient
from chatrelay.utils import maybe_await

if TYPE_CHECKING:
    from chatrelay.conversation.session import GenerationOptions

SOURCE_MARKER_RE = re.compile(r"\[\^\d+\^\]")
IMAGE_PROMPT_MARKER = "GEN_IMG="

# Upper bounds for the auxiliary completions.
QUERY_MAX_TOKENS = 150
SUGGESTION_MAX_TOKENS = 150
MAX_SEARCH_QUERIES = 3
MAX_SUGGESTIONS = 3


class ImageDescriber(Protocol):
    async def describe(self, attachment: ImageAttachment) -> str:
        ...


class ImageGenerator(Protocol):
    async def generate(self, prompt: str) -> GeneratedImage:
        ...


@dataclass
class PromptData:
    content: str
    # Value to send as `max_tokens` for the completion.
    max_tokens: int
    tokens: int
    limit: int


def strip_sources(text: str) -> str:
    return SOURCE_MARKER_RE.sub("", text).strip()


def split_image_prompt(text: str) -> tuple[str, Optional[str]]:
    """Split a trailing `GEN_IMG=...` request off a completion."""
    index = text.rfind(IMAGE_PROMPT_MARKER)
    if index == -1:
        return text, None
    image_prompt = text[index + len(IMAGE_PROMPT_MARKER):].strip()
    return text[:index].strip(), image_prompt or None


def format_search_results(results: List[SourceAttribution]) -> str:
    return "\n".join(
        f"[{index + 1}] {result.title}: {result.description} ({result.url})"
        for index, result in enumerate(results)
    )


def _split_list(text: str, limit: int) -> List[str]:
    entries = [entry.strip().strip('"').strip() for entry in text.split("|")]
    return [entry for entry in entries if entry][:limit]


class Assistant:
    def __init__(
        self,
        client: UpstreamClient,
        settings: Settings,
        *,
        search: Optional[SearchService] = None,
        describer: Optional[ImageDescriber] = None,
        image_generator: Optional[ImageGenerator] = None,
        budget: Optional[TokenBudget] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.client = client
        self.settings = settings
        self.search = search
        self.describer = describer
        self.image_generator = image_generator
        self.budget = budget or TokenBudget(settings.max_prompt_tokens)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.name = prompts.ASSISTANT_NAME

    def today(self) -> str:
        return self.clock().strftime("%A, %B %d %Y")

    def time(self) -> str:
        return self.clock().strftime("%H:%M %Z").strip()

    def preamble(self) -> str:
        preamble = prompts.PREAMBLE.format(name=self.name, time=self.time(), date=self.today())
        if self.image_generator is not None:
            preamble = f"{preamble}\n\n{prompts.IMAGE_GENERATION}"
        return preamble

    def format_turn(self, entry: Interaction) -> str:
        message = entry.output.message
        output = strip_sources(message.text)
        for image in message.images:
            output = f"{output}\n{IMAGE_PROMPT_MARKER}{image.prompt}"
        return f"User: {entry.input}\n\n{self.name}: {output}"

    def _assemble(
        self,
        history: List[Interaction],
        prompt: str,
        formatted_results: Optional[str],
        attachments: List[ImageAttachment],
    ) -> str:
        parts = [self.preamble()]
        parts.extend(self.format_turn(entry) for entry in history)

        if formatted_results:
            parts.append(f"{prompts.SEARCH_RESULTS}\n\nResults:\n{formatted_results}")
        if attachments:
            descriptions = "\n".join(
                f"Image {index + 1}: {attachment.description}"
                for index, attachment in enumerate(attachments)
            )
            parts.append(f"{prompts.IMAGE_DESCRIPTION}\n\n{descriptions}")

        parts.append(f"User: {prompt}\n{self.name}: ")
        return "\n\n".join(parts)

    def build_prompt(
        self,
        history: List[Interaction],
        prompt: str,
        *,
        results: Optional[List[SourceAttribution]] = None,
        attachments: Optional[List[ImageAttachment]] = None,
    ) -> PromptData:
        """
        Assemble the completion prompt under the token budget.

        The oldest entries of `history` are removed in place until the prompt
        fits and leaves room for at least `min_reply_tokens`. Raises
        GenerationError(LENGTH) when even an empty history does not fit.
        """
        if len(prompt) >= self.settings.max_prompt_chars:
            raise GenerationError(GenerationErrorType.LENGTH)

        attachments = attachments or []
        formatted_results = format_search_results(results) if results else None

        limit = self.budget.max_tokens
        if formatted_results:
            limit += self.budget.count(formatted_results) + self.settings.search_context_slack_tokens

        min_reply = self.settings.min_reply_tokens
        while True:
            content = self._assemble(history, prompt, formatted_results, attachments)
            tokens = self.budget.count(content)

            if history and (tokens >= limit or limit - tokens < min_reply):
                dropped = history.pop(0)
                logger.debug("dropped history entry from %.0f to fit prompt budget", dropped.time)
                continue
            if not self.budget.acceptable(content, limit):
                raise GenerationError(GenerationErrorType.LENGTH)
            break

        return PromptData(
            content=content,
            max_tokens=max(limit - tokens, min_reply),
            tokens=tokens,
            limit=limit,
        )

    def completion_body(self, prompt: str, max_tokens: int, stop: List[str]) -> Dict[str, object]:
        return {
            "model": self.settings.completion_model,
            "prompt": prompt,
            "max_tokens": max_tokens,
            "temperature": self.settings.completion_temperature,
            "stop": stop,
        }

    async def complete(
        self,
        options: "GenerationOptions",
        *,
        results: Optional[List[SourceAttribution]] = None,
        attachments: Optional[List[ImageAttachment]] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Optional[CompletionData]:
        """
        Run the main completion. Returns None when the model produced only
        whitespace.
        """
        data = self.build_prompt(
            options.conversation.history,
            options.prompt,
            results=results,
            attachments=attachments,
        )
        completion = await self.client.complete(
            self.completion_body(data.content, data.max_tokens, prompts.STOP_SEQUENCES),
            progress,
        )

        text = completion.response.text.strip()
        if not text:
            return None
        completion.response.text = text
        return completion

    async def search_queries(self, options: "GenerationOptions") -> List[str]:
        if not self.settings.search_enabled or self.search is None:
            return []

        lines = [prompts.SEARCH_QUERIES.format(name=self.name), ""]
        previous = options.conversation.history[-1:]
        lines.extend(self.format_turn(entry) for entry in previous)
        lines.append(f"User: {options.prompt}\nQueries: ")

        try:
            completion = await self.client.complete(
                self.completion_body("\n".join(lines), QUERY_MAX_TOKENS, ["\n"])
            )
        except Exception as exc:
            logger.debug("search query generation failed: %s", exc)
            return []

        text = completion.response.text.strip()
        if not text or text.upper() == "N":
            return []
        return _split_list(text, MAX_SEARCH_QUERIES)

    async def suggestions(
        self, options: "GenerationOptions", reply: str
    ) -> List[SuggestedResponse]:
        lines = [
            prompts.SUGGESTIONS,
            "",
            f"User: {options.prompt}",
            f"{self.name}: {strip_sources(reply)}",
            "Suggestions: ",
        ]
        try:
            completion = await self.client.complete(
                self.completion_body("\n".join(lines), SUGGESTION_MAX_TOKENS, ["\n"])
            )
        except Exception as exc:
            logger.debug("suggestion generation failed: %s", exc)
            return []

        return [
            SuggestedResponse(text=text)
            for text in _split_list(completion.response.text, MAX_SUGGESTIONS)
        ]

    async def describe_images(self, options: "GenerationOptions") -> List[ImageAttachment]:
        if self.describer is None or not options.images:
            return []

        described: List[ImageAttachment] = []
        for attachment in options.images:
            await self._notice(options, f"Looking at **`{attachment.name or 'image'}`**")
            try:
                description = await self.describer.describe(attachment)
            except Exception as exc:
                logger.debug("image description for %s failed: %s", attachment.name, exc)
                continue
            described.append(attachment.model_copy(update={"description": description}))
        return described

    async def run_searches(
        self, options: "GenerationOptions", queries: List[str]
    ) -> List[SourceAttribution]:
        if self.search is None:
            return []

        sources: Dict[str, SourceAttribution] = {}
        for query in queries:
            await self._notice(options, f"Searching for **`{query}`**")
            for result in await self.search.search(query):
                sources.setdefault(result.url, result)
        return list(sources.values())

    async def generate_image(self, image_prompt: str) -> Optional[GeneratedImage]:
        if self.image_generator is None:
            return None
        try:
            return await self.image_generator.generate(image_prompt)
        except Exception as exc:
            logger.debug("image generation for %r failed: %s", image_prompt, exc)
            return None

    async def _notice(self, options: "GenerationOptions", text: str) -> None:
        await maybe_await(options.on_progress(ResponseMessage(type="Notice", text=text)))

    async def ask(self, options: "GenerationOptions") -> ResponseMessage:
        """Answer `options.prompt`, reporting partial messages through `on_progress`."""
        message_id = uuid.uuid4().hex

        attachments = await self.describe_images(options)
        queries = [] if options.images else await self.search_queries(options)
        sources = await self.run_searches(options, queries) if queries else []

        async def progress(data: CompletionData) -> None:
            text, _ = split_image_prompt(data.response.text)
            await maybe_await(
                options.on_progress(
                    ResponseMessage(
                        id=message_id,
                        type="Chat",
                        text=text,
                        sources=sources or None,
                        attachments=attachments,
                        queries=queries or None,
                        raw=data.response,
                    )
                )
            )

        completion = await self.complete(
            options, results=sources, attachments=attachments, progress=progress
        )
        if completion is None:
            raise GenerationError(GenerationErrorType.EMPTY)

        text, image_prompt = split_image_prompt(completion.response.text)
        images: List[GeneratedImage] = []
        if image_prompt is not None and self.image_generator is not None:
            await maybe_await(
                options.on_progress(
                    ResponseMessage(
                        id=message_id,
                        type="ChatNotice",
                        text=text,
                        notice="Generating image",
                        sources=sources or None,
                        attachments=attachments,
                    )
                )
            )
            image = await self.generate_image(image_prompt)
            if image is not None:
                images.append(image)

        suggestions = await self.suggestions(options, text)

        return ResponseMessage(
            id=message_id,
            type="Chat",
            text=text,
            sources=sources or None,
            suggestions=suggestions,
            attachments=attachments,
            images=images,
            queries=queries or None,
            raw=completion.response,
        )


__all__ = [
    "Assistant",
    "ImageDescriber",
    "ImageGenerator",
    "PromptData",
    "format_search_results",
    "split_image_prompt",
    "strip_sources",
]

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from legalyze.pipeline.invoker import RATE_LIMITED_ONLY, ResilientInvoker
from legalyze.pipeline.parse_response import extract_structured_value
from legalyze.pipeline.validate_output import validate_output
from legalyze.prompts.manager import PromptSet
from legalyze.utils.error_taxonomy import (
    DocumentContentMissingError,
    SchemaValidationError,
)

DEFAULT_MAX_ATTEMPTS = 3
FRESH_CONVERSATION_INSTRUCTION = (
    "6. Treat this as a fresh conversation without any prior context."
)


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: str
    content: str


@dataclass(frozen=True, slots=True)
class ChatReference:
    page: float
    text: str


@dataclass(frozen=True, slots=True)
class ChatReply:
    content: str
    references: list[ChatReference]
    retries_used: int


class DocumentChatWorkflow:
    def __init__(
        self,
        *,
        invoker: ResilientInvoker,
        prompt_set: PromptSet,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if prompt_set.schema is None:
            raise ValueError(f"Prompt {prompt_set.prompt_name} has no schema.json")
        self.invoker = invoker
        self.prompt_set = prompt_set
        self.max_attempts = max_attempts

    def build_prompt(
        self,
        *,
        content: str,
        message: str,
        previous_messages: Sequence[ChatMessage],
    ) -> str:
        return self.prompt_set.render(
            {
                "DOCUMENT_CONTENT": content,
                "CONVERSATION_HISTORY": format_history(previous_messages),
                "USER_MESSAGE": message,
                "FRESH_CONVERSATION_INSTRUCTION": (
                    "" if previous_messages else FRESH_CONVERSATION_INSTRUCTION
                ),
            }
        )

    async def run(
        self,
        content: str | None,
        message: str,
        previous_messages: Sequence[ChatMessage] = (),
    ) -> ChatReply:
        if not content or not content.strip():
            raise DocumentContentMissingError("Document content is empty")

        prompt = self.build_prompt(
            content=content,
            message=message,
            previous_messages=previous_messages,
        )
        invocation = await self.invoker.invoke(
            prompt,
            max_attempts=self.max_attempts,
            retryable=RATE_LIMITED_ONLY,
        )

        parsed = extract_structured_value(invocation.raw_text, "object")
        validation = validate_output(
            parsed_json=parsed,
            schema=self.prompt_set.schema,
            kind="chat_reply",
        )
        if not validation.valid:
            raise SchemaValidationError(validation.errors, artifact_kind="chat_reply")

        return ChatReply(
            content=parsed["content"],
            references=_to_references(parsed.get("references") or []),
            retries_used=invocation.retries_used,
        )


def format_history(previous_messages: Sequence[ChatMessage]) -> str:
    if not previous_messages:
        return ""
    lines = [f"{item.role}: {item.content}" for item in previous_messages]
    return "Previous conversation:\n" + "\n".join(lines)


def parse_chat_messages(items: Sequence[Mapping[str, Any]]) -> list[ChatMessage]:
    return [
        ChatMessage(role=str(item["role"]), content=str(item["content"]))
        for item in items
    ]


def _to_references(items: list[dict[str, Any]]) -> list[ChatReference]:
    references: list[ChatReference] = []
    for item in items:
        page = item.get("page")
        references.append(
            ChatReference(
                page=float(page) if isinstance(page, (int, float)) else 0.0,
                text=str(item["text"]),
            )
        )
    return references

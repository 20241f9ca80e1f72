from __future__ import annotations

from typing import Protocol


class GenerationClient(Protocol):
    """Upstream text generation service.

    Implementations return the raw text of the first candidate and let SDK
    errors propagate untouched; classification happens in the invoker.
    """

    provider: str

    async def generate_text(self, *, prompt: str, model: str) -> str: ...

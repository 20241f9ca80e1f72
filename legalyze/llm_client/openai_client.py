from __future__ import annotations

from typing import Any, Protocol


class OpenAIResponsesService(Protocol):
    async def create(self, **kwargs: Any) -> Any: ...


class OpenAILLMClient:
    provider = "openai"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        responses_service: OpenAIResponsesService | None = None,
        reasoning_effort: str | None = None,
    ) -> None:
        self._api_key = api_key
        self._responses_service = responses_service
        self._reasoning_effort = reasoning_effort

    async def generate_text(self, *, prompt: str, model: str) -> str:
        service = self._resolve_service()
        payload = self.build_request_payload(
            prompt=prompt,
            model=model,
            reasoning_effort=self._reasoning_effort,
        )
        response = await service.create(**payload)
        return _extract_openai_output_text(response=response, payload=_to_dict(response))

    @staticmethod
    def build_request_payload(
        *,
        prompt: str,
        model: str,
        reasoning_effort: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "input": [
                {
                    "role": "user",
                    "content": [{"type": "input_text", "text": prompt}],
                },
            ],
            "tools": [],
            "tool_choice": "none",
        }

        if reasoning_effort in {"low", "medium", "high"}:
            payload["reasoning"] = {"effort": reasoning_effort}

        return payload

    def _resolve_service(self) -> OpenAIResponsesService:
        if self._responses_service is not None:
            return self._responses_service

        if self._api_key is None:
            raise ValueError("OpenAI API key is required when service is not injected")

        try:
            from openai import AsyncOpenAI
        except ImportError as error:
            raise RuntimeError("openai package is not installed") from error

        client = AsyncOpenAI(api_key=self._api_key)
        self._responses_service = client.responses
        return self._responses_service


def _extract_openai_output_text(*, response: Any, payload: dict[str, Any]) -> str:
    output_text = getattr(response, "output_text", None)
    if isinstance(output_text, str) and output_text.strip():
        return output_text

    payload_text = payload.get("output_text")
    if isinstance(payload_text, str) and payload_text.strip():
        return payload_text

    output = payload.get("output")
    if isinstance(output, list):
        for item in output:
            if not isinstance(item, dict):
                continue
            content = item.get("content")
            if not isinstance(content, list):
                continue
            for content_item in content:
                if not isinstance(content_item, dict):
                    continue
                text = content_item.get("text")
                if isinstance(text, str) and text.strip():
                    return text

    raise ValueError("OpenAI response does not contain output text")


def _to_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value

    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        if isinstance(dumped, dict):
            return dumped

    return {}

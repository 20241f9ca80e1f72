from __future__ import annotations

from typing import Any, Protocol


class GeminiGenerateService(Protocol):
    async def generate_content(self, **kwargs: Any) -> Any: ...


class GeminiLLMClient:
    provider = "google"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        generate_service: GeminiGenerateService | None = None,
        temperature: float | None = None,
    ) -> None:
        self._api_key = api_key
        self._generate_service = generate_service
        self._temperature = temperature

    async def generate_text(self, *, prompt: str, model: str) -> str:
        service = self._resolve_service()
        payload = self.build_request_payload(
            prompt=prompt, model=model, temperature=self._temperature
        )
        response = await service.generate_content(**payload)
        return _extract_gemini_output_text(response=response, payload=_to_dict(response))

    @staticmethod
    def build_request_payload(
        *,
        prompt: str,
        model: str,
        temperature: float | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }
        if temperature is not None:
            payload["config"] = {"temperature": temperature}
        return payload

    def _resolve_service(self) -> GeminiGenerateService:
        if self._generate_service is not None:
            return self._generate_service

        if self._api_key is None:
            raise ValueError("Google API key is required when service is not injected")

        try:
            from google import genai
        except ImportError as error:
            raise RuntimeError("google-genai package is not installed") from error

        # Keep the client referenced so its transport is not garbage collected.
        client = getattr(self, "_genai_client", None)
        if client is None:
            client = genai.Client(api_key=self._api_key)
            self._genai_client = client

        self._generate_service = client.aio.models
        return self._generate_service


def _extract_gemini_output_text(*, response: Any, payload: dict[str, Any]) -> str:
    direct_text = getattr(response, "text", None)
    if isinstance(direct_text, str) and direct_text.strip():
        return direct_text

    candidates = payload.get("candidates")
    if isinstance(candidates, list):
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            content = candidate.get("content")
            if not isinstance(content, dict):
                continue
            parts = content.get("parts")
            if not isinstance(parts, list):
                continue
            for part in parts:
                if not isinstance(part, dict):
                    continue
                text = part.get("text")
                if isinstance(text, str) and text.strip():
                    return text

    raise ValueError("Gemini response does not contain text output")


def _to_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value

    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        if isinstance(dumped, dict):
            return dumped

    return {}

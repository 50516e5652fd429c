"""
AI backends used for invoice extraction.

Every backend implements the same capability: send a text prompt, plus an
optional image as a base64 data URI, and return the model's raw text answer.

    openai  - OpenAI / Azure OpenAI chat completions (httpx)
    gemini  - Google Gemini multimodal (google-generativeai)
    ollama  - self-hosted Ollama chat endpoint (httpx)

``create_provider`` maps a provider name to one of these and fails closed on
anything else.
"""

import base64
import binascii
import functools
from abc import ABC, abstractmethod

import httpx
from loguru import logger

from ..core.config import Settings
from ..core.errors import ConfigurationError, ProviderError

OPENAI_DEFAULT_BASE_URL = "https://api.openai.com/v1"


def strip_data_uri(value: str) -> str:
    """Drop a ``data:image/...;base64,`` prefix if present."""
    if value.startswith("data:image"):
        _, sep, payload = value.partition(",")
        if sep:
            return payload
    return value


def detect_mime_type(data: bytes) -> str:
    """Sniff the image MIME type from magic bytes, assuming JPEG when unknown."""
    if data[:2] == b"\xff\xd8":
        return "image/jpeg"
    if data[:4] == b"\x89PNG":
        return "image/png"
    if data[:3] == b"GIF":
        return "image/gif"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def _unexpected_shape(backend: str, r: httpx.Response) -> ProviderError:
    return ProviderError(
        f"unexpected {backend} response shape: {r.text[:500]}",
        status_code=r.status_code,
    )


def _message_content(backend: str, r: httpx.Response, container) -> str:
    """``container["message"]["content"]`` from a chat answer, checking each level."""
    if not isinstance(container, dict):
        raise _unexpected_shape(backend, r)
    message = container.get("message") or {}
    if not isinstance(message, dict):
        raise _unexpected_shape(backend, r)
    content = message.get("content")
    if content is None:
        return ""
    if not isinstance(content, str):
        raise _unexpected_shape(backend, r)
    return content


class AIProvider(ABC):
    name: str = ""

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    async def extract(self, prompt: str, image_data_uri: str | None = None) -> str:
        """Send the prompt (and image, if any) and return the raw answer text."""


class OpenAIProvider(AIProvider):
    name = "openai"

    def __init__(
        self,
        api_key: str | None,
        model: str,
        base_url: str | None = None,
        api_version: str = "2024-06-01",
        timeout: float = 60.0,
    ):
        super().__init__(model)
        self.api_key = api_key or ""
        self.base_url = (base_url or OPENAI_DEFAULT_BASE_URL).rstrip("/")
        self.api_version = api_version
        self.timeout = timeout

    @property
    def is_azure(self) -> bool:
        return "azure" in self.base_url

    def _endpoint(self) -> tuple[str, dict, dict]:
        if self.is_azure:
            url = f"{self.base_url}/openai/deployments/{self.model}/chat/completions"
            return url, {"api-key": self.api_key}, {"api-version": self.api_version}
        url = f"{self.base_url}/chat/completions"
        return url, {"Authorization": f"Bearer {self.api_key}"}, {}

    @staticmethod
    def _messages(prompt: str, image_data_uri: str | None) -> list[dict]:
        if not image_data_uri:
            return [{"role": "user", "content": prompt}]
        return [{
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image_data_uri, "detail": "auto"}},
            ],
        }]

    async def extract(self, prompt: str, image_data_uri: str | None = None) -> str:
        url, headers, params = self._endpoint()
        body = {
            "model": self.model,
            "messages": self._messages(prompt, image_data_uri),
            "temperature": 0,
            "response_format": {"type": "json_object"},
        }

        logger.info("Calling OpenAI", model=self.model, azure=self.is_azure, with_image=bool(image_data_uri))
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(url, json=body, headers=headers, params=params)
        except httpx.HTTPError as e:
            raise ProviderError(f"OpenAI API call failed: {e}") from e

        if r.status_code != 200:
            raise ProviderError(
                f"OpenAI API call failed: status {r.status_code}: {r.text}",
                status_code=r.status_code,
            )

        try:
            payload = r.json()
        except ValueError as e:
            raise ProviderError(f"failed to parse OpenAI response: {e}", status_code=r.status_code) from e

        if not isinstance(payload, dict):
            raise _unexpected_shape("OpenAI", r)

        choices = payload.get("choices") or []
        if not isinstance(choices, list):
            raise _unexpected_shape("OpenAI", r)
        if not choices:
            raise ProviderError("no response from OpenAI", status_code=r.status_code)

        return _message_content("OpenAI", r, choices[0])


@functools.cache
def _configure_gemini(api_key: str | None) -> None:
    # The SDK keeps its client process-wide; configure it once per key, not per request
    import google.generativeai as genai

    genai.configure(api_key=api_key)


class GeminiProvider(AIProvider):
    name = "gemini"

    def __init__(self, api_key: str | None, model: str):
        super().__init__(model)
        self.api_key = api_key

    @staticmethod
    def _image_part(image_data_uri: str) -> dict:
        try:
            image_bytes = base64.b64decode(strip_data_uri(image_data_uri), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProviderError(f"failed to decode image: {e}") from e
        return {"mime_type": detect_mime_type(image_bytes), "data": image_bytes}

    async def extract(self, prompt: str, image_data_uri: str | None = None) -> str:
        import google.generativeai as genai

        parts: list = [prompt]
        if image_data_uri:
            parts.append(self._image_part(image_data_uri))

        logger.info("Calling Gemini", model=self.model, with_image=bool(image_data_uri))
        try:
            _configure_gemini(self.api_key)
            model = genai.GenerativeModel(
                self.model,
                generation_config={"response_mime_type": "application/json"},
            )
            response = await model.generate_content_async(parts)
        except Exception as e:
            raise ProviderError(f"Gemini API call failed: {e}") from e

        if not response.candidates:
            raise ProviderError("no response from Gemini")

        content = response.candidates[0].content
        return "".join(getattr(part, "text", "") for part in content.parts)


class OllamaProvider(AIProvider):
    name = "ollama"

    def __init__(self, base_url: str, model: str, timeout: float = 120.0):
        super().__init__(model)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout  # local inference on CPU is slow

    async def extract(self, prompt: str, image_data_uri: str | None = None) -> str:
        message = {"role": "user", "content": prompt}
        if image_data_uri:
            message["images"] = [strip_data_uri(image_data_uri)]

        body = {
            "model": self.model,
            "messages": [message],
            "stream": False,
            "format": "json",
            "options": {"temperature": 0},
        }

        logger.info("Calling Ollama", base_url=self.base_url, model=self.model, with_image=bool(image_data_uri))
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(f"{self.base_url}/api/chat", json=body)
        except httpx.HTTPError as e:
            raise ProviderError(f"Ollama API call failed: {e}") from e

        if r.status_code != 200:
            raise ProviderError(f"Ollama returned status {r.status_code}: {r.text}", status_code=r.status_code)

        try:
            payload = r.json()
        except ValueError as e:
            raise ProviderError(f"failed to parse Ollama response: {e}", status_code=r.status_code) from e

        if not isinstance(payload, dict):
            raise _unexpected_shape("Ollama", r)

        return _message_content("Ollama", r, payload)


def _openai(settings: Settings, model: str) -> AIProvider:
    return OpenAIProvider(
        api_key=settings.openai_api_key,
        model=model or settings.openai_model,
        base_url=settings.openai_base_url,
        api_version=settings.openai_api_version,
        timeout=settings.openai_timeout_seconds,
    )


def _gemini(settings: Settings, model: str) -> AIProvider:
    return GeminiProvider(api_key=settings.gemini_api_key, model=model or settings.gemini_model)


def _ollama(settings: Settings, model: str) -> AIProvider:
    return OllamaProvider(
        base_url=settings.ollama_base_url,
        model=model or settings.ollama_model,
        timeout=settings.ollama_timeout_seconds,
    )


PROVIDERS = {
    "openai": _openai,
    "gemini": _gemini,
    "ollama": _ollama,
}


def create_provider(name: str, model: str | None, settings: Settings) -> AIProvider:
    """
    Build the provider registered under ``name``.

    An empty ``model`` falls back to the configured model for that provider.

    Raises:
        ConfigurationError: If ``name`` is not a supported provider.
    """
    factory = PROVIDERS.get(name)
    if factory is None:
        raise ConfigurationError(f"unsupported AI provider: {name}")
    return factory(settings, model or "")

import abc
import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional, Tuple

import anthropic
import httpx
import openai
from anthropic import AsyncAnthropic
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from openai import AsyncOpenAI

from core.config import settings
from core.contracts import AnalysisTask, CallOptions, EncodedImage, ModelResult
from core.errors import ProviderError, ProviderTimeoutError, RateLimitError
from inference.parsing import estimate_confidence
from inference.prompts import JSON_ONLY_SUFFIX, PROBE_PROMPT

logger = logging.getLogger(__name__)

XAI_BASE_URL = "https://api.x.ai/v1"
XAI_MAX_TOKENS = 4096
PROBE_MAX_TOKENS = 5

# Hard output limits of older models.
TOKEN_CAPS: Dict[str, int] = {
    "gpt-4-turbo": 4096,
    "claude-3-haiku-20240307": 4096,
}

SendResult = Tuple[str, Optional[str], Optional[int]]


def image_base64(image: EncodedImage) -> str:
    data = image.data
    if data.startswith("data:") and "," in data:
        return data.split(",", 1)[1]
    return data


def image_media_type(image: EncodedImage) -> str:
    data = image.data
    if data.startswith("data:"):
        return "image/png" if "image/png" in data.split(",", 1)[0] else "image/jpeg"
    if data.startswith("iVBOR"):
        return "image/png"
    if data.startswith("/9j/"):
        return "image/jpeg"
    return image.media_type or "image/jpeg"


def image_data_url(image: EncodedImage) -> str:
    if image.data.startswith("data:"):
        return image.data
    return f"data:{image_media_type(image)};base64,{image.data}"


def _openai_style_messages(
    system_prompt: str, user_prompt: str, images: List[EncodedImage]
) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    content: List[Dict[str, Any]] = [{"type": "text", "text": user_prompt}]
    content.extend(
        {"type": "image_url", "image_url": {"url": image_data_url(img), "detail": "high"}}
        for img in images
    )
    messages.append({"role": "user", "content": content})
    return messages


class ProviderClient(abc.ABC):
    """One upstream model vendor. Subclasses implement _send and _translate_error."""

    name = ""
    default_model = ""
    probe_model = ""

    def cap_max_tokens(self, model: str, requested: int) -> int:
        cap = TOKEN_CAPS.get(model)
        return min(requested, cap) if cap else requested

    async def probe(self, timeout_s: Optional[float] = None) -> None:
        """Tiny request that raises ProviderError when the vendor is unreachable."""
        timeout_s = settings.probe_timeout_s if timeout_s is None else timeout_s
        await self._call(
            self.probe_model,
            "",
            PROBE_PROMPT,
            [],
            PROBE_MAX_TOKENS,
            0.0,
            False,
            timeout_s,
        )

    async def generate(
        self,
        task: AnalysisTask,
        options: Optional[CallOptions] = None,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
    ) -> ModelResult:
        options = options or CallOptions()
        model = model or self.default_model
        content, finish_reason, tokens = await self._call(
            model,
            task.system_prompt if system_prompt is None else system_prompt,
            task.user_prompt,
            task.images,
            self.cap_max_tokens(model, options.max_tokens),
            options.temperature,
            json_mode,
            options.timeout_s,
        )
        logger.info("%s %s returned %d chars (finish=%s)", self.name, model, len(content), finish_reason)
        return ModelResult(
            provider=self.name,
            model=model,
            content=content,
            finish_reason=finish_reason,
            confidence=estimate_confidence(content),
            task_type=task.task_type,
            tokens_used=tokens,
        )

    async def _call(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        images: List[EncodedImage],
        max_tokens: int,
        temperature: float,
        json_mode: bool,
        timeout_s: float,
    ) -> SendResult:
        try:
            return await asyncio.wait_for(
                self._send(model, system_prompt, user_prompt, images, max_tokens, temperature, json_mode),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                self.name, f"timed out after {timeout_s:.0f}s", original_error=exc
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:
            translated = self._translate_error(exc)
            if translated is None:
                # Malformed payloads (bad JSON, empty choices) count as provider failures.
                translated = ProviderError(
                    self.name, f"{type(exc).__name__}: {exc}", original_error=exc
                )
            raise translated from exc

    async def aclose(self) -> None:
        """Release the underlying SDK or HTTP client."""

    @abc.abstractmethod
    async def _send(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        images: List[EncodedImage],
        max_tokens: int,
        temperature: float,
        json_mode: bool,
    ) -> SendResult:
        ...

    def _translate_error(self, exc: Exception) -> Optional[ProviderError]:
        return None


class OpenAIProvider(ProviderClient):
    name = "openai"
    default_model = "gpt-4o"
    probe_model = "gpt-4o-mini"

    def __init__(self, client: Optional[AsyncOpenAI] = None) -> None:
        self._client = client or AsyncOpenAI(api_key=settings.openai_api_key)

    async def aclose(self) -> None:
        await self._client.close()

    async def _send(self, model, system_prompt, user_prompt, images, max_tokens, temperature, json_mode):
        request: Dict[str, Any] = {
            "model": model,
            "messages": _openai_style_messages(system_prompt, user_prompt, images),
            "max_completion_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}
        response = await self._client.chat.completions.create(**request)
        choice = response.choices[0]
        tokens = response.usage.total_tokens if response.usage else None
        return choice.message.content or "", choice.finish_reason, tokens

    def _translate_error(self, exc):
        if isinstance(exc, openai.RateLimitError):
            return RateLimitError(self.name, str(exc), original_error=exc)
        if isinstance(exc, openai.APITimeoutError):
            return ProviderTimeoutError(self.name, str(exc), original_error=exc)
        if isinstance(exc, openai.APIStatusError):
            return ProviderError(self.name, str(exc), status_code=exc.status_code, original_error=exc)
        if isinstance(exc, openai.APIError):
            return ProviderError(self.name, str(exc), original_error=exc)
        return None


class AnthropicProvider(ProviderClient):
    name = "anthropic"
    default_model = "claude-sonnet-4-20250514"
    probe_model = "claude-3-haiku-20240307"

    def __init__(self, client: Optional[AsyncAnthropic] = None) -> None:
        self._client = client or AsyncAnthropic(api_key=settings.anthropic_api_key)

    async def aclose(self) -> None:
        await self._client.close()

    async def _send(self, model, system_prompt, user_prompt, images, max_tokens, temperature, json_mode):
        content: List[Dict[str, Any]] = [{"type": "text", "text": user_prompt}]
        content.extend(
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": image_media_type(img),
                    "data": image_base64(img),
                },
            }
            for img in images
        )
        request: Dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if system_prompt:
            request["system"] = system_prompt
        response = await self._client.messages.create(**request)
        text = next((block.text for block in response.content if block.type == "text"), "")
        usage = response.usage
        tokens = (usage.input_tokens + usage.output_tokens) if usage else None
        return text, response.stop_reason, tokens

    def _translate_error(self, exc):
        if isinstance(exc, anthropic.RateLimitError):
            return RateLimitError(self.name, str(exc), original_error=exc)
        if isinstance(exc, anthropic.APITimeoutError):
            return ProviderTimeoutError(self.name, str(exc), original_error=exc)
        if isinstance(exc, anthropic.APIStatusError):
            return ProviderError(self.name, str(exc), status_code=exc.status_code, original_error=exc)
        if isinstance(exc, anthropic.APIError):
            return ProviderError(self.name, str(exc), original_error=exc)
        return None


class GoogleProvider(ProviderClient):
    name = "google"
    default_model = "gemini-1.5-flash"
    probe_model = "gemini-1.5-flash"

    def __init__(self, client: Optional[genai.Client] = None) -> None:
        self._client = client or genai.Client(api_key=settings.google_api_key)

    async def aclose(self) -> None:
        await self._client.aio.aclose()

    async def _send(self, model, system_prompt, user_prompt, images, max_tokens, temperature, json_mode):
        text = f"{user_prompt}\n\n{JSON_ONLY_SUFFIX}" if json_mode else user_prompt
        parts = [types.Part.from_text(text=text)]
        parts.extend(
            types.Part.from_bytes(
                data=base64.b64decode(image_base64(img)), mime_type=image_media_type(img)
            )
            for img in images
        )
        config = types.GenerateContentConfig(
            max_output_tokens=max_tokens,
            temperature=temperature,
        )
        if system_prompt:
            config.system_instruction = system_prompt
        if json_mode:
            config.response_mime_type = "application/json"
        response = await self._client.aio.models.generate_content(
            model=model,
            contents=parts,
            config=config,
        )
        content = response.text or ""
        finish = None
        if response.candidates and response.candidates[0].finish_reason is not None:
            finish = str(response.candidates[0].finish_reason)
        usage = response.usage_metadata
        return content, finish, usage.total_token_count if usage else None

    def _translate_error(self, exc):
        if isinstance(exc, genai_errors.APIError):
            if exc.code == 429:
                return RateLimitError(self.name, str(exc), original_error=exc)
            return ProviderError(self.name, str(exc), status_code=exc.code, original_error=exc)
        return None


class XAIProvider(ProviderClient):
    name = "xai"
    default_model = "grok-2-1212"
    probe_model = "grok-2-1212"

    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=XAI_BASE_URL,
            timeout=settings.model_timeout_s,
            headers={"Authorization": f"Bearer {settings.xai_api_key}"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def cap_max_tokens(self, model: str, requested: int) -> int:
        return min(requested, XAI_MAX_TOKENS)

    async def _send(self, model, system_prompt, user_prompt, images, max_tokens, temperature, json_mode):
        payload: Dict[str, Any] = {
            "model": model,
            "messages": _openai_style_messages(system_prompt, user_prompt, images),
            "max_completion_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        response = await self._client.post("/chat/completions", json=payload)
        if response.status_code == 429:
            raise RateLimitError(self.name, "XAI API rate limited")
        if response.status_code == 403:
            raise ProviderError(self.name, "XAI API access forbidden", status_code=403)
        if response.status_code >= 400:
            raise ProviderError(
                self.name,
                f"XAI API error: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )
        data = response.json()
        choice = (data.get("choices") or [{}])[0]
        content = (choice.get("message") or {}).get("content") or ""
        tokens = (data.get("usage") or {}).get("total_tokens")
        return content, choice.get("finish_reason"), tokens

    def _translate_error(self, exc):
        if isinstance(exc, httpx.TimeoutException):
            return ProviderTimeoutError(self.name, str(exc) or "request timed out", original_error=exc)
        if isinstance(exc, httpx.HTTPError):
            return ProviderError(self.name, str(exc), original_error=exc)
        return None


PROVIDER_CLASSES = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "google": GoogleProvider,
    "xai": XAIProvider,
}


def create_provider(name: str) -> ProviderClient:
    try:
        return PROVIDER_CLASSES[name]()
    except KeyError as exc:
        raise ValueError(f"Unknown provider: {name}") from exc


def build_providers(names: List[str]) -> Dict[str, ProviderClient]:
    """Instantiate each named provider that is enabled and has a credential."""
    providers: Dict[str, ProviderClient] = {}
    for name in names:
        if settings.provider_enabled(name):
            providers[name] = create_provider(name)
        else:
            logger.info("Provider %s disabled or missing credentials", name)
    return providers

"""Translation provider abstractions.

Every provider honours one strict contract: given an ordered list of strings
it returns a list of the same length and order, or raises
:class:`TranslationProviderError`. Adapters normalise the response shapes
their models produce before returning.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from .errors import (
    TranslationProviderConfigurationError,
    TranslationProviderError,
)

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_LANGUAGE = "English"
DETECTION_SAMPLE_SIZE = 5
PROPER_NOUN_PATTERN = re.compile(r"^[A-Z][a-z]*(\s[A-Z][a-z]*)*$")
NUMBERED_KEY_PATTERN = re.compile(r"^(?:key_)?(\d+)$")


class TranslationProvider(ABC):
    """Abstract adapter for translation providers."""

    name: str = "provider"

    @abstractmethod
    def translate(
        self,
        strings: Sequence[str],
        *,
        target_language: str,
        source_language: str = DEFAULT_SOURCE_LANGUAGE,
        context: str | None = None,
    ) -> List[str]:
        """Translate ``strings`` and return the results in the same order."""

    def detect_language(self, samples: Sequence[str]) -> str:
        """Name the language of ``samples``; providers without support assume English."""

        return DEFAULT_SOURCE_LANGUAGE

    def is_available(self) -> bool:
        return True

    def validate_response(self, strings: Sequence[str], translations: Any) -> List[str]:
        """Enforce the same-length, non-empty list contract."""

        if not isinstance(translations, list):
            raise TranslationProviderError(
                f"Translation provider returned {type(translations).__name__}, expected a list."
            )
        if len(translations) != len(strings):
            raise TranslationProviderError(
                f"Translation count mismatch: expected {len(strings)}, got {len(translations)}"
            )
        for index, (original, translated) in enumerate(zip(strings, translations)):
            if not isinstance(translated, str) or not translated.strip():
                raise TranslationProviderError(
                    f"Empty translation at index {index}: input was {original!r}"
                )
            likely_name = bool(PROPER_NOUN_PATTERN.match(original))
            single_word = " " not in original
            if not likely_name and not single_word and translated == original:
                logger.warning(
                    "Translation identical to input at index %d: %r", index, original
                )
        return translations


class EchoTranslationProvider(TranslationProvider):
    """A provider that returns the original text (useful for testing)."""

    name = "echo"

    def translate(
        self,
        strings: Sequence[str],
        *,
        target_language: str,
        source_language: str = DEFAULT_SOURCE_LANGUAGE,
        context: str | None = None,
    ) -> List[str]:
        return list(strings)


class OpenAITranslationProvider(TranslationProvider):
    """Translation provider that uses OpenAI chat models."""

    name = "openai"
    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        *,
        model: str | None = None,
        api_key: str | None = None,
        azure: bool = False,
        azure_endpoint: str | None = None,
        azure_api_version: str | None = None,
        azure_deployment: str | None = None,
        base_url: str | None = None,
        debug: bool = False,
    ) -> None:
        self.debug = debug
        self.azure = azure
        self._api_key = api_key
        self._azure_endpoint = azure_endpoint
        self._azure_api_version = azure_api_version
        self._azure_deployment = azure_deployment
        self._base_url = base_url
        self._client, default_model = self._build_client()
        self.model = model or default_model

    def _build_client(self) -> tuple[Any, str]:
        if self.azure:
            return self._build_azure_client()

        return self._build_openai_client()

    def _build_openai_client(self) -> tuple[Any, str]:
        api_key = self._api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise TranslationProviderConfigurationError(
                "OpenAI configuration missing. Set OPENAI_API_KEY or choose a "
                "different provider."
            )
        from openai import OpenAI

        if self._base_url:
            return OpenAI(api_key=api_key, base_url=self._base_url), self.DEFAULT_MODEL
        return OpenAI(api_key=api_key), self.DEFAULT_MODEL

    def _build_azure_client(self) -> tuple[Any, str]:
        api_key = self._api_key or os.getenv("AZURE_OPENAI_API_KEY")
        endpoint = self._azure_endpoint or os.getenv("AZURE_OPENAI_ENDPOINT")
        api_version = self._azure_api_version or os.getenv("AZURE_OPENAI_API_VERSION")
        deployment_name = self._azure_deployment or os.getenv(
            "AZURE_OPENAI_DEPLOYMENT_NAME"
        )

        missing = [
            name
            for name, value in {
                "AZURE_OPENAI_API_KEY": api_key,
                "AZURE_OPENAI_ENDPOINT": endpoint,
                "AZURE_OPENAI_API_VERSION": api_version,
                "AZURE_OPENAI_DEPLOYMENT_NAME": deployment_name,
            }.items()
            if not value
        ]
        if missing:
            raise TranslationProviderConfigurationError(
                "Azure OpenAI configuration incomplete. Please set: "
                + ", ".join(missing)
                + "."
            )

        from openai import AzureOpenAI

        client = AzureOpenAI(
            api_key=api_key,
            api_version=api_version,
            azure_endpoint=endpoint,
        )
        return client, deployment_name  # type: ignore[return-value]

    def _system_prompt(
        self,
        *,
        source_language: str,
        target_language: str,
        context: str | None,
    ) -> str:
        prompt = (
            "You are a professional translator. "
            f"Translate text from {source_language} to {target_language}. "
            'Respond strictly with an object shaped as {"translations": ["..."]} '
            "holding the translated strings in the exact same order as the input. "
            "Keep placeholder patterns such as {{variable}}, {0} and ⟦F0⟧ unchanged. "
            "Do not add commentary. Do not wrap the JSON in markdown code fences."
        )
        if context:
            prompt += f"\n\nAdditional translation context and instructions:\n{context}"
        return prompt

    def translate(
        self,
        strings: Sequence[str],
        *,
        target_language: str,
        source_language: str = DEFAULT_SOURCE_LANGUAGE,
        context: str | None = None,
    ) -> List[str]:
        if not strings:
            return []

        system_prompt = self._system_prompt(
            source_language=source_language,
            target_language=target_language,
            context=context,
        )
        user_payload = {
            "target_language": target_language,
            "source_language": source_language,
            "count": len(strings),
            "strings": list(strings),
        }
        self._log_debug("provider.request.system_prompt", system_prompt)
        self._log_debug("provider.request.payload", user_payload)

        raw_text = self._invoke_model(system_prompt=system_prompt, user_payload=user_payload)
        translations = self._normalise_translations(raw_text)
        self._log_debug("provider.response.translations", translations)
        return self.validate_response(strings, translations)

    def detect_language(self, samples: Sequence[str]) -> str:
        sample = " ".join(samples[:DETECTION_SAMPLE_SIZE])
        if not sample.strip():
            return DEFAULT_SOURCE_LANGUAGE
        try:
            detected = self._complete_text(
                system_prompt=(
                    "Detect the language of the provided text and respond with ONLY "
                    'the language name in English (e.g., "English", "Spanish", "French").'
                ),
                user_text=sample,
            ).strip()
        except TranslationProviderError as exc:
            logger.warning("Language detection failed, assuming English: %s", exc)
            return DEFAULT_SOURCE_LANGUAGE
        return detected or DEFAULT_SOURCE_LANGUAGE

    def is_available(self) -> bool:
        return self._client is not None

    def _invoke_model(self, *, system_prompt: str, user_payload: dict) -> str:
        """Call the OpenAI Responses API and return the raw text output."""

        try:
            response = self._client.responses.create(
                model=self.model,
                input=[
                    {
                        "role": "system",
                        "content": [
                            {"type": "input_text", "text": system_prompt},
                        ],
                    },
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "input_text",
                                "text": json.dumps(user_payload, ensure_ascii=False),
                            }
                        ],
                    },
                ],
            )
        except Exception as exc:  # pragma: no cover - network call
            raise TranslationProviderError(
                f"Translation service temporarily unavailable: {exc}"
            ) from exc
        self._log_debug("provider.response.raw", self._safe_dump_response(response))
        return self._extract_text(response)

    def _complete_text(self, *, system_prompt: str, user_text: str) -> str:
        try:
            response = self._client.responses.create(
                model=self.model,
                input=[
                    {"role": "system", "content": [{"type": "input_text", "text": system_prompt}]},
                    {"role": "user", "content": [{"type": "input_text", "text": user_text}]},
                ],
            )
        except Exception as exc:  # pragma: no cover - network call
            raise TranslationProviderError(str(exc)) from exc
        return self._extract_text(response)

    def _log_debug(self, label: str, payload: Any) -> None:
        """Emit structured debug information when enabled."""

        if not getattr(self, "debug", False):
            return
        try:
            if isinstance(payload, (dict, list)):
                message = json.dumps(payload, ensure_ascii=False, indent=2)
            else:
                message = str(payload)
        except (TypeError, ValueError):
            message = repr(payload)
        print(f"[jsonbabel][provider-debug] {label}:\n{message}", file=sys.stderr)

    def _safe_dump_response(self, response: Any) -> Any:
        """Best-effort conversion of SDK response objects into JSON-friendly data."""

        for attr in ("model_dump_json", "model_dump"):
            candidate = getattr(response, attr, None)
            if candidate:
                try:
                    data = candidate()
                    if isinstance(data, str):
                        return json.loads(data)
                    return data
                except Exception:
                    continue
        return str(response)

    def _strip_code_fence(self, text: str) -> str:
        """Remove leading/trailing markdown code fences if present."""

        stripped = text.strip()
        if not stripped.startswith("```"):
            return stripped

        # Drop opening fence and optional language hint.
        first_newline = stripped.find("\n")
        if first_newline == -1:
            return stripped
        body = stripped[first_newline + 1 :]
        closing_index = body.rfind("```")
        if closing_index != -1:
            body = body[:closing_index]
        return body.strip()

    def _extract_text(self, response: Any) -> str:
        """Pull the text output out of a Responses API result."""

        output_text = getattr(response, "output_text", None)
        if hasattr(output_text, "value"):
            output_text = output_text.value
        if output_text:
            return str(output_text)

        for item in getattr(response, "output", None) or []:
            for part in getattr(item, "content", None) or []:
                text_value = getattr(part, "text", None)
                if hasattr(text_value, "value"):
                    text_value = text_value.value
                if text_value:
                    return str(text_value)

        raise TranslationProviderError(
            "Translation provider response empty or unrecognised."
        )

    def _normalise_translations(self, payload: Any) -> List[Any]:
        """Normalise the shapes models answer with into a plain ordered list.

        Accepted: a JSON array, ``{"translations": [...]}``, a list of
        ``{"translated": ...}`` objects, or a map with numbered keys
        (``"0"``, ``"key_0"``).
        """

        if isinstance(payload, str):
            text = self._strip_code_fence(payload)
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                start, end = text.find("["), text.rfind("]")
                if start == -1 or end <= start:
                    raise TranslationProviderError(
                        "Translation provider returned invalid JSON."
                    )
                try:
                    payload = json.loads(text[start : end + 1])
                except json.JSONDecodeError as exc:
                    raise TranslationProviderError(
                        f"Translation provider returned invalid JSON: {exc}"
                    ) from exc

        if isinstance(payload, dict):
            translations = payload.get("translations")
            if isinstance(translations, (list, dict)):
                return self._normalise_translations(translations)
            numbered = {}
            for key, value in payload.items():
                match = NUMBERED_KEY_PATTERN.match(str(key))
                if match:
                    numbered[int(match.group(1))] = value
            if numbered and sorted(numbered) == list(range(len(numbered))):
                return [numbered[index] for index in range(len(numbered))]
            if len(payload) == 1:
                (only,) = payload.values()
                if isinstance(only, list):
                    return self._normalise_translations(only)

        if isinstance(payload, list):
            items: List[Any] = []
            for item in payload:
                if isinstance(item, dict):
                    item = item.get("translated", item.get("translation", item.get("text")))
                items.append(item)
            return items

        raise TranslationProviderError(
            "Translation provider response malformed: could not find translations list."
        )


class LegacyOpenAITranslationProvider(OpenAITranslationProvider):
    """Translation provider that uses the Chat Completions API for compatibility."""

    name = "legacy-openai"

    def _invoke_model(self, *, system_prompt: str, user_payload: dict) -> str:
        """Call the Chat Completions API and return the message content."""

        return self._chat(
            messages=[
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": json.dumps(user_payload, ensure_ascii=False),
                },
            ],
            json_mode=True,
        )

    def _complete_text(self, *, system_prompt: str, user_text: str) -> str:
        return self._chat(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_text},
            ],
            json_mode=False,
        )

    def _chat(self, *, messages: list[dict[str, str]], json_mode: bool) -> str:
        options: dict[str, Any] = {"model": self.model, "temperature": 0.1, "messages": messages}
        if json_mode:
            options["response_format"] = {"type": "json_object"}
        try:
            response = self._client.chat.completions.create(**options)
        except Exception as exc:  # pragma: no cover - network call
            raise TranslationProviderError(
                f"Translation service temporarily unavailable: {exc}"
            ) from exc
        self._log_debug("provider.response.raw", self._safe_dump_response(response))

        for choice in getattr(response, "choices", None) or []:
            message = getattr(choice, "message", None)
            content = getattr(message, "content", None) if message is not None else None
            if content:
                return str(content)

        raise TranslationProviderError(
            "Translation provider response empty or unrecognised."
        )


class OllamaTranslationProvider(LegacyOpenAITranslationProvider):
    """Local Ollama models through their OpenAI-compatible endpoint."""

    name = "ollama"
    DEFAULT_MODEL = "deepseek-r1:latest"
    DEFAULT_BASE_URL = "http://localhost:11434"

    def __init__(
        self,
        *,
        model: str | None = None,
        base_url: str | None = None,
        debug: bool = False,
    ) -> None:
        root = (base_url or os.getenv("OLLAMA_BASE_URL") or self.DEFAULT_BASE_URL).rstrip("/")
        super().__init__(
            model=model or os.getenv("OLLAMA_MODEL"),
            api_key="ollama",
            base_url=f"{root}/v1",
            debug=debug,
        )

    def is_available(self) -> bool:
        try:
            self._client.models.list()
        except Exception as exc:
            logger.debug("Ollama not reachable: %s", exc)
            return False
        return True


class GeminiTranslationProvider(OpenAITranslationProvider):
    """Google Gemini models through the ``google-genai`` SDK."""

    name = "gemini"
    DEFAULT_MODEL = "gemini-2.5-flash"

    def __init__(
        self,
        *,
        model: str | None = None,
        api_key: str | None = None,
        debug: bool = False,
    ) -> None:
        super().__init__(model=model or os.getenv("GEMINI_MODEL"), api_key=api_key, debug=debug)

    def _build_client(self) -> tuple[Any, str]:
        self._api_key = self._api_key or os.getenv("GEMINI_API_KEY")
        if not self._api_key:
            raise TranslationProviderConfigurationError(
                "Gemini configuration missing. Set GEMINI_API_KEY or choose a "
                "different provider."
            )
        from google import genai

        return genai.Client(api_key=self._api_key), self.DEFAULT_MODEL

    def is_available(self) -> bool:
        return bool(self._api_key)

    def _invoke_model(self, *, system_prompt: str, user_payload: dict) -> str:
        return self._generate(
            system_prompt=system_prompt,
            contents=json.dumps(user_payload, ensure_ascii=False),
            json_mode=True,
        )

    def _complete_text(self, *, system_prompt: str, user_text: str) -> str:
        return self._generate(system_prompt=system_prompt, contents=user_text, json_mode=False)

    def _generate(self, *, system_prompt: str, contents: str, json_mode: bool) -> str:
        from google.genai import types

        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=0.1,
            response_mime_type="application/json" if json_mode else None,
        )
        try:
            response = self._client.models.generate_content(
                model=self.model,
                contents=contents,
                config=config,
            )
        except Exception as exc:  # pragma: no cover - network call
            raise TranslationProviderError(
                f"Translation service temporarily unavailable: {exc}"
            ) from exc
        self._log_debug("provider.response.raw", self._safe_dump_response(response))

        text = getattr(response, "text", None)
        if not text:
            raise TranslationProviderError(
                "Translation provider response empty or unrecognised."
            )
        return str(text)


PROVIDER_ALIASES = {
    "openai": {"openai", "gpt", "default"},
    "azure_openai": {"azure_openai", "azure-openai", "azure_open_ai", "azureopenai", "azure"},
    "legacy_openai": {"legacy-openai", "legacy_openai", "legacy", "openai-legacy"},
    "ollama": {"ollama", "local"},
    "gemini": {"gemini", "google", "google-gemini"},
    "echo": {"echo", "noop", "mock"},
}


def normalise_provider_name(name: str | None) -> str:
    normalized = (name or "openai").strip().lower()
    for canonical, aliases in PROVIDER_ALIASES.items():
        if normalized in aliases:
            return canonical
    raise TranslationProviderConfigurationError(
        f"Unknown translation provider '{name}'."
    )


def build_provider(
    name: str | None,
    *,
    model: str | None = None,
    settings: Optional[Any] = None,
    debug: bool = False,
) -> TranslationProvider:
    """Factory to create providers by name, reading credentials from ``settings``."""

    canonical = normalise_provider_name(name)

    def option(key: str) -> Any:
        return getattr(settings, key, None)

    if canonical == "echo":
        return EchoTranslationProvider()
    if canonical == "ollama":
        return OllamaTranslationProvider(
            model=model or option("OLLAMA_MODEL"),
            base_url=option("OLLAMA_BASE_URL"),
            debug=debug,
        )
    if canonical == "gemini":
        return GeminiTranslationProvider(
            model=model or option("GEMINI_MODEL"),
            api_key=option("GEMINI_API_KEY"),
            debug=debug,
        )
    if canonical == "azure_openai":
        return OpenAITranslationProvider(
            model=model,
            api_key=option("AZURE_OPENAI_API_KEY"),
            azure=True,
            azure_endpoint=option("AZURE_OPENAI_ENDPOINT"),
            azure_api_version=option("AZURE_OPENAI_API_VERSION"),
            azure_deployment=option("AZURE_OPENAI_DEPLOYMENT_NAME"),
            debug=debug,
        )

    provider_cls = (
        LegacyOpenAITranslationProvider
        if canonical == "legacy_openai"
        else OpenAITranslationProvider
    )
    return provider_cls(
        model=model or option("OPENAI_MODEL"),
        api_key=option("OPENAI_API_KEY"),
        debug=debug,
    )

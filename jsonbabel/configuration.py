"""Settings for jsonbabel, layered with Prepper.

Sources, lowest precedence first: YAML files found by Prepper's discovery
rules for the ``jsonbabel`` app name, an explicit YAML file named by
``JSONBABEL_CONFIG``, a ``.env`` file in the working directory and finally the
process environment. Only keys declared on :class:`JsonBabelConfig` are taken
from the environment layers.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterator, Literal, Mapping, Sequence, Tuple

from dotenv import dotenv_values
from prepper import (
    Field,
    IoError,
    SchemaError,
    SchemaModel,
    ValidationError,
    model_validator,
)
from prepper.config import ConfigInstance
from prepper.loaders import _parse_file, _path_to_source, discover_file_paths
from prepper.merge import merge_layer
from prepper.provenance import ProvenanceRecorder

from .errors import TranslationProviderConfigurationError
from .providers import normalise_provider_name

logger = logging.getLogger(__name__)

APP_NAME = "jsonbabel"
CONFIG_FILE_VARIABLE = "JSONBABEL_CONFIG"
DEFAULT_CACHE_FILE = "~/.cache/jsonbabel/translation-cache.json"
DEFAULT_PROVIDER = "openai"

ProviderName = Literal["openai", "azure_openai", "legacy_openai", "ollama", "gemini", "echo"]


class JsonBabelConfig(SchemaModel):
    """Every setting jsonbabel reads, with its default."""

    LLM_PROVIDER: ProviderName = Field(
        default=DEFAULT_PROVIDER,
        description="Translation backend used when --provider is not given.",
    )
    OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    OPENAI_MODEL: str | None = Field(default=None)
    AZURE_OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    AZURE_OPENAI_ENDPOINT: str | None = Field(default=None)
    AZURE_OPENAI_API_VERSION: str | None = Field(default=None)
    AZURE_OPENAI_DEPLOYMENT_NAME: str | None = Field(default=None)
    OLLAMA_BASE_URL: str = Field(default="http://localhost:11434")
    OLLAMA_MODEL: str = Field(default="deepseek-r1:latest")
    GEMINI_API_KEY: str | None = Field(default=None, secret=True)
    GEMINI_MODEL: str | None = Field(default=None)
    JSONBABEL_CACHE_FILE: str = Field(
        default=DEFAULT_CACHE_FILE,
        description="Location of the persisted translation cache.",
    )
    JSONBABEL_MAX_BATCH_SIZE: int = Field(
        default=100,
        description="Most strings sent to the backend in one request.",
    )
    JSONBABEL_MAX_WORKERS: int = Field(default=4)
    JSONBABEL_LANGUAGE_WORKERS: int = Field(default=1)
    JSONBABEL_PROVIDER_DEBUG: bool = Field(default=False)

    @model_validator(mode="before")
    def _canonical_provider(data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        raw = data.get("LLM_PROVIDER")
        if isinstance(raw, str):
            try:
                data["LLM_PROVIDER"] = normalise_provider_name(raw)
            except TranslationProviderConfigurationError:
                logger.warning(
                    "Unknown LLM_PROVIDER %r, falling back to %s.", raw, DEFAULT_PROVIDER
                )
                data["LLM_PROVIDER"] = DEFAULT_PROVIDER
        return data


def _yaml_files(app_dir: Path) -> Iterator[Tuple[Path, str]]:
    yield from discover_file_paths(APP_NAME, "yaml", app_dir=app_dir, extra_paths=None)
    explicit = os.environ.get(CONFIG_FILE_VARIABLE)
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise IoError(f"{CONFIG_FILE_VARIABLE} points to a missing file: {path}")
        yield path, CONFIG_FILE_VARIABLE


def _environment_layers(app_dir: Path) -> Iterator[Tuple[str, Mapping[str, str]]]:
    dotenv_path = app_dir / ".env"
    if dotenv_path.is_file():
        yield ".env", {
            key: value for key, value in dotenv_values(dotenv_path).items() if value is not None
        }
    yield "process", dict(os.environ)


def _collect_layers(app_dir: Path, provenance: ProvenanceRecorder) -> dict[str, Any]:
    combined: dict[str, Any] = {}

    for path, label in _yaml_files(app_dir):
        parsed = _parse_file(path, "yaml")
        if not isinstance(parsed, Mapping):
            raise IoError(f"{path} must contain a mapping at the top level.")
        merge_layer(
            combined,
            parsed,
            provenance=provenance,
            source=_path_to_source(label, "yaml", path),
            layer="file",
        )

    known = set(JsonBabelConfig.__field_infos__)
    for origin, values in _environment_layers(app_dir):
        for key in sorted(known.intersection(values)):
            merge_layer(
                combined,
                {key: values[key]},
                provenance=provenance,
                source=f"env:{origin}:{key}",
                layer="env",
            )
    return combined


def _describe_issues(entries: Sequence[dict[str, Any]]) -> str:
    lines = ["Invalid jsonbabel configuration:"]
    for entry in entries:
        location = entry.get("path") or ""
        if isinstance(location, (list, tuple)):
            location = ".".join(str(part) for part in location if part not in (None, ""))
        message = entry.get("message") or entry.get("msg") or "invalid value"
        line = f"- {location}: {message}" if location else f"- {message}"
        if entry.get("source"):
            line += f" (from {entry['source']})"
        lines.append(line)
    return "\n".join(lines)


@lru_cache(maxsize=4)
def _load_config_instance(app_dir: Path | None = None) -> ConfigInstance:
    base_dir = app_dir or Path.cwd()
    provenance = ProvenanceRecorder()
    try:
        combined = _collect_layers(base_dir, provenance)
        model = JsonBabelConfig.validate(combined, provenance=provenance)
    except IoError as exc:
        raise TranslationProviderConfigurationError(
            f"Configuration files could not be read: {exc}"
        ) from exc
    except SchemaError as exc:
        raise TranslationProviderConfigurationError(
            f"Configuration schema error: {exc}"
        ) from exc
    except ValidationError as exc:
        raise TranslationProviderConfigurationError(
            _describe_issues(exc.to_dict())
        ) from exc
    return ConfigInstance(
        model=model,
        provenance=provenance,
        env_prefix=None,
        schema_cls=JsonBabelConfig,
    )


def validate_provider_settings(settings: JsonBabelConfig, provider: str) -> None:
    """Raise if the credentials ``provider`` needs are not configured."""

    required: dict[str, list[str]] = {
        "openai": ["OPENAI_API_KEY"],
        "legacy_openai": ["OPENAI_API_KEY"],
        "azure_openai": [
            "AZURE_OPENAI_API_KEY",
            "AZURE_OPENAI_ENDPOINT",
            "AZURE_OPENAI_API_VERSION",
            "AZURE_OPENAI_DEPLOYMENT_NAME",
        ],
        "gemini": ["GEMINI_API_KEY"],
    }
    missing = [name for name in required.get(provider, []) if not getattr(settings, name, None)]
    if missing:
        raise TranslationProviderConfigurationError(
            f"Provider '{provider}' needs the following settings: "
            + ", ".join(missing)
            + ". Set them in the environment, a .env file or a jsonbabel YAML file."
        )


def cache_path(settings: JsonBabelConfig) -> Path:
    return Path(settings.JSONBABEL_CACHE_FILE).expanduser()


def get_config(app_dir: Path | None = None) -> ConfigInstance:
    return _load_config_instance(app_dir=app_dir)


def get_settings(app_dir: Path | None = None) -> JsonBabelConfig:
    """Validated settings for ``app_dir`` (the working directory by default)."""

    return get_config(app_dir=app_dir).model()

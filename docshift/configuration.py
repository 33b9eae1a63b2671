"""Layered settings for Docshift.

Sources are merged in increasing priority: YAML files discovered by prepper
(home directory, then the working directory), an explicit YAML file given on
the command line, a local ``.env`` file, and finally the process environment. Only keys declared on
:class:`DocshiftConfig` are taken from the environment layers.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterator, Literal, Mapping, Tuple

from dotenv import dotenv_values
from prepper import (
    ConfigNotFound,
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

from .errors import ProviderConfigurationError

APP_NAME = "Docshift"
DEFAULT_STYLE = "tech-ja-keitei"

LLM_PROVIDER_SYNONYMS = {
    "azure": "azure_openai",
    "azure_open_ai": "azure_openai",
    "azureopenai": "azure_openai",
    "open_ai": "openai",
}

# Settings that must be non-empty, keyed by backend.
REQUIRED_SETTINGS: Dict[str, Tuple[str, ...]] = {
    "deepl": ("DEEPL_API_KEY",),
    "openai": ("OPENAI_API_KEY",),
    "azure_openai": (
        "AZURE_OPENAI_API_KEY",
        "AZURE_OPENAI_ENDPOINT",
        "AZURE_OPENAI_API_VERSION",
        "AZURE_OPENAI_DEPLOYMENT_NAME",
    ),
}

Layer = Tuple[Mapping[str, Any], str, str]


class DocshiftConfig(SchemaModel):
    """Every setting Docshift reads, with defaults."""

    LLM_PROVIDER: Literal["azure_openai", "openai"] = Field(
        default="openai",
        description="Which OpenAI endpoint the OpenAI providers talk to.",
    )
    OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    OPENAI_MODEL: str | None = Field(
        default=None,
        description="Model used by the OpenAI providers when -m is not given.",
    )
    AZURE_OPENAI_API_KEY: str | None = Field(default=None, secret=True)
    AZURE_OPENAI_ENDPOINT: str | None = Field(default=None)
    AZURE_OPENAI_API_VERSION: str | None = Field(default=None)
    AZURE_OPENAI_DEPLOYMENT_NAME: str | None = Field(default=None)
    DEEPL_API_KEY: str | None = Field(default=None, secret=True)
    DEEPL_SERVER_URL: str | None = Field(
        default=None,
        description="Override for the DeepL API host.",
    )
    DOCSHIFT_STYLE: str = Field(
        default=DEFAULT_STYLE,
        description="Translation style identifier passed to providers.",
    )
    DOCSHIFT_MAX_WORKERS: int = Field(
        default=4,
        description="Maximum number of batches in flight at once.",
    )
    DOCSHIFT_PROVIDER_DEBUG: bool = Field(default=False)

    @model_validator(mode="before")
    def _normalise_llm_provider(data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        value = data.get("LLM_PROVIDER")
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_").replace(" ", "_")
            key = LLM_PROVIDER_SYNONYMS.get(key, key)
            data["LLM_PROVIDER"] = key if key in {"openai", "azure_openai"} else "openai"
        return data


def _yaml_layers(app_dir: Path) -> Iterator[Layer]:
    for path, label in discover_file_paths(
        APP_NAME, "yaml", app_dir=app_dir, extra_paths=None
    ):
        parsed = _parse_file(path, "yaml")
        if not isinstance(parsed, Mapping):
            raise IoError(f"{path} must contain a mapping at the top level.")
        yield parsed, _path_to_source(label, "yaml", path), "file"


def _explicit_layer(config_path: Path) -> Iterator[Layer]:
    if not config_path.is_file():
        raise ProviderConfigurationError(f"Configuration file not found: {config_path}")
    parsed = _parse_file(config_path, "yaml")
    if not isinstance(parsed, Mapping):
        raise IoError(f"{config_path} must contain a mapping at the top level.")
    yield parsed, f"file:{config_path}", "file"


def _env_layers(app_dir: Path, allowed: frozenset) -> Iterator[Layer]:
    sources = []
    dotenv_path = app_dir / ".env"
    if dotenv_path.exists():
        sources.append((".env", dotenv_values(dotenv_path)))
    sources.append(("process", dict(os.environ)))

    for origin, values in sources:
        for key in sorted(allowed & set(values)):
            value = values[key]
            if isinstance(value, str):
                yield {key: value}, f"env:{origin}:{key}", "env"


def _describe(exc: Exception) -> str:
    if isinstance(exc, ConfigNotFound):
        return (
            "No configuration sources were found. Provide settings via a home "
            "YAML file, a local config.yaml, a .env file, or environment variables."
        )
    if isinstance(exc, IoError):
        return f"Configuration files could not be read: {exc}"
    if isinstance(exc, SchemaError):
        return f"Configuration schema error: {exc}"
    if isinstance(exc, ValidationError):
        return _bullets(_validation_issue(entry) for entry in exc.to_dict())
    return str(exc)


def _validation_issue(entry: Mapping[str, Any]) -> str:
    path = entry.get("path") or ()
    if isinstance(path, (list, tuple)):
        where = ".".join(str(step) for step in path if step not in (None, ""))
    else:
        where = str(path)
    text = str(entry.get("message") or entry.get("msg") or "Invalid value")
    if where:
        text = f"{where}: {text}"
    source = entry.get("source")
    return f"{text} (source: {source})" if source else text


def _bullets(issues) -> str:
    return "Configuration validation errors detected:\n" + "\n".join(
        f"- {issue}" for issue in issues
    )


@lru_cache(maxsize=1)
def _load_config_instance(
    app_dir: Path | None = None, config_path: Path | None = None
) -> ConfigInstance:
    """Merge every configuration layer once and cache the result."""

    base_dir = app_dir or Path.cwd()
    allowed = frozenset(DocshiftConfig.__field_infos__)
    provenance = ProvenanceRecorder()
    combined: Dict[str, Any] = {}
    try:
        for values, source, layer in _yaml_layers(base_dir):
            merge_layer(combined, values, provenance=provenance, source=source, layer=layer)
        if config_path is not None:
            for values, source, layer in _explicit_layer(config_path):
                merge_layer(
                    combined, values, provenance=provenance, source=source, layer=layer
                )
        for values, source, layer in _env_layers(base_dir, allowed):
            merge_layer(combined, values, provenance=provenance, source=source, layer=layer)
        if not combined:
            raise ConfigNotFound("No configuration sources were found.")

        return ConfigInstance(
            model=DocshiftConfig.validate(combined, provenance=provenance),
            provenance=provenance,
            env_prefix=None,
            schema_cls=DocshiftConfig,
        )
    except (ConfigNotFound, IoError, SchemaError, ValidationError) as exc:
        raise ProviderConfigurationError(_describe(exc)) from exc


def validate_provider_settings(settings: DocshiftConfig, provider: str) -> None:
    """Raise when credentials for ``provider`` are missing.

    The OpenAI providers use whichever endpoint ``LLM_PROVIDER`` selects.
    """

    backend = "deepl" if provider == "deepl" else settings.LLM_PROVIDER
    missing = [
        name for name in REQUIRED_SETTINGS.get(backend, ()) if not getattr(settings, name)
    ]
    if missing:
        raise ProviderConfigurationError(
            _bullets(
                f"{name} is required for the '{backend}' backend." for name in missing
            )
        )


def get_config(
    app_dir: Path | None = None, config_path: Path | None = None
) -> ConfigInstance:
    return _load_config_instance(app_dir=app_dir, config_path=config_path)


def get_settings(
    app_dir: Path | None = None, config_path: Path | None = None
) -> DocshiftConfig:
    """Return the validated settings model."""

    return get_config(app_dir=app_dir, config_path=config_path).model()

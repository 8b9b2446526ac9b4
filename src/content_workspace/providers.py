from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union


class ProviderId(str, Enum):
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    XAI = "xai"
    DEEPSEEK = "deepseek"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


class EmbeddingProviderId(str, Enum):
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    DEEPSEEK = "deepseek"
    OLLAMA = "ollama"
    CUSTOM = "custom"


@dataclass(frozen=True)
class ModelOption:
    id: str
    label: str
    description: Optional[str] = None


@dataclass(frozen=True)
class ProviderConfig:
    id: ProviderId
    label: str
    requires_api_key: bool
    default_model: str
    fallback_models: Tuple[ModelOption, ...]
    endpoint: str
    env_key: Optional[str] = None
    docs_url: str = ""
    extra_headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class EmbeddingProviderConfig:
    id: EmbeddingProviderId
    label: str
    requires_api_key: bool
    default_model: str
    default_endpoint: str = ""


ANTHROPIC_API_VERSION = "2023-06-01"
OPENROUTER_DEFAULT_REFERRER = "https://local.app"
OPENROUTER_APP_TITLE = "AI Content Suite"
DEFAULT_PROVIDER = ProviderId.OPENAI


def _models(*ids: str) -> Tuple[ModelOption, ...]:
    return tuple(ModelOption(id=model_id, label=model_id) for model_id in ids)


PROVIDER_CATALOG: Dict[ProviderId, ProviderConfig] = {
    ProviderId.OPENAI: ProviderConfig(
        id=ProviderId.OPENAI,
        label="OpenAI",
        requires_api_key=True,
        default_model="gpt-4o-mini",
        fallback_models=_models("gpt-4o", "gpt-4o-mini", "o1-mini"),
        endpoint="https://api.openai.com/v1/chat/completions",
        env_key="OPENAI_API_KEY",
        docs_url="https://platform.openai.com/docs/models",
    ),
    ProviderId.OPENROUTER: ProviderConfig(
        id=ProviderId.OPENROUTER,
        label="OpenRouter",
        requires_api_key=True,
        default_model="openrouter/auto",
        fallback_models=_models("openrouter/auto", "anthropic/claude-3.5-sonnet", "google/gemini-pro"),
        endpoint="https://openrouter.ai/api/v1/chat/completions",
        env_key="OPENROUTER_API_KEY",
        docs_url="https://openrouter.ai/docs",
        extra_headers={"HTTP-Referer": OPENROUTER_DEFAULT_REFERRER, "X-Title": OPENROUTER_APP_TITLE},
    ),
    ProviderId.XAI: ProviderConfig(
        id=ProviderId.XAI,
        label="xAI (Grok)",
        requires_api_key=True,
        default_model="grok-beta",
        fallback_models=_models("grok-beta", "grok-vision-beta"),
        endpoint="https://api.x.ai/v1/chat/completions",
        env_key="XAI_API_KEY",
        docs_url="https://docs.x.ai",
    ),
    ProviderId.DEEPSEEK: ProviderConfig(
        id=ProviderId.DEEPSEEK,
        label="DeepSeek",
        requires_api_key=True,
        default_model="deepseek-chat",
        fallback_models=_models("deepseek-chat", "deepseek-coder"),
        endpoint="https://api.deepseek.com/chat/completions",
        env_key="DEEPSEEK_API_KEY",
        docs_url="https://platform.deepseek.com/docs",
    ),
    ProviderId.ANTHROPIC: ProviderConfig(
        id=ProviderId.ANTHROPIC,
        label="Anthropic Claude",
        requires_api_key=True,
        default_model="claude-3-5-sonnet-latest",
        fallback_models=_models("claude-3-5-sonnet-latest", "claude-3-opus-latest"),
        endpoint="https://api.anthropic.com/v1/messages",
        env_key="ANTHROPIC_API_KEY",
        docs_url="https://docs.anthropic.com",
        extra_headers={"anthropic-version": ANTHROPIC_API_VERSION},
    ),
    ProviderId.OLLAMA: ProviderConfig(
        id=ProviderId.OLLAMA,
        label="Ollama (Local)",
        requires_api_key=False,
        default_model="llama3.1:8b",
        fallback_models=_models("llama3.1:8b", "llama3.1:70b", "qwen2.5:14b"),
        endpoint="http://127.0.0.1:11434/api/chat",
        docs_url="https://github.com/ollama/ollama",
    ),
}

EMBEDDING_CATALOG: Dict[EmbeddingProviderId, EmbeddingProviderConfig] = {
    EmbeddingProviderId.OPENAI: EmbeddingProviderConfig(
        EmbeddingProviderId.OPENAI, "OpenAI", True, "text-embedding-3-small",
        "https://api.openai.com/v1/embeddings",
    ),
    EmbeddingProviderId.OPENROUTER: EmbeddingProviderConfig(
        EmbeddingProviderId.OPENROUTER, "OpenRouter", True, "text-embedding-3-small",
        "https://openrouter.ai/api/v1/embeddings",
    ),
    EmbeddingProviderId.DEEPSEEK: EmbeddingProviderConfig(
        EmbeddingProviderId.DEEPSEEK, "DeepSeek", True, "deepseek-embedding",
        "https://api.deepseek.com/v1/embeddings",
    ),
    EmbeddingProviderId.OLLAMA: EmbeddingProviderConfig(
        EmbeddingProviderId.OLLAMA, "Ollama (Local)", False, "nomic-embed-text",
        "http://localhost:11434/api/embeddings",
    ),
    EmbeddingProviderId.CUSTOM: EmbeddingProviderConfig(
        EmbeddingProviderId.CUSTOM, "Custom Endpoint", False, "",
    ),
}

# User-registered model listings, keyed by provider. Falls back to the catalog list.
_REGISTERED_MODELS: Dict[ProviderId, Tuple[ModelOption, ...]] = {}


def coerce_provider_id(provider: Union[ProviderId, str, None]) -> Optional[ProviderId]:
    if isinstance(provider, ProviderId):
        return provider
    try:
        return ProviderId(str(provider))
    except ValueError:
        return None


def get_provider_config(provider: Union[ProviderId, str]) -> ProviderConfig:
    provider_id = coerce_provider_id(provider)
    if provider_id is None:
        raise ValueError(f"Unknown provider: {provider}")
    return PROVIDER_CATALOG[provider_id]


def get_provider_label(provider: Union[ProviderId, str]) -> str:
    provider_id = coerce_provider_id(provider)
    if provider_id is None:
        return str(provider)
    return PROVIDER_CATALOG[provider_id].label


def requires_api_key(provider: Union[ProviderId, str]) -> bool:
    provider_id = coerce_provider_id(provider)
    if provider_id is None:
        return True
    return PROVIDER_CATALOG[provider_id].requires_api_key


def get_default_model(provider: Union[ProviderId, str]) -> str:
    provider_id = coerce_provider_id(provider)
    if provider_id is None:
        return ""
    return PROVIDER_CATALOG[provider_id].default_model


def sanitize_model_options(models: Iterable[Any]) -> List[ModelOption]:
    seen: Dict[str, ModelOption] = {}
    for raw in models or []:
        option = _normalize_model_option(raw)
        if option is not None and option.id not in seen:
            seen[option.id] = option
    return sorted(seen.values(), key=lambda option: option.label.casefold())


def register_provider_models(provider: Union[ProviderId, str], models: Iterable[Any]) -> List[ModelOption]:
    provider_id = coerce_provider_id(provider)
    if provider_id is None:
        raise ValueError(f"Unknown provider: {provider}")
    sanitized = sanitize_model_options(models)
    if sanitized:
        _REGISTERED_MODELS[provider_id] = tuple(sanitized)
    else:
        _REGISTERED_MODELS.pop(provider_id, None)
    return sanitized


def clear_registered_models() -> None:
    _REGISTERED_MODELS.clear()


def list_provider_models(provider: Union[ProviderId, str]) -> List[ModelOption]:
    provider_id = coerce_provider_id(provider)
    if provider_id is None:
        return []
    registered = _REGISTERED_MODELS.get(provider_id)
    if registered:
        return list(registered)
    return list(PROVIDER_CATALOG[provider_id].fallback_models)


def _normalize_model_option(raw: Any) -> Optional[ModelOption]:
    if isinstance(raw, ModelOption):
        raw = {"id": raw.id, "label": raw.label, "description": raw.description}
    elif isinstance(raw, str):
        raw = {"id": raw}
    if not isinstance(raw, dict):
        return None

    model_id = raw.get("id")
    if not isinstance(model_id, str) or not model_id.strip():
        return None
    model_id = model_id.strip()

    label = raw.get("label")
    label = label.strip() if isinstance(label, str) and label.strip() else model_id
    description = raw.get("description")
    description = description.strip() if isinstance(description, str) and description.strip() else None
    return ModelOption(id=model_id, label=label, description=description)

from dataclasses import dataclass, field
from typing import Dict, Optional

from .modes import Mode
from .providers import DEFAULT_PROVIDER, EmbeddingProviderId, ProviderId

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_OUTPUT_TOKENS = 1024
DEFAULT_REASONING_EFFORT = "medium"
DEFAULT_TOP_K = 5
MAX_TOP_K = 20


@dataclass(frozen=True)
class FeatureModelPreference:
    provider: Optional[ProviderId] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class ProviderSettings:
    selected_provider: ProviderId = DEFAULT_PROVIDER
    selected_model: str = ""
    api_keys: Dict[ProviderId, str] = field(default_factory=dict)
    feature_model_preferences: Dict[Mode, FeatureModelPreference] = field(default_factory=dict)
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS


@dataclass(frozen=True)
class EmbeddingSettings:
    provider: EmbeddingProviderId = EmbeddingProviderId.OPENAI
    model: str = "text-embedding-3-small"
    api_key: str = ""
    base_url: str = ""


@dataclass(frozen=True)
class VectorStoreSettings:
    enabled: bool = False
    url: str = ""
    collection: str = ""
    api_key: str = ""
    top_k: int = DEFAULT_TOP_K
    embedding: EmbeddingSettings = field(default_factory=EmbeddingSettings)


@dataclass(frozen=True)
class ChatSettings:
    system_instruction: str = "You are a helpful assistant."
    temperature: float = DEFAULT_TEMPERATURE
    vector_store: VectorStoreSettings = field(default_factory=VectorStoreSettings)


@dataclass(frozen=True)
class GenerationConfig:
    temperature: float = DEFAULT_TEMPERATURE
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    reasoning_effort: str = DEFAULT_REASONING_EFFORT


def clamp_top_k(value: object) -> int:
    try:
        top_k = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_TOP_K
    return max(1, min(MAX_TOP_K, top_k))

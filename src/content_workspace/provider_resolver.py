from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from .modes import Mode, coerce_mode
from .providers import (
    ProviderId,
    coerce_provider_id,
    get_default_model,
    get_provider_label,
    requires_api_key,
)
from .settings import FeatureModelPreference, ProviderSettings


@dataclass(frozen=True)
class ResolvedProvider:
    provider_id: ProviderId
    model: str
    requires_credential: bool
    label: str


def resolve_provider(mode: Union[Mode, str], settings: ProviderSettings) -> ResolvedProvider:
    """Pick the effective provider and model for a mode.

    The per-mode override wins over the global selection. A model falls back
    through override, global selection and catalog default, each trimmed.
    """
    resolved_mode = coerce_mode(mode)
    preference = settings.feature_model_preferences.get(resolved_mode)

    provider_id = settings.selected_provider
    if preference is not None and preference.provider is not None:
        provider_id = preference.provider

    override_model = (preference.model or "").strip() if preference is not None else ""
    global_model = (settings.selected_model or "").strip()
    model = override_model or global_model or get_default_model(provider_id) or ""

    return ResolvedProvider(
        provider_id=provider_id,
        model=model,
        requires_credential=requires_api_key(provider_id),
        label=get_provider_label(provider_id),
    )


def get_api_key(settings: ProviderSettings, provider_id: ProviderId) -> str:
    return (settings.api_keys.get(provider_id) or "").strip()


def has_credential(settings: ProviderSettings, provider_id: ProviderId) -> bool:
    return bool(get_api_key(settings, provider_id))


def missing_credential_message(label: str) -> str:
    return f"{label} requires an API key. Please add it in settings before starting a chat."


def sanitize_feature_model_preferences(raw: Any) -> Dict[Mode, FeatureModelPreference]:
    if not isinstance(raw, Mapping):
        return {}

    sanitized: Dict[Mode, FeatureModelPreference] = {}
    for raw_mode, raw_preference in raw.items():
        try:
            mode = coerce_mode(raw_mode)
        except ValueError:
            continue
        preference = _sanitize_preference(raw_preference)
        if preference is not None:
            sanitized[mode] = preference
    return sanitized


def _sanitize_preference(raw: Any) -> Optional[FeatureModelPreference]:
    if isinstance(raw, FeatureModelPreference):
        raw = {"provider": raw.provider, "model": raw.model}
    if not isinstance(raw, Mapping):
        return None

    provider = None
    if raw.get("provider") is not None:
        provider = coerce_provider_id(raw.get("provider"))
        if provider is None:
            return None

    model = raw.get("model")
    model = model.strip() if isinstance(model, str) and model.strip() else None

    if provider is None and model is None:
        return None
    return FeatureModelPreference(provider=provider, model=model)

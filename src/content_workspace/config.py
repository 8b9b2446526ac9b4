import os
from pathlib import Path
from typing import Dict, Optional

from .providers import DEFAULT_PROVIDER, PROVIDER_CATALOG, ProviderId, coerce_provider_id
from .settings import DEFAULT_MAX_OUTPUT_TOKENS, ProviderSettings

DEFAULT_DATA_DIR = ".workspace_data"


def env_api_keys() -> Dict[ProviderId, str]:
    keys: Dict[ProviderId, str] = {}
    for provider_id, config in PROVIDER_CATALOG.items():
        if not config.env_key:
            continue
        value = os.getenv(config.env_key, "").strip()
        if value:
            keys[provider_id] = value
    return keys


def provider_settings_from_env() -> ProviderSettings:
    provider = coerce_provider_id(os.getenv("WORKSPACE_PROVIDER", DEFAULT_PROVIDER.value)) or DEFAULT_PROVIDER
    return ProviderSettings(
        selected_provider=provider,
        selected_model=os.getenv("WORKSPACE_MODEL", "").strip(),
        api_keys=env_api_keys(),
        max_output_tokens=_env_int("WORKSPACE_MAX_OUTPUT_TOKENS", DEFAULT_MAX_OUTPUT_TOKENS),
    )


def data_dir(root: Optional[Path] = None) -> Path:
    configured = os.getenv("WORKSPACE_DATA_DIR", "").strip()
    if configured:
        return Path(configured)
    return Path(root or Path.cwd()) / DEFAULT_DATA_DIR


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default

import json
import logging
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .providers import DEFAULT_PROVIDER, EmbeddingProviderId, ProviderId, coerce_provider_id, get_default_model
from .provider_resolver import sanitize_feature_model_preferences
from .settings import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_TEMPERATURE,
    ChatSettings,
    EmbeddingSettings,
    ProviderSettings,
    VectorStoreSettings,
    clamp_top_k,
)

logger = logging.getLogger(__name__)

SavedPrompt = Dict[str, str]


class WorkspaceSettingsRepository:
    """JSON-file persistence for settings, prompt presets and the session snapshot."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._provider_file = self.base_dir / "provider_settings.json"
        self._chat_file = self.base_dir / "chat_settings.json"
        self._prompts_file = self.base_dir / "saved_prompts.json"
        self._snapshot_file = self.base_dir / "session_snapshot.json"

    def load_provider_settings(self, fallback: Optional[ProviderSettings] = None) -> ProviderSettings:
        fallback = fallback or ProviderSettings()
        raw = self._read_json(self._provider_file)
        if not isinstance(raw, dict):
            return fallback

        provider = coerce_provider_id(raw.get("selected_provider")) or fallback.selected_provider or DEFAULT_PROVIDER
        model = str(raw.get("selected_model") or "").strip() or get_default_model(provider)

        api_keys: Dict[ProviderId, str] = dict(fallback.api_keys)
        raw_keys = raw.get("api_keys")
        if isinstance(raw_keys, dict):
            for raw_provider, raw_key in raw_keys.items():
                provider_id = coerce_provider_id(raw_provider)
                if provider_id is not None and isinstance(raw_key, str) and raw_key.strip():
                    api_keys[provider_id] = raw_key.strip()

        max_tokens = raw.get("max_output_tokens")
        if not isinstance(max_tokens, int) or max_tokens <= 0:
            max_tokens = fallback.max_output_tokens or DEFAULT_MAX_OUTPUT_TOKENS

        return ProviderSettings(
            selected_provider=provider,
            selected_model=model,
            api_keys=api_keys,
            feature_model_preferences=sanitize_feature_model_preferences(raw.get("feature_model_preferences")),
            max_output_tokens=max_tokens,
        )

    def save_provider_settings(self, settings: ProviderSettings) -> None:
        self._write_json(
            self._provider_file,
            {
                "selected_provider": settings.selected_provider.value,
                "selected_model": settings.selected_model,
                "api_keys": {provider.value: key for provider, key in settings.api_keys.items() if key},
                "feature_model_preferences": {
                    mode.value: {
                        "provider": preference.provider.value if preference.provider else None,
                        "model": preference.model,
                    }
                    for mode, preference in settings.feature_model_preferences.items()
                },
                "max_output_tokens": settings.max_output_tokens,
            },
        )

    def load_chat_settings(self) -> ChatSettings:
        defaults = ChatSettings()
        raw = self._read_json(self._chat_file)
        if not isinstance(raw, dict):
            return defaults

        instruction = raw.get("system_instruction")
        temperature = raw.get("temperature")
        return ChatSettings(
            system_instruction=instruction if isinstance(instruction, str) else defaults.system_instruction,
            temperature=float(temperature) if isinstance(temperature, (int, float)) else DEFAULT_TEMPERATURE,
            vector_store=_vector_store_from_dict(raw.get("vector_store"), defaults.vector_store),
        )

    def save_chat_settings(self, settings: ChatSettings) -> None:
        payload = asdict(settings)
        payload["vector_store"]["embedding"]["provider"] = settings.vector_store.embedding.provider.value
        self._write_json(self._chat_file, payload)

    def list_saved_prompts(self) -> List[SavedPrompt]:
        raw = self._read_json(self._prompts_file)
        if not isinstance(raw, list):
            return []
        prompts = [item for item in raw if isinstance(item, dict) and item.get("name")]
        prompts.sort(key=lambda item: str(item.get("name", "")).casefold())
        return prompts

    def save_prompt(self, name: str, content: str) -> SavedPrompt:
        name = name.strip()
        if not name:
            raise ValueError("Prompt name is required.")
        prompts = [p for p in self.list_saved_prompts() if p.get("name") != name]
        record = {"id": _new_id("p"), "name": name, "content": content, "updated_at": _now_utc_iso()}
        prompts.append(record)
        self._write_json(self._prompts_file, prompts)
        return dict(record)

    def delete_prompt(self, name: str) -> bool:
        prompts = self.list_saved_prompts()
        kept = [p for p in prompts if p.get("name") != name]
        if len(kept) == len(prompts):
            return False
        self._write_json(self._prompts_file, kept)
        return True

    def load_session_snapshot(self) -> Optional[str]:
        if not self._snapshot_file.exists():
            return None
        return self._snapshot_file.read_text(encoding="utf-8")

    def save_session_snapshot(self, blob: str) -> None:
        self._snapshot_file.write_text(blob, encoding="utf-8")

    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
            return None

    def _write_json(self, path: Path, payload: Any) -> None:
        path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")


def _vector_store_from_dict(raw: Any, defaults: VectorStoreSettings) -> VectorStoreSettings:
    if not isinstance(raw, dict):
        return defaults

    raw_embedding = raw.get("embedding") if isinstance(raw.get("embedding"), dict) else {}
    try:
        embedding_provider = EmbeddingProviderId(str(raw_embedding.get("provider", defaults.embedding.provider.value)))
    except ValueError:
        embedding_provider = defaults.embedding.provider
    embedding = EmbeddingSettings(
        provider=embedding_provider,
        model=str(raw_embedding.get("model") or defaults.embedding.model),
        api_key=str(raw_embedding.get("api_key") or ""),
        base_url=str(raw_embedding.get("base_url") or ""),
    )
    return VectorStoreSettings(
        enabled=bool(raw.get("enabled", defaults.enabled)),
        url=str(raw.get("url") or ""),
        collection=str(raw.get("collection") or ""),
        api_key=str(raw.get("api_key") or ""),
        top_k=clamp_top_k(raw.get("top_k", defaults.top_k)),
        embedding=embedding,
    )


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


def _now_utc_iso() -> str:
    return datetime.now(tz=timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")

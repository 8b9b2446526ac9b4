import json
import logging
from dataclasses import asdict, dataclass, field, fields, is_dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .attachments import ChatFile
from .messages import Message, message_from_dict, message_to_dict
from .modes import Mode, coerce_mode

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class AppState(str, Enum):
    IDLE = "idle"
    FILE_SELECTED = "fileSelected"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class Progress:
    stage: str
    percentage: float
    message: str = ""


@dataclass(frozen=True)
class ProcessingError:
    message: str
    details: Optional[str] = None


INITIAL_PROGRESS = Progress(stage="Idle", percentage=0, message="Waiting for file selection.")


@dataclass(frozen=True)
class SessionRecord:
    app_state: AppState = AppState.IDLE
    progress: Progress = INITIAL_PROGRESS
    error: Optional[ProcessingError] = None
    current_files: Tuple[ChatFile, ...] = ()
    processed_data: Any = None
    next_step_suggestions: Optional[Tuple[str, ...]] = None
    suggestions_loading: bool = False
    style_target: str = ""
    rewrite_style: str = ""
    rewrite_instructions: str = ""
    rewrite_length: str = "medium"
    use_hierarchical: bool = False
    summary_format: str = "default"
    summary_search_term: str = ""
    summary_text_input: str = ""
    reasoning_prompt: str = ""
    scaffolder_prompt: str = ""
    prompt_enhancer_input: str = ""
    agent_goal: str = ""
    request_splitter_spec: str = ""
    history: Tuple[Message, ...] = ()
    is_streaming_response: bool = False
    chat_input: str = ""
    chat_files: Tuple[ChatFile, ...] = ()


SessionUpdate = Union[Mapping[str, Any], Callable[[SessionRecord], SessionRecord]]
SessionListener = Callable[[Mode, SessionRecord], None]

_RECORD_FIELDS = {item.name for item in fields(SessionRecord)}
_TRANSIENT_FIELDS = {"current_files", "chat_files", "is_streaming_response"}


class SessionStore:
    """Holds exactly one isolated SessionRecord per mode.

    Records are immutable. Every write goes through ``set`` and is skipped
    when the computed record equals the current one, so listeners and the
    per-mode version only move on real changes.
    """

    def __init__(self) -> None:
        self._records: Dict[Mode, SessionRecord] = {mode: SessionRecord() for mode in Mode}
        self._versions: Dict[Mode, int] = {mode: 0 for mode in Mode}
        self._listeners: Dict[Mode, List[SessionListener]] = {mode: [] for mode in Mode}

    def get(self, mode: Union[Mode, str]) -> SessionRecord:
        return self._records[coerce_mode(mode)]

    def version(self, mode: Union[Mode, str]) -> int:
        return self._versions[coerce_mode(mode)]

    def set(self, mode: Union[Mode, str], update: SessionUpdate) -> SessionRecord:
        resolved = coerce_mode(mode)
        previous = self._records[resolved]
        if callable(update):
            next_record = update(previous)
        else:
            next_record = replace(previous, **dict(update))

        if next_record is previous or next_record == previous:
            return previous

        self._records[resolved] = next_record
        self._versions[resolved] += 1
        for listener in list(self._listeners[resolved]):
            listener(resolved, next_record)
        return next_record

    def set_value(self, mode: Union[Mode, str], key: str, value: Any) -> SessionRecord:
        if key not in _RECORD_FIELDS:
            raise KeyError(f"Unknown session field: {key}")

        def apply(previous: SessionRecord) -> SessionRecord:
            current = getattr(previous, key)
            next_value = value(current) if callable(value) else value
            if next_value is current or next_value == current:
                return previous
            return replace(previous, **{key: next_value})

        return self.set(mode, apply)

    def merge(self, mode: Union[Mode, str], partial: Mapping[str, Any]) -> SessionRecord:
        return self.set(mode, partial)

    def reset(self, mode: Union[Mode, str]) -> SessionRecord:
        return self.set(mode, lambda _previous: SessionRecord())

    def subscribe(self, mode: Union[Mode, str], listener: SessionListener) -> Callable[[], None]:
        listeners = self._listeners[coerce_mode(mode)]
        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> str:
        payload = {
            "version": SNAPSHOT_VERSION,
            "sessions": {mode.value: _record_to_dict(record) for mode, record in self._records.items()},
        }
        return json.dumps(payload, ensure_ascii=False, default=_json_default)

    def restore(self, blob: str) -> None:
        payload = json.loads(blob or "{}")
        sessions = payload.get("sessions", {}) if isinstance(payload, dict) else {}
        for raw_mode, raw_record in sessions.items():
            try:
                mode = coerce_mode(raw_mode)
            except ValueError:
                logger.warning("Skipping snapshot entry for unknown mode %r", raw_mode)
                continue
            if isinstance(raw_record, dict):
                self.set(mode, lambda _previous, raw=raw_record: _record_from_dict(raw))


def _record_to_dict(record: SessionRecord) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for name in _RECORD_FIELDS - _TRANSIENT_FIELDS:
        value = getattr(record, name)
        if name == "history":
            value = [message_to_dict(message) for message in value]
        elif is_dataclass(value):
            value = asdict(value)
        elif isinstance(value, Enum):
            value = value.value
        elif isinstance(value, tuple):
            value = list(value)
        payload[name] = value
    return payload


def _record_from_dict(raw: Dict[str, Any]) -> SessionRecord:
    defaults = SessionRecord()
    values: Dict[str, Any] = {}
    for name in _RECORD_FIELDS - _TRANSIENT_FIELDS:
        if name not in raw:
            continue
        value = raw[name]
        if name == "history":
            value = tuple(message_from_dict(item) for item in value or [] if isinstance(item, dict))
        elif name == "app_state":
            value = AppState(value) if value in {state.value for state in AppState} else defaults.app_state
            if value == AppState.PROCESSING:
                value = AppState.IDLE
        elif name == "progress":
            value = Progress(**value) if isinstance(value, dict) else defaults.progress
        elif name == "error":
            value = ProcessingError(**value) if isinstance(value, dict) else None
        elif name == "next_step_suggestions":
            value = tuple(value) if isinstance(value, list) else None
        values[name] = value
    return replace(defaults, **values)


def _json_default(value: Any) -> Any:
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")

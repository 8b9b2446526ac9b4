from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

USER_ROLE = "user"
MODEL_ROLE = "model"


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class InlineDataPart:
    mime_type: str
    data: str


Part = Union[TextPart, InlineDataPart]


@dataclass(frozen=True)
class ThinkingSegment:
    text: str
    label: Optional[str] = None
    kind: Optional[str] = None


@dataclass(frozen=True)
class Message:
    role: str
    parts: Tuple[Part, ...]
    thinking: Optional[Tuple[ThinkingSegment, ...]] = None


def user_message(parts: Iterable[Part]) -> Message:
    return Message(role=USER_ROLE, parts=tuple(parts))


def model_placeholder() -> Message:
    return Message(role=MODEL_ROLE, parts=(TextPart(""),), thinking=())


def visible_thinking(segments: Optional[Iterable[ThinkingSegment]]) -> List[ThinkingSegment]:
    return [segment for segment in segments or () if segment.text.strip()]


def has_visible_thinking(segments: Optional[Iterable[ThinkingSegment]]) -> bool:
    return bool(visible_thinking(segments))


def parts_to_plain_text(parts: Iterable[Part]) -> str:
    chunks: List[str] = []
    for part in parts:
        if isinstance(part, TextPart):
            chunks.append(part.text)
        elif isinstance(part, InlineDataPart):
            chunks.append(f"Attached data ({part.mime_type}): {part.data[:40]}...")
    return "\n\n".join(chunk for chunk in chunks if chunk)


def message_to_dict(message: Message) -> Dict[str, Any]:
    parts: List[Dict[str, Any]] = []
    for part in message.parts:
        if isinstance(part, InlineDataPart):
            parts.append({"inlineData": {"mimeType": part.mime_type, "data": part.data}})
        else:
            parts.append({"text": part.text})
    payload: Dict[str, Any] = {"role": message.role, "parts": parts}
    if message.thinking is not None:
        payload["thinking"] = [
            {key: value for key, value in (("text", s.text), ("label", s.label), ("kind", s.kind)) if value is not None}
            for s in message.thinking
        ]
    return payload


def message_from_dict(raw: Dict[str, Any]) -> Message:
    role = MODEL_ROLE if raw.get("role") == MODEL_ROLE else USER_ROLE
    parts: List[Part] = []
    for raw_part in raw.get("parts", []) or []:
        if not isinstance(raw_part, dict):
            continue
        inline = raw_part.get("inlineData")
        if isinstance(inline, dict):
            parts.append(InlineDataPart(str(inline.get("mimeType", "")), str(inline.get("data", ""))))
        else:
            parts.append(TextPart(str(raw_part.get("text", ""))))
    if not parts:
        parts.append(TextPart(""))

    thinking = None
    if isinstance(raw.get("thinking"), list):
        thinking = tuple(
            ThinkingSegment(text=str(item.get("text", "")), label=item.get("label"), kind=item.get("kind"))
            for item in raw["thinking"]
            if isinstance(item, dict)
        )
    return Message(role=role, parts=tuple(parts), thinking=thinking)

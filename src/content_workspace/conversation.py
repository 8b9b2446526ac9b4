from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .messages import MODEL_ROLE, Message, Part, parts_to_plain_text
from .settings import GenerationConfig, VectorStoreSettings

ProviderMessage = Dict[str, str]

CONTEXT_PREAMBLE = "Relevant knowledge base references (use when helpful and cite the reference number):\n\n"


@dataclass(frozen=True)
class ConversationRequest:
    history: Tuple[Message, ...]
    new_parts: Tuple[Part, ...]
    system_instruction: str = ""
    retrieval: Optional[VectorStoreSettings] = None
    generation: GenerationConfig = field(default_factory=GenerationConfig)


def build_provider_messages(
    history: Sequence[Message],
    new_parts: Optional[Sequence[Part]],
    system_instruction: str = "",
    context_sections: Optional[Sequence[str]] = None,
) -> List[ProviderMessage]:
    messages: List[ProviderMessage] = []
    if system_instruction and system_instruction.strip():
        messages.append({"role": "system", "content": system_instruction.strip()})

    sections = [section.strip() for section in context_sections or [] if section.strip()]
    if sections:
        messages.append({"role": "system", "content": CONTEXT_PREAMBLE + "\n\n".join(sections)})

    for message in history:
        content = parts_to_plain_text(message.parts)
        if not content:
            continue
        role = "assistant" if message.role == MODEL_ROLE else "user"
        messages.append({"role": role, "content": content})

    if new_parts:
        content = parts_to_plain_text(new_parts)
        if content:
            messages.append({"role": "user", "content": content})
    return messages


def split_system_messages(messages: Sequence[ProviderMessage]) -> Tuple[str, List[ProviderMessage]]:
    """Separate system content for providers that take it as a top-level field."""
    system_chunks = [m["content"] for m in messages if m["role"] == "system"]
    rest = [m for m in messages if m["role"] != "system"]
    return "\n\n".join(system_chunks), rest

import json
import logging
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .conversation import ConversationRequest, ProviderMessage, build_provider_messages, split_system_messages
from .messages import parts_to_plain_text
from .provider_resolver import ResolvedProvider, get_api_key
from .providers import ProviderId, get_provider_config
from .retrieval import QdrantRetriever, format_context_sections
from .settings import ProviderSettings
from .streaming import BackendError, CancellationToken, CumulativeAccumulator, ResponseSnapshot

logger = logging.getLogger(__name__)

REASONING_MODEL_PREFIXES = ("o1", "o3", "o4")


class Dialect(str, Enum):
    OPENAI_COMPATIBLE = "openai_compatible"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


PROVIDER_DIALECTS: Dict[ProviderId, Dialect] = {
    ProviderId.OPENAI: Dialect.OPENAI_COMPATIBLE,
    ProviderId.OPENROUTER: Dialect.OPENAI_COMPATIBLE,
    ProviderId.XAI: Dialect.OPENAI_COMPATIBLE,
    ProviderId.DEEPSEEK: Dialect.OPENAI_COMPATIBLE,
    ProviderId.ANTHROPIC: Dialect.ANTHROPIC,
    ProviderId.OLLAMA: Dialect.OLLAMA,
}


class ProviderConversationBackend:
    """Streams a chat exchange from one provider as cumulative snapshots.

    Any object with a matching ``stream_conversation(request, token)`` async
    generator can stand in for this class in ChatSubmission.
    """

    def __init__(
        self,
        provider_id: ProviderId,
        model: str,
        api_key: str = "",
        retriever: Optional[QdrantRetriever] = None,
        timeout_seconds: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = get_provider_config(provider_id)
        provider_id = self.config.id
        self.dialect = PROVIDER_DIALECTS[provider_id]
        self.model = model or self.config.default_model
        self.api_key = api_key
        self.retriever = retriever
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def stream_conversation(
        self, request: ConversationRequest, token: Optional[CancellationToken] = None
    ) -> AsyncIterator[ResponseSnapshot]:
        token = token or CancellationToken()
        token.raise_if_cancelled()

        context_sections: List[str] = []
        if request.retrieval is not None and request.retrieval.enabled and self.retriever is not None:
            query = parts_to_plain_text(request.new_parts)
            matches = await token.race(self.retriever.fetch_matches(query, request.retrieval, token))
            context_sections = format_context_sections(matches)

        messages = build_provider_messages(
            request.history, request.new_parts, request.system_instruction, context_sections
        )
        body = self._build_body(messages, request)
        accumulator = CumulativeAccumulator()

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                http_request = client.build_request(
                    "POST", self.config.endpoint, json=body, headers=self._build_headers()
                )
                response = await token.race(client.send(http_request, stream=True))
                try:
                    if response.status_code >= 400:
                        details = (await token.race(response.aread())).decode("utf-8", errors="replace")
                        raise BackendError(
                            f"{self.config.label} API error ({response.status_code}): {details}"
                        )
                    lines = response.aiter_lines()
                    while True:
                        line = await token.race(anext(lines, None))
                        if line is None:
                            break
                        if self._consume_line(line, accumulator):
                            yield accumulator.snapshot()
                finally:
                    await response.aclose()
        except httpx.HTTPError as exc:
            raise BackendError(f"{self.config.label} request failed: {exc}") from exc

        token.raise_if_cancelled()
        final = accumulator.snapshot(done=True)
        if not final.text and not final.thinking:
            logger.warning("%s returned an empty response for model %s", self.config.label, self.model)
        yield final

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(self.config.extra_headers)
        if self.dialect == Dialect.ANTHROPIC:
            headers["x-api-key"] = self.api_key
        elif self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _build_body(self, messages: List[ProviderMessage], request: ConversationRequest) -> Dict[str, Any]:
        generation = request.generation
        if self.dialect == Dialect.ANTHROPIC:
            system, rest = split_system_messages(messages)
            body: Dict[str, Any] = {
                "model": self.model,
                "messages": rest,
                "max_tokens": generation.max_output_tokens,
                "temperature": generation.temperature,
                "stream": True,
            }
            if system:
                body["system"] = system
            return body

        if self.dialect == Dialect.OLLAMA:
            return {
                "model": self.model,
                "messages": messages,
                "stream": True,
                "options": {"temperature": generation.temperature, "num_predict": generation.max_output_tokens},
            }

        body = {"model": self.model, "messages": messages, "stream": True}
        if self.model.lower().startswith(REASONING_MODEL_PREFIXES):
            body["max_completion_tokens"] = generation.max_output_tokens
            body["reasoning_effort"] = generation.reasoning_effort
        else:
            body["max_tokens"] = generation.max_output_tokens
            body["temperature"] = generation.temperature
        return body

    def _consume_line(self, line: str, accumulator: CumulativeAccumulator) -> bool:
        line = line.strip()
        if not line:
            return False

        if self.dialect == Dialect.OLLAMA:
            event = _parse_json(line)
            if event is None:
                return False
            if event.get("error"):
                raise BackendError(f"{self.config.label} error: {event['error']}")
            message = event.get("message") or {}
            changed = accumulator.add_thinking(message.get("thinking"), "thinking")
            return accumulator.add_text(message.get("content")) or changed

        if not line.startswith("data:"):
            return False
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return False
        event = _parse_json(data)
        if event is None:
            return False

        if self.dialect == Dialect.ANTHROPIC:
            if event.get("type") == "error":
                error = event.get("error") or {}
                raise BackendError(f"{self.config.label} error: {error.get('message', 'unknown error')}")
            if event.get("type") != "content_block_delta":
                return False
            delta = event.get("delta") or {}
            if delta.get("type") == "thinking_delta":
                return accumulator.add_thinking(delta.get("thinking"), "thinking")
            if delta.get("type") == "text_delta":
                return accumulator.add_text(delta.get("text"))
            return False

        if event.get("error"):
            error = event["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise BackendError(f"{self.config.label} error: {message}")
        choices = event.get("choices") or []
        if not choices:
            return False
        delta = choices[0].get("delta") or {}
        changed = False
        for key in ("reasoning_content", "reasoning"):
            if isinstance(delta.get(key), str):
                changed = accumulator.add_thinking(delta[key], "reasoning") or changed
        return accumulator.add_text(delta.get("content")) or changed


def create_backend(
    resolved: ResolvedProvider,
    settings: ProviderSettings,
    retriever: Optional[QdrantRetriever] = None,
) -> ProviderConversationBackend:
    return ProviderConversationBackend(
        provider_id=resolved.provider_id,
        model=resolved.model,
        api_key=get_api_key(settings, resolved.provider_id),
        retriever=retriever,
    )


def _parse_json(raw: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Skipping non-JSON stream line: %s", raw[:80])
        return None
    return parsed if isinstance(parsed, dict) else None

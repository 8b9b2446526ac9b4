import asyncio
import json
import time

import httpx
import pytest

from src.content_workspace.backends import ProviderConversationBackend, create_backend
from src.content_workspace.conversation import ConversationRequest
from src.content_workspace.messages import Message, TextPart
from src.content_workspace.provider_resolver import resolve_provider
from src.content_workspace.providers import ProviderId
from src.content_workspace.settings import GenerationConfig, ProviderSettings, VectorStoreSettings
from src.content_workspace.streaming import BackendError, CancellationToken, RequestAborted


def sse(*events):
    lines = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines).encode("utf-8")


def recording_transport(body, status_code=200, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, content=body)

    return httpx.MockTransport(handler)


def collect(backend, request, token=None):
    async def run():
        return [snapshot async for snapshot in backend.stream_conversation(request, token)]

    return asyncio.run(run())


REQUEST = ConversationRequest(
    history=(Message(role="user", parts=(TextPart("Hi"),)), Message(role="model", parts=(TextPart("Hello"),))),
    new_parts=(TextPart("Tell me more"),),
    system_instruction="Be brief.",
    generation=GenerationConfig(temperature=0.3, max_output_tokens=256),
)


def test_openai_compatible_stream_is_accumulated():
    seen = []
    body = sse(
        {"choices": [{"delta": {"role": "assistant"}}]},
        {"choices": [{"delta": {"reasoning_content": "think"}}]},
        {"choices": [{"delta": {"content": "Hel"}}]},
        {"choices": [{"delta": {"content": "lo"}}]},
        "[DONE]",
    )
    backend = ProviderConversationBackend(
        ProviderId.DEEPSEEK, "deepseek-chat", api_key="key", transport=recording_transport(body, seen=seen)
    )

    snapshots = collect(backend, REQUEST)

    assert [s.text for s in snapshots] == ["", "Hel", "Hello", "Hello"]
    assert snapshots[-1].done is True
    assert snapshots[-1].thinking[0].text == "think"
    assert snapshots[-1].thinking[0].label == "Reasoning"

    request = seen[0]
    payload = json.loads(request.content)
    assert str(request.url) == "https://api.deepseek.com/chat/completions"
    assert request.headers["Authorization"] == "Bearer key"
    assert payload["stream"] is True
    assert payload["max_tokens"] == 256
    assert payload["messages"][0] == {"role": "system", "content": "Be brief."}
    assert payload["messages"][-1] == {"role": "user", "content": "Tell me more"}


def test_openrouter_sends_attribution_headers():
    seen = []
    backend = ProviderConversationBackend(
        ProviderId.OPENROUTER, "", api_key="key", transport=recording_transport(sse("[DONE]"), seen=seen)
    )
    collect(backend, REQUEST)

    assert seen[0].headers["X-Title"] == "AI Content Suite"
    assert json.loads(seen[0].content)["model"] == "openrouter/auto"


def test_reasoning_models_use_completion_token_budget():
    seen = []
    backend = ProviderConversationBackend(
        ProviderId.OPENAI, "o1-mini", api_key="key", transport=recording_transport(sse("[DONE]"), seen=seen)
    )
    collect(backend, REQUEST)

    payload = json.loads(seen[0].content)
    assert payload["max_completion_tokens"] == 256
    assert "temperature" not in payload


def test_anthropic_stream_separates_thinking_and_text():
    seen = []
    body = (
        "event: message_start\n"
        + sse(
            {"type": "message_start"},
            {"type": "content_block_delta", "delta": {"type": "thinking_delta", "thinking": "Let me see"}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Sure"}},
            {"type": "message_stop"},
        ).decode("utf-8")
    ).encode("utf-8")
    backend = ProviderConversationBackend(
        ProviderId.ANTHROPIC, "claude-3-5-sonnet-latest", api_key="ak", transport=recording_transport(body, seen=seen)
    )

    snapshots = collect(backend, REQUEST)

    assert snapshots[-1].text == "Sure"
    assert snapshots[-1].thinking[0].text == "Let me see"
    payload = json.loads(seen[0].content)
    assert payload["system"] == "Be brief."
    assert all(message["role"] != "system" for message in payload["messages"])
    assert seen[0].headers["x-api-key"] == "ak"
    assert seen[0].headers["anthropic-version"] == "2023-06-01"


def test_ollama_ndjson_stream():
    seen = []
    body = "\n".join(
        json.dumps(chunk)
        for chunk in (
            {"message": {"role": "assistant", "content": "Hi"}, "done": False},
            {"message": {"role": "assistant", "content": " there"}, "done": False},
            {"message": {"role": "assistant", "content": ""}, "done": True},
        )
    ).encode("utf-8")
    backend = ProviderConversationBackend(ProviderId.OLLAMA, "llama3.1:8b", transport=recording_transport(body, seen=seen))

    snapshots = collect(backend, REQUEST)

    assert snapshots[-1].text == "Hi there"
    assert "Authorization" not in seen[0].headers
    assert json.loads(seen[0].content)["options"]["num_predict"] == 256


def test_http_error_becomes_backend_error():
    backend = ProviderConversationBackend(
        ProviderId.OPENAI, "gpt-4o", api_key="key", transport=recording_transport(b'{"error":"bad key"}', 401)
    )
    with pytest.raises(BackendError) as exc_info:
        collect(backend, REQUEST)
    assert "OpenAI API error (401)" in str(exc_info.value)


def test_transport_failure_becomes_backend_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    backend = ProviderConversationBackend(
        ProviderId.OLLAMA, "llama3.1:8b", transport=httpx.MockTransport(handler)
    )
    with pytest.raises(BackendError) as exc_info:
        collect(backend, REQUEST)
    assert "Ollama (Local) request failed" in str(exc_info.value)


def test_cancelled_token_aborts_before_request():
    seen = []
    token = CancellationToken()
    token.cancel()
    backend = ProviderConversationBackend(
        ProviderId.OPENAI, "gpt-4o", api_key="key", transport=recording_transport(sse("[DONE]"), seen=seen)
    )
    with pytest.raises(RequestAborted):
        collect(backend, REQUEST, token)
    assert seen == []


def test_retrieval_context_is_injected_when_enabled():
    class StubRetriever:
        def __init__(self):
            self.queries = []

        async def fetch_matches(self, query, settings, token):
            from src.content_workspace.retrieval import RetrievalMatch

            self.queries.append(query)
            return [RetrievalMatch(text="Qdrant fact", score=0.5)]

    seen = []
    retriever = StubRetriever()
    backend = ProviderConversationBackend(
        ProviderId.OPENAI, "gpt-4o", api_key="key", retriever=retriever,
        transport=recording_transport(sse("[DONE]"), seen=seen),
    )
    request = ConversationRequest(
        history=(), new_parts=(TextPart("question"),), retrieval=VectorStoreSettings(enabled=True)
    )
    collect(backend, request)

    assert retriever.queries == ["question"]
    messages = json.loads(seen[0].content)["messages"]
    assert "#1 score=0.500\nQdrant fact" in messages[0]["content"]


def test_create_backend_uses_resolved_provider_and_key():
    settings = ProviderSettings(selected_provider=ProviderId.XAI, api_keys={ProviderId.XAI: " xk "})
    backend = create_backend(resolve_provider("chat", settings), settings)
    assert backend.config.id == ProviderId.XAI
    assert backend.model == "grok-beta"
    assert backend.api_key == "xk"


def stop_after(token, delay):
    asyncio.get_running_loop().call_later(delay, token.cancel)


def test_stop_interrupts_a_request_waiting_for_headers():
    async def stalled(request):
        await asyncio.sleep(5)
        return httpx.Response(200, content=sse("[DONE]"))

    backend = ProviderConversationBackend(
        ProviderId.OPENAI, "gpt-4o", api_key="key", transport=httpx.MockTransport(stalled)
    )

    async def run():
        token = CancellationToken()
        stop_after(token, 0.05)
        started = time.monotonic()
        with pytest.raises(RequestAborted):
            async for _ in backend.stream_conversation(REQUEST, token):
                pass
        return time.monotonic() - started

    assert asyncio.run(run()) < 1.0


def test_stop_interrupts_a_stalled_body():
    async def slow_body():
        yield b'data: {"choices": [{"delta": {"content": "Hel"}}]}\n\n'
        await asyncio.sleep(5)
        yield b"data: [DONE]\n\n"

    def handler(request):
        return httpx.Response(200, content=slow_body())

    backend = ProviderConversationBackend(
        ProviderId.OPENAI, "gpt-4o", api_key="key", transport=httpx.MockTransport(handler)
    )

    async def run():
        token = CancellationToken()
        received = []
        started = time.monotonic()
        with pytest.raises(RequestAborted):
            async for snapshot in backend.stream_conversation(REQUEST, token):
                received.append(snapshot.text)
                stop_after(token, 0.05)
        return received, time.monotonic() - started

    received, elapsed = asyncio.run(run())
    assert received == ["Hel"]
    assert elapsed < 1.0

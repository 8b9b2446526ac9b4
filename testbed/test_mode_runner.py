import asyncio
import logging
from dataclasses import replace

import pytest

from src.content_workspace.attachments import ChatFile
from src.content_workspace.chat_orchestrator import SubmissionOutcome
from src.content_workspace.messages import InlineDataPart, TextPart
from src.content_workspace.mode_prompts import DOCUMENT_BREAK, SYSTEM_INSTRUCTIONS
from src.content_workspace.mode_runner import (
    ModeResult,
    ModeSubmission,
    coerce_mode_result,
    is_ready,
    parse_suggestions,
    search_paragraphs,
)
from src.content_workspace.modes import Mode
from src.content_workspace.providers import ProviderId
from src.content_workspace.session_store import AppState, SessionRecord, SessionStore
from src.content_workspace.settings import ChatSettings, ProviderSettings
from src.content_workspace.streaming import BackendError, CancellationToken, ResponseSnapshot


class QueueBackend:
    """Answers each request with the next queued response: text, snapshots or an exception."""

    def __init__(self, *responses, on_snapshot=None):
        self.responses = list(responses)
        self.on_snapshot = on_snapshot
        self.requests = []

    async def stream_conversation(self, request, token):
        self.requests.append(request)
        response = self.responses.pop(0) if self.responses else ""
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            response = [ResponseSnapshot(response, (), done=True)]
        for snapshot in response:
            yield snapshot
            if self.on_snapshot is not None:
                self.on_snapshot(snapshot)


def make_runner(backend, provider_settings=None):
    store = SessionStore()
    provider_settings = provider_settings or ProviderSettings(
        selected_provider=ProviderId.OPENAI, api_keys={ProviderId.OPENAI: "sk-test"}
    )
    runner = ModeSubmission(
        store=store,
        provider_settings=lambda: provider_settings,
        chat_settings=lambda: ChatSettings(temperature=0.2),
        backend_factory=lambda resolved, settings: backend,
    )
    return runner, store


def record_stages(store, mode):
    stages = []

    def listener(_mode, record):
        if not stages or stages[-1] != record.progress.stage:
            stages.append(record.progress.stage)

    store.subscribe(mode, listener)
    return stages


def text_file(name, body):
    return ChatFile(name=name, content=body.encode("utf-8"), mime_type="text/plain")


@pytest.mark.parametrize(
    "mode, fields, expected",
    [
        (Mode.TECHNICAL, {"summary_text_input": "some text"}, True),
        (Mode.TECHNICAL, {"summary_text_input": "   "}, False),
        (Mode.STYLE_EXTRACTOR, {"style_target": "Narrator"}, False),
        (Mode.REWRITER, {"current_files": (text_file("a.txt", "x"),)}, True),
        (Mode.REASONING_STUDIO, {"reasoning_prompt": "Plan a trip"}, True),
        (Mode.SCAFFOLDER, {"scaffolder_prompt": ""}, False),
        (Mode.REQUEST_SPLITTER, {"request_splitter_spec": "Build a shop"}, True),
        (Mode.PROMPT_ENHANCER, {"prompt_enhancer_input": "write tests"}, True),
        (Mode.AGENT_DESIGNER, {"agent_goal": "triage support mail"}, True),
        (Mode.CHAT, {"chat_input": "hi"}, False),
    ],
)
def test_readiness_follows_mode_inputs(mode, fields, expected):
    assert is_ready(mode, replace(SessionRecord(), **fields)) is expected


def test_summary_run_completes_and_loads_suggestions():
    backend = QueueBackend("A short summary.", '["Compare with v1", "Share with the team"]')
    runner, store = make_runner(backend)
    store.merge(Mode.TECHNICAL, {"summary_text_input": "Quarterly numbers went up.", "summary_format": "bullets"})
    stages = record_stages(store, Mode.TECHNICAL)

    outcome = asyncio.run(runner.submit(Mode.TECHNICAL))

    session = store.get(Mode.TECHNICAL)
    assert outcome == SubmissionOutcome.COMMITTED
    assert session.app_state == AppState.COMPLETED
    assert session.progress.percentage == 100
    assert isinstance(session.processed_data, ModeResult)
    assert session.processed_data.text == "A short summary."
    assert session.processed_data.data is None
    assert session.next_step_suggestions == ("Compare with v1", "Share with the team")
    assert session.suggestions_loading is False
    assert stages[:5] == ["Starting", "Ready", "Generating", "Parsing Response", "Completed"]

    main_request, follow_up = backend.requests
    prompt = main_request.new_parts[-1].text
    assert "Quarterly numbers went up." in prompt
    assert "bulleted list only" in prompt
    assert main_request.system_instruction == SYSTEM_INSTRUCTIONS[Mode.TECHNICAL]
    assert main_request.history == ()
    assert main_request.generation.temperature == 0.2
    assert "A short summary." in follow_up.new_parts[-1].text


def test_selected_files_are_wrapped_and_reported_per_file():
    backend = QueueBackend("Warm and terse.", "no list here")
    runner, store = make_runner(backend)
    store.merge(
        Mode.STYLE_EXTRACTOR,
        {
            "style_target": "the narrator",
            "current_files": (text_file("a.txt", "alpha"), text_file("b.md", "beta")),
            "app_state": AppState.FILE_SELECTED,
        },
    )
    percentages = []
    store.subscribe(
        Mode.STYLE_EXTRACTOR,
        lambda _mode, record: record.progress.stage == "Processing Files"
        and percentages.append(record.progress.percentage),
    )

    outcome = asyncio.run(runner.submit(Mode.STYLE_EXTRACTOR))

    prompt = backend.requests[0].new_parts[-1].text
    assert outcome == SubmissionOutcome.COMMITTED
    assert "the narrator" in prompt
    assert "--- DOCUMENT START: a.txt ---" in prompt
    assert DOCUMENT_BREAK in prompt
    assert prompt.index("alpha") < prompt.index("beta")
    assert percentages == [6, 10]
    assert store.get(Mode.STYLE_EXTRACTOR).next_step_suggestions is None


def test_rewriter_sends_images_ahead_of_the_prompt():
    backend = QueueBackend("Once upon a time.")
    runner, store = make_runner(backend)
    image = ChatFile(name="cover.png", content=b"\x89PNG", mime_type="image/png")
    store.merge(
        Mode.REWRITER,
        {"current_files": (image, text_file("notes.txt", "facts")), "rewrite_style": "noir", "rewrite_length": "short"},
    )

    outcome = asyncio.run(runner.submit(Mode.REWRITER))

    parts = backend.requests[0].new_parts
    assert outcome == SubmissionOutcome.COMMITTED
    assert isinstance(parts[0], InlineDataPart)
    assert isinstance(parts[-1], TextPart)
    assert "around 250 words" in parts[-1].text
    assert "noir" in parts[-1].text
    assert len(backend.requests) == 1


def test_images_are_rejected_outside_the_rewriter():
    backend = QueueBackend("unused")
    runner, store = make_runner(backend)
    image = ChatFile(name="formula.png", content=b"\x89PNG", mime_type="image/png")
    store.merge(Mode.MATH_FORMATTER, {"current_files": (image,), "app_state": AppState.FILE_SELECTED})

    outcome = asyncio.run(runner.submit(Mode.MATH_FORMATTER))

    session = store.get(Mode.MATH_FORMATTER)
    assert outcome == SubmissionOutcome.FAILED
    assert session.app_state == AppState.ERROR
    assert session.error.message.startswith("Failed to process: Images are only supported")
    assert backend.requests == []


def test_json_mode_keeps_parsed_fields():
    raw = '```json\n{"finalResponseMd": "# Answer", "reasoningTreeJson": {"id": "root", "children": []}}\n```'
    backend = QueueBackend(raw)
    runner, store = make_runner(backend)
    store.merge(Mode.REASONING_STUDIO, {"reasoning_prompt": "Should we cache?"})

    outcome = asyncio.run(runner.submit(Mode.REASONING_STUDIO))

    result = store.get(Mode.REASONING_STUDIO).processed_data
    assert outcome == SubmissionOutcome.COMMITTED
    assert result.data["finalResponseMd"] == "# Answer"
    assert result.data["reasoningTreeJson"]["id"] == "root"
    assert "Required keys: finalResponseMd, reasoningTreeJson" in backend.requests[0].new_parts[-1].text
    assert len(backend.requests) == 1


def test_json_mode_missing_keys_fail_with_raw_details():
    raw = '{"designMarkdown": "# Agents"}'
    backend = QueueBackend(raw)
    runner, store = make_runner(backend)
    store.merge(Mode.AGENT_DESIGNER, {"agent_goal": "Route support mail"})

    outcome = asyncio.run(runner.submit(Mode.AGENT_DESIGNER))

    session = store.get(Mode.AGENT_DESIGNER)
    assert outcome == SubmissionOutcome.FAILED
    assert session.app_state == AppState.ERROR
    assert "designPlanJson, designFlowDiagram" in session.error.message
    assert session.error.details == raw
    assert session.processed_data is None


def test_backend_failure_sets_error_state():
    backend = QueueBackend(BackendError("quota exceeded"))
    runner, store = make_runner(backend)
    store.merge(Mode.SCAFFOLDER, {"scaffolder_prompt": "A CLI todo app"})

    outcome = asyncio.run(runner.submit(Mode.SCAFFOLDER))

    session = store.get(Mode.SCAFFOLDER)
    assert outcome == SubmissionOutcome.FAILED
    assert session.error.message == "Failed to process: quota exceeded"
    assert session.error.details is None
    assert session.progress.stage == "Error"


def test_missing_credential_is_rejected_before_processing():
    backend = QueueBackend("unused")
    runner, store = make_runner(backend, ProviderSettings(selected_provider=ProviderId.ANTHROPIC))
    store.merge(Mode.PROMPT_ENHANCER, {"prompt_enhancer_input": "make it better"})

    outcome = asyncio.run(runner.submit(Mode.PROMPT_ENHANCER))

    session = store.get(Mode.PROMPT_ENHANCER)
    assert outcome == SubmissionOutcome.REJECTED
    assert session.app_state == AppState.IDLE
    assert "Anthropic" in session.error.message
    assert backend.requests == []


def test_not_ready_or_busy_sessions_are_skipped():
    backend = QueueBackend("unused")
    runner, store = make_runner(backend)
    assert asyncio.run(runner.submit(Mode.REASONING_STUDIO)) == SubmissionOutcome.SKIPPED

    store.merge(Mode.REASONING_STUDIO, {"reasoning_prompt": "go", "app_state": AppState.PROCESSING})
    assert asyncio.run(runner.submit(Mode.REASONING_STUDIO)) == SubmissionOutcome.SKIPPED
    assert asyncio.run(runner.submit(Mode.CHAT)) == SubmissionOutcome.SKIPPED
    assert backend.requests == []


def test_stop_mid_stream_restores_file_selection():
    token = CancellationToken()
    backend = QueueBackend(
        [ResponseSnapshot("$x$ and", ()), ResponseSnapshot("$x$ and $y$", (), done=True)],
        on_snapshot=lambda _snapshot: token.cancel(),
    )
    runner, store = make_runner(backend)
    store.merge(Mode.MATH_FORMATTER, {"current_files": (text_file("eq.tex", "x"),)})

    outcome = asyncio.run(runner.submit(Mode.MATH_FORMATTER, token=token))

    session = store.get(Mode.MATH_FORMATTER)
    assert outcome == SubmissionOutcome.ABORTED
    assert session.app_state == AppState.FILE_SELECTED
    assert session.processed_data is None
    assert session.error is None
    assert session.progress.stage == "Cancelled"


def test_suggestion_failure_keeps_the_result(caplog):
    backend = QueueBackend("Summary.", BackendError("rate limited"))
    runner, store = make_runner(backend)
    store.merge(Mode.TECHNICAL, {"summary_text_input": "text"})

    with caplog.at_level(logging.WARNING):
        outcome = asyncio.run(runner.submit(Mode.TECHNICAL))

    session = store.get(Mode.TECHNICAL)
    assert outcome == SubmissionOutcome.COMMITTED
    assert session.app_state == AppState.COMPLETED
    assert session.processed_data.text == "Summary."
    assert session.next_step_suggestions is None
    assert session.suggestions_loading is False
    assert "rate limited" in caplog.text


def test_parse_suggestions_accepts_wrapped_arrays_only():
    assert parse_suggestions('Sure:\n["One", " ", "Two"]') == ("One", "Two")
    assert parse_suggestions('{"steps": 1}') is None
    assert parse_suggestions("[not json]") is None
    assert parse_suggestions("[]") is None


def test_search_paragraphs_filters_case_insensitively():
    text = "Revenue grew.\n\nCosts fell sharply.\n  \nRevenue outlook is stable."

    assert search_paragraphs(text, "revenue") == ["Revenue grew.", "Revenue outlook is stable."]
    assert search_paragraphs(text, "") == ["Revenue grew.", "Costs fell sharply.", "Revenue outlook is stable."]
    assert search_paragraphs(text, "profit") == []


def test_restored_results_are_coerced_back():
    restored = coerce_mode_result({"mode": "technical", "text": "Sum", "data": None, "processing_time_seconds": 1.5})

    assert restored == ModeResult(mode="technical", text="Sum", data=None, processing_time_seconds=1.5)
    assert coerce_mode_result({"project": {}, "prompts": []}) is None
    assert coerce_mode_result(None) is None

from pathlib import Path
from concurrent.futures import Future
from dataclasses import replace
import logging
import sys
import time
from typing import Dict, Optional

import streamlit as st
from streamlit_flow import streamlit_flow
from streamlit_flow.elements import StreamlitFlowEdge, StreamlitFlowNode
from streamlit_flow.state import StreamlitFlowState

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

from src.content_workspace.attachments import ChatFile  # noqa: E402
from src.content_workspace.background import BackgroundLoop  # noqa: E402
from src.content_workspace.config import data_dir, provider_settings_from_env  # noqa: E402
from src.content_workspace.error_feedback import build_error_feedback  # noqa: E402
from src.content_workspace.messages import (  # noqa: E402
    MODEL_ROLE,
    parts_to_plain_text,
    visible_thinking,
)
from src.content_workspace.mode_prompts import (  # noqa: E402
    JSON_OUTPUT_KEYS,
    REWRITE_LENGTH_WORDS,
    SUMMARY_FORMAT_HINTS,
)
from src.content_workspace.mode_runner import is_ready, search_paragraphs  # noqa: E402
from src.content_workspace.modes import (  # noqa: E402
    MODE_DESCRIPTIONS,
    RESET_BUTTON_TEXT,
    Mode,
    get_mode_label,
    get_submit_label,
    list_modes,
)
from src.content_workspace.provider_resolver import has_credential  # noqa: E402
from src.content_workspace.providers import (  # noqa: E402
    EMBEDDING_CATALOG,
    PROVIDER_CATALOG,
    get_provider_label,
    list_provider_models,
)
from src.content_workspace.session_store import AppState  # noqa: E402
from src.content_workspace.settings import (  # noqa: E402
    MAX_TOP_K,
    ChatSettings,
    EmbeddingSettings,
    FeatureModelPreference,
    VectorStoreSettings,
)
from src.content_workspace.settings_repository import WorkspaceSettingsRepository  # noqa: E402
from src.content_workspace.split_plan import ordered_prompts_markdown  # noqa: E402
from src.content_workspace.ui_mapper import to_flow_edge_specs, to_flow_node_specs  # noqa: E402
from src.content_workspace.workspace import PlanView, Workspace  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

POLL_SECONDS = 0.3
NO_PRESET = "(none)"
GLOBAL_PROVIDER = "(global)"
CODE_OUTPUT_KEYS = {"scaffoldScript": "bash", "designFlowDiagram": "mermaid"}

MODE_TEXT_FIELDS = {
    Mode.TECHNICAL: ("summary_text_input", "Or paste text to summarize"),
    Mode.STYLE_EXTRACTOR: ("style_target", "Speaker or author to analyze (optional)"),
    Mode.REASONING_STUDIO: ("reasoning_prompt", "Goal"),
    Mode.SCAFFOLDER: ("scaffolder_prompt", "Project description"),
    Mode.REQUEST_SPLITTER: ("request_splitter_spec", "Specification"),
    Mode.PROMPT_ENHANCER: ("prompt_enhancer_input", "Raw request"),
    Mode.AGENT_DESIGNER: ("agent_goal", "System goal"),
}


@st.cache_resource
def get_repository() -> WorkspaceSettingsRepository:
    return WorkspaceSettingsRepository(data_dir(ROOT_DIR))


@st.cache_resource
def get_background_loop() -> BackgroundLoop:
    return BackgroundLoop()


def ensure_workspace() -> Workspace:
    if "workspace" not in st.session_state:
        repository = get_repository()
        workspace = Workspace(
            provider_settings=repository.load_provider_settings(provider_settings_from_env()),
            chat_settings=repository.load_chat_settings(),
        )
        blob = repository.load_session_snapshot()
        if blob:
            workspace.store.restore(blob)
        st.session_state.workspace = workspace
    if "pending" not in st.session_state:
        st.session_state.pending = {}
    return st.session_state.workspace


def persist(workspace: Workspace) -> None:
    repository = get_repository()
    repository.save_provider_settings(workspace.provider_settings)
    repository.save_chat_settings(workspace.chat_settings)
    repository.save_session_snapshot(workspace.store.snapshot())


def start_request(mode: Mode, coro) -> None:
    st.session_state.pending[mode] = get_background_loop().submit(coro)
    st.rerun()


def poll_pending(workspace: Workspace, mode: Mode) -> bool:
    """Returns True while a request for ``mode`` is still running."""
    pending: Dict[Mode, Future] = st.session_state.pending
    future = pending.get(mode)
    if future is None:
        return False
    if not future.done():
        return True

    del pending[mode]
    try:
        outcome = future.result()
    except Exception as exc:
        logger.error("Request for %s crashed: %s", mode.value, exc)
        st.error(f"Request failed unexpectedly: {exc}")
    else:
        logger.info("Request for %s finished: %s", mode.value, outcome.value)
    persist(workspace)
    return False


def to_flow_state(view: PlanView) -> StreamlitFlowState:
    node_specs = to_flow_node_specs(view.nodes, view.positions, view.layout)
    edge_specs = to_flow_edge_specs(view.connectors)
    flow_nodes = [StreamlitFlowNode(**spec) for spec in node_specs]
    flow_edges = [StreamlitFlowEdge(**spec) for spec in edge_specs]
    return StreamlitFlowState(nodes=flow_nodes, edges=flow_edges)


def to_chat_files(uploads) -> list:
    return [ChatFile(name=upload.name, content=upload.getvalue(), mime_type=upload.type or "") for upload in uploads]


def render_provider_settings(workspace: Workspace) -> None:
    settings = workspace.provider_settings
    provider_ids = list(PROVIDER_CATALOG)
    provider = st.selectbox(
        "Provider",
        provider_ids,
        index=provider_ids.index(settings.selected_provider),
        format_func=get_provider_label,
    )
    models = list_provider_models(provider)
    model_ids = [model.id for model in models]
    current_model = settings.selected_model if settings.selected_model in model_ids else ""
    model = st.selectbox(
        "Model",
        model_ids,
        index=model_ids.index(current_model) if current_model else 0,
    ) if model_ids else st.text_input("Model", value=settings.selected_model)

    api_keys = dict(settings.api_keys)
    if PROVIDER_CATALOG[provider].requires_api_key:
        key = st.text_input(
            f"{get_provider_label(provider)} API Key",
            value=api_keys.get(provider, ""),
            type="password",
            help="Stored in the local workspace data directory.",
        ).strip()
        if key:
            api_keys[provider] = key
        else:
            api_keys.pop(provider, None)
    max_tokens = st.number_input(
        "Max output tokens", min_value=64, max_value=32768, value=int(settings.max_output_tokens), step=64
    )

    updated = replace(
        settings,
        selected_provider=provider,
        selected_model=model or "",
        api_keys=api_keys,
        max_output_tokens=int(max_tokens),
    )
    if updated != settings:
        workspace.provider_settings = updated
        persist(workspace)
    if PROVIDER_CATALOG[provider].requires_api_key:
        st.caption("Key status: configured" if has_credential(updated, provider) else "Key status: not set")


def render_mode_override(workspace: Workspace, mode: Mode) -> None:
    settings = workspace.provider_settings
    current = settings.feature_model_preferences.get(mode) or FeatureModelPreference()
    options = [GLOBAL_PROVIDER] + list(PROVIDER_CATALOG)
    with st.expander(f"Model for {get_mode_label(mode)}"):
        choice = st.selectbox(
            "Provider override",
            options,
            index=options.index(current.provider) if current.provider in options else 0,
            format_func=lambda value: value if value == GLOBAL_PROVIDER else get_provider_label(value),
            key=f"override_provider_{mode.value}",
        )
        model = st.text_input(
            "Model override", value=current.model or "", key=f"override_model_{mode.value}"
        ).strip()

    preferences = dict(settings.feature_model_preferences)
    provider = None if choice == GLOBAL_PROVIDER else choice
    if provider is None and not model:
        preferences.pop(mode, None)
    else:
        preferences[mode] = FeatureModelPreference(provider=provider, model=model or None)
    if preferences != settings.feature_model_preferences:
        workspace.provider_settings = replace(settings, feature_model_preferences=preferences)
        persist(workspace)


def render_chat_settings(workspace: Workspace) -> None:
    repository = get_repository()
    settings = workspace.chat_settings
    with st.expander("Chat Settings"):
        presets = repository.list_saved_prompts()
        names = [preset["name"] for preset in presets]
        choice = st.selectbox("Saved prompts", [NO_PRESET] + names)
        col_load, col_delete = st.columns(2)
        if col_load.button("Load", disabled=choice == NO_PRESET, use_container_width=True):
            content = next(preset.get("content", "") for preset in presets if preset["name"] == choice)
            workspace.chat_settings = replace(settings, system_instruction=content)
            persist(workspace)
            st.rerun()
        if col_delete.button("Delete", disabled=choice == NO_PRESET, use_container_width=True):
            repository.delete_prompt(choice)
            st.rerun()

        instruction = st.text_area("System instruction", value=settings.system_instruction, height=120)
        preset_name = st.text_input("Save instruction as")
        if st.button("Save preset", disabled=not preset_name.strip()):
            repository.save_prompt(preset_name, instruction)
            st.toast(f"Saved prompt '{preset_name.strip()}'.")
        temperature = st.slider("Temperature", 0.0, 2.0, float(settings.temperature), 0.05)

        st.markdown("**Knowledge base (Qdrant)**")
        store = settings.vector_store
        enabled = st.checkbox("Use knowledge base", value=store.enabled)
        url = st.text_input("Qdrant URL", value=store.url)
        collection = st.text_input("Collection", value=store.collection)
        store_key = st.text_input("Qdrant API key", value=store.api_key, type="password")
        top_k = st.number_input("Results (top k)", min_value=1, max_value=MAX_TOP_K, value=int(store.top_k))

        embedding_ids = list(EMBEDDING_CATALOG)
        embedding_provider = st.selectbox(
            "Embedding provider",
            embedding_ids,
            index=embedding_ids.index(store.embedding.provider),
            format_func=lambda value: EMBEDDING_CATALOG[value].label,
        )
        embedding_model = st.text_input(
            "Embedding model", value=store.embedding.model or EMBEDDING_CATALOG[embedding_provider].default_model
        )
        embedding_key = st.text_input("Embedding API key", value=store.embedding.api_key, type="password")
        embedding_url = st.text_input(
            "Embedding endpoint", value=store.embedding.base_url, placeholder=EMBEDDING_CATALOG[embedding_provider].default_endpoint
        )

    updated = ChatSettings(
        system_instruction=instruction,
        temperature=float(temperature),
        vector_store=VectorStoreSettings(
            enabled=enabled,
            url=url.strip(),
            collection=collection.strip(),
            api_key=store_key.strip(),
            top_k=int(top_k),
            embedding=EmbeddingSettings(
                provider=embedding_provider,
                model=embedding_model.strip(),
                api_key=embedding_key.strip(),
                base_url=embedding_url.strip(),
            ),
        ),
    )
    if updated != settings:
        workspace.chat_settings = updated
        persist(workspace)


def render_history(workspace: Workspace, mode: Mode) -> None:
    for message in workspace.store.get(mode).history:
        role = "assistant" if message.role == MODEL_ROLE else "user"
        with st.chat_message(role):
            for segment in visible_thinking(message.thinking):
                with st.expander(segment.label or "Thinking"):
                    st.markdown(segment.text)
            st.markdown(parts_to_plain_text(message.parts))


def render_feedback(workspace: Workspace, mode: Mode) -> None:
    feedback = build_error_feedback(workspace.store.get(mode))
    if feedback["level"] == "error":
        st.error(f"{feedback['title']}: {feedback['message']}")
        st.caption(feedback["guidance"])
    elif feedback["level"] == "info":
        st.info(f"{feedback['title']}: {feedback['message']}")


def bind_field(workspace: Workspace, mode: Mode, field: str, value) -> None:
    if value != getattr(workspace.store.get(mode), field):
        workspace.store.set_value(mode, field, value)


def render_mode_inputs(workspace: Workspace, mode: Mode, running: bool) -> None:
    session = workspace.store.get(mode)
    uploads = st.file_uploader(
        "Files", accept_multiple_files=True, key=f"files_{mode.value}", disabled=running
    ) or []
    selected = to_chat_files(uploads)
    if not running and tuple(selected) != session.current_files:
        workspace.select_files(mode, selected)

    text_field = MODE_TEXT_FIELDS.get(mode)
    if text_field is not None:
        field, label = text_field
        bind_field(workspace, mode, field, st.text_area(label, value=getattr(session, field), height=160, disabled=running))

    if mode == Mode.TECHNICAL:
        formats = list(SUMMARY_FORMAT_HINTS)
        bind_field(workspace, mode, "summary_format", st.selectbox(
            "Summary format", formats, index=formats.index(session.summary_format)
            if session.summary_format in formats else 0, disabled=running,
        ))
        bind_field(workspace, mode, "use_hierarchical", st.checkbox(
            "Summarize each document first", value=session.use_hierarchical, disabled=running
        ))
    elif mode == Mode.REWRITER:
        lengths = list(REWRITE_LENGTH_WORDS)
        bind_field(workspace, mode, "rewrite_style", st.text_area("Target style", value=session.rewrite_style, disabled=running))
        bind_field(workspace, mode, "rewrite_instructions", st.text_area(
            "Instructions", value=session.rewrite_instructions, disabled=running
        ))
        bind_field(workspace, mode, "rewrite_length", st.radio(
            "Length", lengths, horizontal=True,
            index=lengths.index(session.rewrite_length) if session.rewrite_length in lengths else 1, disabled=running,
        ))

    session = workspace.store.get(mode)
    label = get_submit_label(mode, file_count=len(session.current_files), text_input=session.summary_text_input)
    if st.button(label, type="primary", disabled=running or not is_ready(mode, session)):
        start_request(mode, workspace.submit_mode(mode))


def render_suggestions(workspace: Workspace, mode: Mode) -> None:
    session = workspace.store.get(mode)
    if session.suggestions_loading:
        st.caption("Loading next-step suggestions...")
    elif session.next_step_suggestions:
        st.markdown("**Suggested next steps**")
        for suggestion in session.next_step_suggestions:
            st.markdown(f"- {suggestion}")


def render_mode_result(workspace: Workspace, mode: Mode) -> None:
    result = workspace.mode_result(mode)
    if result is None:
        return
    st.markdown("### Result")
    st.caption(f"Processed in {result.processing_time_seconds:.1f}s")

    if mode == Mode.TECHNICAL:
        session = workspace.store.get(mode)
        term = st.text_input("Search summary", value=session.summary_search_term)
        bind_field(workspace, mode, "summary_search_term", term)
        paragraphs = search_paragraphs(result.text, term)
        st.markdown("\n\n".join(paragraphs) if paragraphs else "_No paragraph matches the search._")
    elif result.data is not None:
        for key in JSON_OUTPUT_KEYS[mode]:
            value = result.data.get(key)
            st.markdown(f"**{key}**")
            if key in CODE_OUTPUT_KEYS:
                st.code(str(value), language=CODE_OUTPUT_KEYS[key])
            elif isinstance(value, str):
                st.markdown(value)
            else:
                st.json(value)
    else:
        st.markdown(result.text)

    if mode in (Mode.TECHNICAL, Mode.STYLE_EXTRACTOR):
        render_suggestions(workspace, mode)
    st.download_button("Download (.md)", data=result.text, file_name=f"{mode.value}.md")


def render_progress(workspace: Workspace, mode: Mode) -> None:
    session = workspace.store.get(mode)
    if session.app_state == AppState.PROCESSING:
        progress = session.progress
        st.progress(int(progress.percentage), text=f"{progress.stage}: {progress.message}")


def render_request_splitter(workspace: Workspace) -> None:
    mode = Mode.REQUEST_SPLITTER
    with st.expander("Import plan JSON"):
        raw_plan = st.text_area("Plan JSON", height=160)
        if st.button("Import", disabled=not raw_plan.strip()):
            workspace.apply_split_plan(raw_plan, mode)
            persist(workspace)

    view = workspace.plan_view(mode)
    if view is None:
        return
    if view.layout.degenerate:
        st.warning(f"Dependency order could not be resolved: {view.layout.diagnostic.describe()}")

    st.markdown("### Prompt Dependencies")
    streamlit_flow("split_plan_flow", to_flow_state(view), fit_view=True, height=520)

    ordered = ordered_prompts_markdown(view.plan)
    with st.expander("Prompts", expanded=True):
        for prompt in view.plan.prompts:
            st.markdown(f"**{prompt.id} · {prompt.title}**")
            st.code(prompt.prompt or "(empty)", language="markdown")
    st.download_button("Export Prompts (.md)", data=ordered, file_name="split_prompts.md")


def render_chat(workspace: Workspace, mode: Mode, running: bool) -> None:
    uploads = st.file_uploader("Attachments", accept_multiple_files=True, key=f"uploads_{mode.value}") or []
    render_history(workspace, mode)
    prompt: Optional[str] = st.chat_input(
        get_submit_label(mode, file_count=len(uploads)), disabled=running or not workspace.can_submit(mode)
    )
    if prompt:
        start_request(mode, workspace.submit_chat(mode, prompt, to_chat_files(uploads)))


st.set_page_config(layout="wide")
st.title("AI Content Suite")
workspace = ensure_workspace()

with st.sidebar:
    st.markdown("### Provider Settings")
    render_provider_settings(workspace)
    render_chat_settings(workspace)

    st.markdown("### Mode")
    mode = st.selectbox("Mode", list_modes(), index=list_modes().index(Mode.CHAT), format_func=get_mode_label)
    st.caption(MODE_DESCRIPTIONS[mode])
    render_mode_override(workspace, mode)
    resolved = workspace.resolve(mode)
    st.caption(f"Using {resolved.label} · {resolved.model or 'default model'}")

running = poll_pending(workspace, mode)

with st.sidebar:
    col_l, col_r = st.columns(2)
    if col_l.button(RESET_BUTTON_TEXT[mode], use_container_width=True):
        get_background_loop().call(workspace.start_over, mode).result(timeout=5)
        persist(workspace)
        st.rerun()
    if col_r.button("Stop", use_container_width=True, disabled=not running):
        get_background_loop().call(workspace.stop, mode)

render_feedback(workspace, mode)
st.subheader(get_mode_label(mode))

if mode == Mode.CHAT:
    render_chat(workspace, mode, running)
else:
    render_mode_inputs(workspace, mode, running)
    render_progress(workspace, mode)
    if mode == Mode.REQUEST_SPLITTER:
        render_request_splitter(workspace)
    else:
        render_mode_result(workspace, mode)

if running:
    time.sleep(POLL_SECONDS)
    st.rerun()

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Union

from .attachments import ChatFile, file_to_part
from .backends import create_backend
from .chat_orchestrator import BackendFactory, ChatSubmission, FileConverter, SubmissionOutcome
from .mode_runner import ModeResult, ModeSubmission, coerce_mode_result
from .modes import Mode, coerce_mode
from .plan_layout import (
    Connector,
    LevelLayout,
    PlanNode,
    PositionMap,
    build_connectors,
    calculate_level_positions,
    compute_dependency_levels,
)
from .provider_resolver import ResolvedProvider, resolve_provider
from .retrieval import QdrantRetriever
from .session_store import INITIAL_PROGRESS, AppState, ProcessingError, Progress, SessionStore
from .settings import ChatSettings, ProviderSettings
from .split_plan import SplitPlan, SplitPlanError, parse_split_plan, sanitize_split_plan, to_plan_nodes
from .streaming import CancellationToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanView:
    plan: SplitPlan
    nodes: List[PlanNode]
    layout: LevelLayout
    positions: PositionMap
    connectors: List[Connector]


class Workspace:
    """One running instance: a session store plus the settings and chat pipeline bound to it."""

    def __init__(
        self,
        provider_settings: Optional[ProviderSettings] = None,
        chat_settings: Optional[ChatSettings] = None,
        backend_factory: Optional[BackendFactory] = None,
        retriever: Optional[QdrantRetriever] = None,
        file_converter: FileConverter = file_to_part,
    ) -> None:
        self.store = SessionStore()
        self.provider_settings = provider_settings or ProviderSettings()
        self.chat_settings = chat_settings or ChatSettings()
        self.retriever = retriever or QdrantRetriever()
        self.chat = ChatSubmission(
            store=self.store,
            provider_settings=lambda: self.provider_settings,
            chat_settings=lambda: self.chat_settings,
            backend_factory=backend_factory or self._default_backend,
            file_converter=file_converter,
        )
        self.modes = ModeSubmission(
            store=self.store,
            provider_settings=lambda: self.provider_settings,
            chat_settings=lambda: self.chat_settings,
            backend_factory=backend_factory or self._default_backend,
            file_converter=file_converter,
        )
        self._active_tokens: Dict[Mode, CancellationToken] = {}

    def resolve(self, mode: Union[Mode, str]) -> ResolvedProvider:
        return resolve_provider(mode, self.provider_settings)

    def can_submit(self, mode: Union[Mode, str] = Mode.CHAT) -> bool:
        session = self.store.get(mode)
        return not session.is_streaming_response and session.app_state != AppState.PROCESSING

    async def submit_chat(
        self,
        mode: Union[Mode, str] = Mode.CHAT,
        text: Optional[str] = None,
        files: Optional[Iterable[ChatFile]] = None,
    ) -> SubmissionOutcome:
        resolved_mode = coerce_mode(mode)
        can_submit = self.can_submit(resolved_mode)
        if can_submit:
            if text is not None:
                self.store.set_value(resolved_mode, "chat_input", text)
            if files is not None:
                self.store.set_value(resolved_mode, "chat_files", tuple(files))

        return await self._run_tracked(
            resolved_mode,
            can_submit,
            lambda token: self.chat.submit(resolved_mode, can_submit=can_submit, token=token),
        )

    def select_files(self, mode: Union[Mode, str], files: Iterable[ChatFile]) -> None:
        selected = tuple(files)
        if not self.can_submit(mode):
            logger.warning("Ignoring file selection for %s while a request is running", coerce_mode(mode).value)
            return
        self.store.merge(
            mode,
            {
                "current_files": selected,
                "app_state": AppState.FILE_SELECTED if selected else AppState.IDLE,
                "error": None,
                "progress": Progress("Files Selected", 0, f"{len(selected)} file(s) selected.")
                if selected
                else INITIAL_PROGRESS,
            },
        )

    async def submit_mode(self, mode: Union[Mode, str]) -> SubmissionOutcome:
        resolved_mode = coerce_mode(mode)
        can_submit = self.can_submit(resolved_mode)
        return await self._run_tracked(
            resolved_mode,
            can_submit,
            lambda token: self.modes.submit(resolved_mode, can_submit=can_submit, token=token),
        )

    def mode_result(self, mode: Union[Mode, str]) -> Optional[ModeResult]:
        return coerce_mode_result(self.store.get(mode).processed_data)

    async def _run_tracked(
        self,
        mode: Mode,
        can_submit: bool,
        run: Callable[[CancellationToken], Awaitable[SubmissionOutcome]],
    ) -> SubmissionOutcome:
        token = CancellationToken()
        if can_submit:
            self._active_tokens[mode] = token
        try:
            return await run(token)
        finally:
            if self._active_tokens.get(mode) is token:
                del self._active_tokens[mode]

    def stop(self, mode: Union[Mode, str] = Mode.CHAT) -> bool:
        token = self._active_tokens.get(coerce_mode(mode))
        if token is None:
            return False
        token.cancel()
        return True

    def start_over(self, mode: Union[Mode, str]) -> None:
        self.stop(mode)
        self.store.reset(mode)

    def apply_split_plan(self, raw_text: str, mode: Union[Mode, str] = Mode.REQUEST_SPLITTER) -> Optional[SplitPlan]:
        try:
            plan = parse_split_plan(raw_text)
        except SplitPlanError as exc:
            logger.error("Could not parse split plan: %s", exc)
            self.store.merge(
                mode,
                {"app_state": AppState.ERROR, "error": ProcessingError(str(exc), details=raw_text[:2000])},
            )
            return None

        self.store.merge(
            mode,
            {
                "app_state": AppState.COMPLETED,
                "processed_data": plan,
                "error": None,
                "progress": Progress(stage="Completed", percentage=100, message="Request splitting complete."),
            },
        )
        return plan

    def plan_view(self, mode: Union[Mode, str] = Mode.REQUEST_SPLITTER) -> Optional[PlanView]:
        data = self.store.get(mode).processed_data
        if isinstance(data, dict):
            # Restored snapshots carry the plan as plain JSON.
            try:
                data = sanitize_split_plan(data)
            except SplitPlanError as exc:
                logger.warning("Stored split plan is unusable: %s", exc)
                return None
        if not isinstance(data, SplitPlan):
            return None

        nodes = to_plan_nodes(data)
        layout = compute_dependency_levels(nodes)
        positions = calculate_level_positions(layout.levels)
        return PlanView(
            plan=data,
            nodes=nodes,
            layout=layout,
            positions=positions,
            connectors=build_connectors(nodes, positions),
        )

    def _default_backend(self, resolved: ResolvedProvider, settings: ProviderSettings):
        return create_backend(resolved, settings, self.retriever)
